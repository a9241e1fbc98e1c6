# src/core/geo/polyline.py
"""
Кодек Google encoded polyline.

Каждая координата умножается на 1e5, кодируется разность с предыдущей точкой:
знаковый сдвиг влево, группы по 5 бит, бит продолжения 0x20, смещение 63.
"""

from __future__ import annotations

from typing import Iterable

from src.common.errors import DecodeFailure


PRECISION = 1e5


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode(points: Iterable[tuple[float, float]]) -> str:
    """
    Кодирует последовательность (lat, lng) в строку polyline.

    Args:
        points: Точки маршрута

    Returns:
        Закодированная строка (пустая для пустого списка)
    """
    result = []
    prev_lat = 0
    prev_lng = 0

    for lat, lng in points:
        lat_e5 = int(round(lat * PRECISION))
        lng_e5 = int(round(lng * PRECISION))
        result.append(_encode_value(lat_e5 - prev_lat))
        result.append(_encode_value(lng_e5 - prev_lng))
        prev_lat, prev_lng = lat_e5, lng_e5

    return "".join(result)


def decode(encoded: str) -> list[tuple[float, float]]:
    """
    Декодирует строку polyline в список (lat, lng).

    Raises:
        DecodeFailure: Строка обрывается посреди значения или содержит чужие символы
    """
    points: list[tuple[float, float]] = []
    index = 0
    length = len(encoded)
    lat = 0
    lng = 0

    def read_value() -> int:
        nonlocal index
        shift = 0
        result = 0
        while True:
            if index >= length:
                raise DecodeFailure("Обрезанная строка polyline")
            byte = ord(encoded[index]) - 63
            index += 1
            if byte < 0 or byte > 0x3F:
                raise DecodeFailure(f"Недопустимый символ polyline на позиции {index - 1}")
            result |= (byte & 0x1F) << shift
            shift += 5
            if byte < 0x20:
                break
        return ~(result >> 1) if result & 1 else result >> 1

    while index < length:
        lat += read_value()
        lng += read_value()
        points.append((lat / PRECISION, lng / PRECISION))

    return points

# src/core/location/models.py
"""
Модели геопозиции водителя и JSON формат сообщения MQTT.

Формат сообщения:
    {"driverId": str, "lat": float, "lng": float, "timestamp": int (мс),
     "speedMps": float, "bearing": float}
"""

from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.common.errors import DecodeFailure


def now_ms() -> int:
    """Текущее время в миллисекундах Unix."""
    return int(time.time() * 1000)


def _coerce_non_negative(value: Any) -> float:
    """NaN, бесконечность, отрицательные и нечисловые значения превращаются в 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


class PositionSample(BaseModel):
    """Снимок позиции водителя. Неизменяемый."""

    model_config = ConfigDict(frozen=True)

    driver_id: str = Field(..., min_length=1, description="ID водителя")
    latitude: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    longitude: float = Field(..., ge=-180.0, le=180.0, description="Долгота")
    timestamp_ms: int = Field(default_factory=now_ms, description="Время снимка, мс Unix")
    speed_mps: float = Field(0.0, description="Скорость, м/с")
    bearing_deg: float = Field(0.0, description="Курс, градусы")

    @field_validator("speed_mps", "bearing_deg", mode="before")
    @classmethod
    def coerce_motion(cls, v: Any) -> float:
        return _coerce_non_negative(v)

    @field_validator("latitude", "longitude")
    @classmethod
    def check_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("координата должна быть конечным числом")
        return v

    @property
    def speed_kmh(self) -> float:
        return self.speed_mps * 3.6

    @property
    def point(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_wire(self) -> dict[str, Any]:
        """Словарь в формате сообщения MQTT."""
        return {
            "driverId": self.driver_id,
            "lat": self.latitude,
            "lng": self.longitude,
            "timestamp": self.timestamp_ms,
            "speedMps": self.speed_mps,
            "bearing": self.bearing_deg,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


@dataclass(frozen=True)
class RawPosition:
    """
    Показание платформенного источника координат как есть.
    Скорость и курс могут быть NaN или отрицательными.
    """
    latitude: float
    longitude: float
    speed_mps: float = float("nan")
    heading_deg: float = float("nan")
    timestamp_ms: Optional[int] = None
    accuracy_m: Optional[float] = None

    def to_sample(self, driver_id: str, timestamp_ms: int | None = None) -> PositionSample:
        """Приводит показание к PositionSample водителя."""
        return PositionSample(
            driver_id=driver_id,
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp_ms=timestamp_ms or self.timestamp_ms or now_ms(),
            speed_mps=self.speed_mps,
            bearing_deg=self.heading_deg,
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def decode_sample(payload: str | bytes, driver_id: str | None = None) -> PositionSample:
    """
    Разбирает сообщение MQTT в PositionSample.

    Если speedMps отсутствует, принимается устаревшее поле speed в км/ч.
    Отсутствующая метка времени заменяется текущим временем.

    Args:
        payload: Тело сообщения (JSON)
        driver_id: ID водителя из топика, если его нет в теле

    Raises:
        DecodeFailure: Не JSON, не объект, нет или нечисловые lat/lng
    """
    try:
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeFailure(f"Сообщение не является JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeFailure(f"Ожидался JSON объект, получено: {type(data).__name__}")

    lat = data.get("lat")
    lng = data.get("lng")
    if not _is_number(lat) or not _is_number(lng):
        raise DecodeFailure("В сообщении нет числовых lat/lng")

    sender = data.get("driverId")
    if sender is not None and not isinstance(sender, str):
        sender = str(sender)
    sender = sender or driver_id
    if not sender:
        raise DecodeFailure("В сообщении нет driverId")

    if "speedMps" in data:
        speed_mps = data.get("speedMps")
    elif _is_number(data.get("speed")):
        speed_mps = data["speed"] / 3.6
    else:
        speed_mps = 0.0

    timestamp = data.get("timestamp")
    timestamp_ms = int(timestamp) if _is_number(timestamp) and math.isfinite(timestamp) else now_ms()

    try:
        return PositionSample(
            driver_id=sender,
            latitude=lat,
            longitude=lng,
            timestamp_ms=timestamp_ms,
            speed_mps=speed_mps,
            bearing_deg=data.get("bearing", 0.0),
        )
    except ValidationError as e:
        raise DecodeFailure(f"Некорректные координаты: {e.errors()[0].get('msg')}") from e

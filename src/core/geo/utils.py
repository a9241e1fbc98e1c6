# src/core/geo/utils.py
"""
Геометрия на сфере: расстояние по Haversine и начальный азимут.
"""

from __future__ import annotations

import math


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """То же расстояние в метрах."""
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Начальный азимут от первой точки ко второй.

    Returns:
        Градусы по часовой стрелке от севера, в диапазоне [0, 360)
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlon = math.radians(lon2 - lon1)

    x = math.sin(dlon) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlon)

    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def round_half_up(value: float) -> int:
    """Округление до целого, половины вверх (2.5 -> 3, а не 2 как у round())."""
    return int(math.floor(value + 0.5))

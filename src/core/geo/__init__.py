# src/core/geo/__init__.py
"""
Geo-сервис.
Маршруты Google Directions, кодек polyline и расчёт расстояний.
"""

from src.core.geo.service import DirectionsResult, DirectionsService, RouteEstimate, haversine_estimate
from src.core.geo.utils import haversine_km, haversine_m, initial_bearing

__all__ = [
    "DirectionsResult",
    "DirectionsService",
    "RouteEstimate",
    "haversine_estimate",
    "haversine_km",
    "haversine_m",
    "initial_bearing",
]

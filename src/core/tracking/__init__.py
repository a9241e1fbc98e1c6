# src/core/tracking/__init__.py
"""
Отслеживание водителя пассажиром: ETA, цель, маршрут.
"""

from src.core.tracking.eta import estimate_eta_seconds, format_eta, format_last_update
from src.core.tracking.models import (
    GeoPoint,
    RouteState,
    TrackingContext,
    TrackingSnapshot,
    TrackingTarget,
)
from src.core.tracking.targets import TargetResolver
from src.core.tracking.session import TrackingSession

__all__ = [
    "estimate_eta_seconds",
    "format_eta",
    "format_last_update",
    "GeoPoint",
    "RouteState",
    "TrackingContext",
    "TrackingSnapshot",
    "TrackingTarget",
    "TargetResolver",
    "TrackingSession",
]

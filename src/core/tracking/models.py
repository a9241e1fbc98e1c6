# src/core/tracking/models.py
"""
Модели отслеживания водителя пассажиром.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from src.common.constants import ETA_UNKNOWN, TargetKind
from src.core.geo.service import RouteEstimate
from src.core.location.models import PositionSample


@dataclass(frozen=True)
class GeoPoint:
    """Точка на карте."""
    latitude: float
    longitude: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


STATUS_TEXTS: dict[TargetKind, str] = {
    TargetKind.PICKUP: "Heading to pickup",
    TargetKind.NEXT_PICKUP: "Heading to next pickup",
    TargetKind.DESTINATION: "Heading to destination",
}


@dataclass(frozen=True)
class TrackingTarget:
    """Текущая цель водителя."""
    kind: TargetKind
    point: GeoPoint
    label: str = ""

    @property
    def status_text(self) -> str:
        return STATUS_TEXTS[self.kind]


@dataclass(frozen=True)
class TrackingContext:
    """
    Что известно о поездке пассажира на момент открытия отслеживания.
    Без booking_id или ride_id цель всегда место посадки.
    """
    pickup: GeoPoint
    passenger_id: Optional[str] = None
    booking_id: Optional[str] = None
    ride_id: Optional[str] = None
    pickup_label: str = "Pickup Location"
    destination: Optional[GeoPoint] = None
    destination_label: Optional[str] = None


@dataclass(frozen=True)
class RouteState:
    """Маршрут для отображения и точка, из которой он был запрошен."""
    origin: GeoPoint
    target: TrackingTarget
    estimate: RouteEstimate

    @property
    def points(self) -> list[tuple[float, float]]:
        return self.estimate.points


@dataclass(frozen=True)
class TrackingSnapshot:
    """Неизменяемое состояние отслеживания для слоя отображения."""
    driver_id: Optional[str] = None
    connected: bool = False
    location: Optional[PositionSample] = None
    target: Optional[TrackingTarget] = None
    route: Optional[RouteState] = None
    eta_seconds: Optional[int] = None
    eta_text: str = ETA_UNKNOWN
    last_update_text: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
    route_points: tuple[tuple[float, float], ...] = field(default_factory=tuple)

    @property
    def status_text(self) -> str:
        if self.target is None:
            return ""
        return self.target.status_text

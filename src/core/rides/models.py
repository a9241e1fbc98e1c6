# src/core/rides/models.py
"""
Модели бронирований и поездок, нужные для выбора цели отслеживания.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import PickupStatus


class BookingPickup(BaseModel):
    """Бронирование в поездке с точкой посадки."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="UUID бронирования")
    passenger_id: str = Field(..., description="UUID пассажира")
    pickup_status: Optional[str] = Field(None, description="Статус посадки")
    pickup_location: Optional[str] = Field(None, description="Адрес посадки")
    pickup_lat: Optional[float] = Field(None, description="Широта посадки")
    pickup_lng: Optional[float] = Field(None, description="Долгота посадки")
    created_at: Optional[datetime] = Field(None, description="Время создания")

    @property
    def is_picked_up(self) -> bool:
        return self.pickup_status == PickupStatus.ARRIVED.value

    @property
    def has_coordinates(self) -> bool:
        return self.pickup_lat is not None and self.pickup_lng is not None


class RideDestination(BaseModel):
    """Конечная точка поездки."""

    model_config = ConfigDict(from_attributes=True)

    to_location: Optional[str] = Field(None, description="Адрес назначения")
    to_lat: Optional[float] = Field(None, description="Широта назначения")
    to_lng: Optional[float] = Field(None, description="Долгота назначения")

    @property
    def has_coordinates(self) -> bool:
        return self.to_lat is not None and self.to_lng is not None

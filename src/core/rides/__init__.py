# src/core/rides/__init__.py
"""
Поездки и бронирования: чтение данных для отслеживания.
"""

from src.core.rides.models import BookingPickup, RideDestination
from src.core.rides.repository import RideRepository
from src.core.rides.watcher import PickupStatusWatcher

__all__ = [
    "BookingPickup",
    "RideDestination",
    "RideRepository",
    "PickupStatusWatcher",
]

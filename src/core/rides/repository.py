# src/core/rides/repository.py
"""
Репозиторий бронирований и поездок (только чтение).
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import BOOKING_ACCEPTED
from src.common.logger import log_error
from src.core.rides.models import BookingPickup, RideDestination
from src.infra.database import DatabaseManager


class RideRepository:
    """Репозиторий поездок."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get_pickup_status(self, booking_id: str) -> Optional[str]:
        """
        Статус посадки по бронированию.

        Returns:
            Значение pickup_status или None, если бронирования нет
        """
        try:
            return await self._db.fetchval(
                "SELECT pickup_status FROM bookings WHERE id = $1",
                booking_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения статуса посадки {booking_id}: {e}")
            raise

    async def list_accepted_bookings(self, ride_id: str) -> list[BookingPickup]:
        """
        Принятые бронирования поездки в порядке создания.
        """
        try:
            rows = await self._db.fetch(
                """
                SELECT id, passenger_id, pickup_status, pickup_location,
                       pickup_lat, pickup_lng, created_at
                FROM bookings
                WHERE ride_id = $1 AND request_status = $2
                ORDER BY created_at
                """,
                ride_id,
                BOOKING_ACCEPTED,
            )
        except Exception as e:
            await log_error(f"Ошибка получения бронирований поездки {ride_id}: {e}")
            raise

        return [
            BookingPickup(
                id=str(row["id"]),
                passenger_id=str(row["passenger_id"]),
                pickup_status=row["pickup_status"],
                pickup_location=row["pickup_location"],
                pickup_lat=row["pickup_lat"],
                pickup_lng=row["pickup_lng"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def get_ride_destination(self, ride_id: str) -> Optional[RideDestination]:
        """
        Конечная точка поездки.

        Returns:
            RideDestination или None, если поездки нет
        """
        try:
            row = await self._db.fetchrow(
                "SELECT to_location, to_lat, to_lng FROM rides WHERE id = $1",
                ride_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения поездки {ride_id}: {e}")
            raise

        if row is None:
            return None

        return RideDestination(
            to_location=row["to_location"],
            to_lat=row["to_lat"],
            to_lng=row["to_lng"],
        )

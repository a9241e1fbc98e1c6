# src/core/tracking/targets.py
"""
Выбор текущей цели водителя: место посадки пассажира, посадка следующего
пассажира той же поездки или пункт назначения.
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import PickupStatus, TargetKind
from src.common.logger import log_error, log_warning
from src.core.rides.repository import RideRepository
from src.core.tracking.models import GeoPoint, TrackingContext, TrackingTarget


class TargetResolver:
    """Определяет цель отслеживания по статусу посадки."""

    def __init__(self, repository: RideRepository | None = None) -> None:
        self._repository = repository
        self._last_status: Optional[str] = None

    @property
    def last_status(self) -> Optional[str]:
        """Статус посадки, прочитанный при последнем resolve()."""
        return self._last_status

    @staticmethod
    def pickup_target(context: TrackingContext) -> TrackingTarget:
        return TrackingTarget(TargetKind.PICKUP, context.pickup, context.pickup_label)

    @staticmethod
    def _context_destination(context: TrackingContext) -> Optional[TrackingTarget]:
        if context.destination is None:
            return None
        return TrackingTarget(
            TargetKind.DESTINATION,
            context.destination,
            context.destination_label or "Destination",
        )

    async def resolve(self, context: TrackingContext) -> Optional[TrackingTarget]:
        """
        Читает статус посадки и выбирает цель.
        Без ID бронирования и поездки цель всегда место посадки.
        """
        if self._repository is None or not context.booking_id or not context.ride_id:
            return self.pickup_target(context)

        try:
            status = await self._repository.get_pickup_status(context.booking_id)
        except Exception as e:
            await log_error(f"Ошибка проверки статуса посадки: {e}")
            return self.pickup_target(context)

        self._last_status = status
        return await self.resolve_for_status(context, status)

    async def resolve_for_status(self, context: TrackingContext, status: Optional[str]) -> Optional[TrackingTarget]:
        """Выбирает цель для уже известного статуса посадки."""
        if status != PickupStatus.ARRIVED.value:
            return self.pickup_target(context)
        return await self._target_after_pickup(context)

    async def _target_after_pickup(self, context: TrackingContext) -> Optional[TrackingTarget]:
        if self._repository is None or not context.ride_id:
            return self._context_destination(context)

        try:
            bookings = await self._repository.list_accepted_bookings(context.ride_id)

            next_pickup = None
            for booking in bookings:
                if booking.passenger_id == context.passenger_id:
                    continue
                if not booking.is_picked_up:
                    next_pickup = booking
                    break

            if next_pickup is not None and next_pickup.has_coordinates:
                return TrackingTarget(
                    TargetKind.NEXT_PICKUP,
                    GeoPoint(next_pickup.pickup_lat, next_pickup.pickup_lng),
                    next_pickup.pickup_location or "Next Pickup",
                )

            destination = self._context_destination(context)
            if destination is not None:
                return destination

            ride = await self._repository.get_ride_destination(context.ride_id)
            if ride is not None and ride.has_coordinates:
                return TrackingTarget(
                    TargetKind.DESTINATION,
                    GeoPoint(ride.to_lat, ride.to_lng),
                    ride.to_location or "Destination",
                )

            await log_warning(f"Нет координат назначения для поездки {context.ride_id}")
            return None
        except Exception as e:
            await log_error(f"Ошибка выбора цели после посадки: {e}")
            return self._context_destination(context)

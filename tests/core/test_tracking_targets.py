# tests/core/test_tracking_targets.py
"""
Тесты выбора цели отслеживания.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.common.constants import TargetKind
from src.core.rides.models import BookingPickup, RideDestination
from src.core.tracking.models import GeoPoint, TrackingContext
from src.core.tracking.targets import TargetResolver


PICKUP = GeoPoint(3.139, 101.6869)
CAMPUS = GeoPoint(3.120, 101.654)


def booking(passenger_id: str, status: str | None = None, lat: float | None = 3.15, lng: float | None = 101.70) -> BookingPickup:
    return BookingPickup(
        id=f"b-{passenger_id}",
        passenger_id=passenger_id,
        pickup_status=status,
        pickup_location=f"Gate of {passenger_id}",
        pickup_lat=lat,
        pickup_lng=lng,
    )


@pytest.fixture
def context() -> TrackingContext:
    return TrackingContext(
        pickup=PICKUP,
        passenger_id="p-1",
        booking_id="b-p-1",
        ride_id="r-1",
        pickup_label="Block A",
    )


@pytest.fixture
def repository() -> AsyncMock:
    repo = AsyncMock()
    repo.get_pickup_status = AsyncMock(return_value=None)
    repo.list_accepted_bookings = AsyncMock(return_value=[])
    repo.get_ride_destination = AsyncMock(return_value=None)
    return repo


class TestResolve:
    """Тесты resolve()."""

    @pytest.mark.asyncio
    async def test_without_repository(self, context: TrackingContext) -> None:
        target = await TargetResolver().resolve(context)

        assert target.kind == TargetKind.PICKUP
        assert target.point == PICKUP
        assert target.label == "Block A"
        assert target.status_text == "Heading to pickup"

    @pytest.mark.asyncio
    async def test_without_booking(self, repository: AsyncMock) -> None:
        target = await TargetResolver(repository).resolve(TrackingContext(pickup=PICKUP))

        assert target.kind == TargetKind.PICKUP
        repository.get_pickup_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_pickup(self, context: TrackingContext, repository: AsyncMock) -> None:
        repository.get_pickup_status.return_value = "pending"
        resolver = TargetResolver(repository)

        target = await resolver.resolve(context)

        assert target.kind == TargetKind.PICKUP
        assert resolver.last_status == "pending"

    @pytest.mark.asyncio
    async def test_status_error_falls_back_to_pickup(self, context: TrackingContext, repository: AsyncMock) -> None:
        repository.get_pickup_status.side_effect = ConnectionError("db down")

        target = await TargetResolver(repository).resolve(context)

        assert target.kind == TargetKind.PICKUP


class TestAfterPickup:
    """Цель после посадки пассажира."""

    @pytest.mark.asyncio
    async def test_next_pickup(self, context: TrackingContext, repository: AsyncMock) -> None:
        repository.get_pickup_status.return_value = "arrived"
        repository.list_accepted_bookings.return_value = [
            booking("p-1", "arrived"),
            booking("p-2", "arrived", lat=3.0, lng=101.0),
            booking("p-3", None, lat=3.16, lng=101.71),
        ]

        target = await TargetResolver(repository).resolve(context)

        assert target.kind == TargetKind.NEXT_PICKUP
        assert target.point == GeoPoint(3.16, 101.71)
        assert target.label == "Gate of p-3"
        assert target.status_text == "Heading to next pickup"

    @pytest.mark.asyncio
    async def test_destination_from_context(self, repository: AsyncMock) -> None:
        context = TrackingContext(
            pickup=PICKUP,
            passenger_id="p-1",
            booking_id="b-p-1",
            ride_id="r-1",
            destination=CAMPUS,
            destination_label="Campus",
        )
        repository.list_accepted_bookings.return_value = [booking("p-1", "arrived")]

        target = await TargetResolver(repository).resolve_for_status(context, "arrived")

        assert target.kind == TargetKind.DESTINATION
        assert target.point == CAMPUS
        assert target.status_text == "Heading to destination"
        repository.get_ride_destination.assert_not_called()

    @pytest.mark.asyncio
    async def test_destination_from_ride(self, context: TrackingContext, repository: AsyncMock) -> None:
        repository.get_ride_destination.return_value = RideDestination(to_location="Campus", to_lat=3.12, to_lng=101.654)

        target = await TargetResolver(repository).resolve_for_status(context, "arrived")

        assert target.kind == TargetKind.DESTINATION
        assert target.point == GeoPoint(3.12, 101.654)
        assert target.label == "Campus"

    @pytest.mark.asyncio
    async def test_next_pickup_without_coordinates(self, context: TrackingContext, repository: AsyncMock) -> None:
        repository.list_accepted_bookings.return_value = [booking("p-2", None, lat=None, lng=None)]
        repository.get_ride_destination.return_value = RideDestination(to_location="Campus", to_lat=3.12, to_lng=101.654)

        target = await TargetResolver(repository).resolve_for_status(context, "arrived")

        assert target.kind == TargetKind.DESTINATION

    @pytest.mark.asyncio
    async def test_no_destination(self, context: TrackingContext, repository: AsyncMock) -> None:
        repository.get_ride_destination.return_value = RideDestination(to_location="Campus")

        assert await TargetResolver(repository).resolve_for_status(context, "arrived") is None

    @pytest.mark.asyncio
    async def test_repository_error_uses_context_destination(self, repository: AsyncMock) -> None:
        context = TrackingContext(pickup=PICKUP, booking_id="b-1", ride_id="r-1", destination=CAMPUS)
        repository.list_accepted_bookings.side_effect = ConnectionError("db down")

        target = await TargetResolver(repository).resolve_for_status(context, "arrived")

        assert target.point == CAMPUS

# tests/core/test_geo_service.py
"""
Тесты для сервиса маршрутов.
"""

from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from src.common.constants import RouteMethod
from src.common.errors import RouteUnavailable, TimeoutFailure
from src.core.geo.service import (
    DirectionsResult,
    DirectionsService,
    RouteEstimate,
    haversine_estimate,
)


ORIGIN = (52.5200, 13.4050)
DESTINATION = (52.5300, 13.4050)


def directions_payload(**overrides: Any) -> dict[str, Any]:
    leg = {
        "distance": {"value": 1520, "text": "1.5 km"},
        "duration": {"value": 300, "text": "5 mins"},
        "duration_in_traffic": {"value": 420, "text": "7 mins"},
        "start_address": "Alexanderplatz, Berlin",
        "end_address": "Torstraße, Berlin",
    }
    leg.update(overrides)
    return {
        "status": "OK",
        "routes": [{"legs": [leg], "overview_polyline": {"points": "_p~iF~ps|U_ulLnnqC"}}],
    }


def make_service(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> DirectionsService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DirectionsService(
        api_key=kwargs.pop("api_key", "test_api_key"),
        url="https://maps.test/directions/json",
        timeout=1.0,
        road_factor=1.3,
        average_speed_kmh=40.0,
        client=client,
    )


class TestHaversineEstimate:
    """Тесты запасной оценки маршрута."""

    def test_road_factor_applied(self) -> None:
        """11.12 км по прямой: 17 минут при 40 км/ч, с коэффициентом 22 минуты и 14.46 км."""
        estimate = haversine_estimate((0.0, 0.0), (0.1, 0.0))

        assert estimate.method == RouteMethod.HAVERSINE_FORMULA
        assert estimate.is_estimated is True
        assert estimate.distance_km == pytest.approx(11.1195 * 1.3, abs=0.01)
        assert estimate.duration_minutes == 22
        assert estimate.polyline is None

    def test_half_minute_rounds_up(self) -> None:
        # ~3.34 км: 5 мин по прямой, 6.5 с коэффициентом 1.3
        estimate = haversine_estimate((0.0, 0.0), (0.03, 0.0), 1.3, 40.0)
        assert estimate.duration_minutes == 7

    def test_points_are_straight_line(self) -> None:
        estimate = haversine_estimate(ORIGIN, DESTINATION)
        assert estimate.points == [ORIGIN, DESTINATION]

    def test_same_point(self) -> None:
        estimate = haversine_estimate(ORIGIN, ORIGIN)
        assert estimate.distance_km == 0.0
        assert estimate.duration_minutes == 0


class TestDirectionsResult:
    """Тесты модели ответа."""

    def test_best_duration_prefers_traffic(self) -> None:
        result = DirectionsResult(distance_meters=1500, duration_seconds=300, polyline="", duration_in_traffic_seconds=420)
        assert result.best_duration_seconds == 420
        assert result.distance_km == 1.5

    def test_best_duration_without_traffic(self) -> None:
        result = DirectionsResult(distance_meters=1500, duration_seconds=300, polyline="")
        assert result.best_duration_seconds == 300


class TestGetDirections:
    """Тесты запроса Directions API."""

    @pytest.mark.asyncio
    async def test_request_parameters(self) -> None:
        captured: dict[str, httpx.Request] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, json=directions_payload())

        service = make_service(handler)
        result = await service.get_directions(ORIGIN, DESTINATION)
        await service.close()

        params = captured["request"].url.params
        assert params["origin"] == "52.52,13.405"
        assert params["destination"] == "52.53,13.405"
        assert params["mode"] == "driving"
        assert params["departure_time"] == "now"
        assert params["key"] == "test_api_key"

        assert result.distance_meters == 1520
        assert result.duration_seconds == 300
        assert result.duration_in_traffic_seconds == 420
        assert result.start_address == "Alexanderplatz, Berlin"

    @pytest.mark.asyncio
    async def test_timeout_raises_timeout_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        service = make_service(handler)
        with pytest.raises(TimeoutFailure):
            await service.get_directions(ORIGIN, DESTINATION)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, text="boom"),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"status": "ZERO_RESULTS", "routes": []}),
            httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"}),
            httpx.Response(200, json={"status": "OK", "routes": []}),
            httpx.Response(200, json={"status": "OK", "routes": [{"legs": []}]}),
            httpx.Response(200, json={"status": "OK", "routes": [{"legs": [{"distance": {}}]}]}),
        ],
    )
    async def test_bad_responses_raise_route_unavailable(self, response: httpx.Response) -> None:
        service = make_service(lambda request: response)
        with pytest.raises(RouteUnavailable):
            await service.get_directions(ORIGIN, DESTINATION)

    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        service = make_service(lambda request: httpx.Response(200, json=directions_payload()), api_key="")
        with pytest.raises(RouteUnavailable):
            await service.get_directions(ORIGIN, DESTINATION)


class TestEstimateRoute:
    """Тесты оценки маршрута с откатом."""

    @pytest.mark.asyncio
    async def test_uses_directions(self) -> None:
        service = make_service(lambda request: httpx.Response(200, json=directions_payload()))

        estimate = await service.estimate_route(ORIGIN, DESTINATION)

        assert isinstance(estimate, RouteEstimate)
        assert estimate.method == RouteMethod.GOOGLE_DIRECTIONS
        assert estimate.is_estimated is False
        assert estimate.distance_km == 1.52
        assert estimate.duration_minutes == 7
        assert estimate.points[0] == pytest.approx((38.5, -120.2))
        assert len(estimate.points) == 2

    @pytest.mark.asyncio
    async def test_half_minute_duration_rounds_up(self) -> None:
        payload = directions_payload(duration_in_traffic={"value": 150, "text": "3 mins"})
        service = make_service(lambda request: httpx.Response(200, json=payload))

        estimate = await service.estimate_route(ORIGIN, DESTINATION)

        assert estimate.duration_minutes == 3

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_haversine(self) -> None:
        """Таймаут API: оценка по прямой с коэффициентом 1.3 и прямая линия вместо маршрута."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        service = make_service(handler)

        estimate = await service.estimate_route(ORIGIN, DESTINATION)
        expected = haversine_estimate(ORIGIN, DESTINATION, 1.3, 40.0)

        assert estimate.method == RouteMethod.HAVERSINE_FORMULA
        assert estimate.distance_km == pytest.approx(expected.distance_km)
        assert estimate.duration_minutes == expected.duration_minutes
        assert estimate.points == [ORIGIN, DESTINATION]

    @pytest.mark.asyncio
    async def test_broken_polyline_keeps_route_numbers(self) -> None:
        payload = directions_payload()
        payload["routes"][0]["overview_polyline"]["points"] = "_p~iF~ps|"

        service = make_service(lambda request: httpx.Response(200, json=payload))
        estimate = await service.estimate_route(ORIGIN, DESTINATION)

        assert estimate.method == RouteMethod.GOOGLE_DIRECTIONS
        assert estimate.points == [ORIGIN, DESTINATION]

# src/core/geo/service.py
"""
Сервис маршрутов через Google Directions API.
При недоступности API маршрут оценивается по прямой (Haversine).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from src.common.constants import RouteMethod, TypeMsg
from src.common.errors import RouteUnavailable, TimeoutFailure
from src.common.logger import log_error, log_info
from src.core.geo import polyline as polyline_codec
from src.core.geo.utils import haversine_km, round_half_up


LatLng = tuple[float, float]


@dataclass
class DirectionsResult:
    """Маршрут, полученный от Directions API."""
    distance_meters: int
    duration_seconds: int
    polyline: str
    distance_text: str = ""
    duration_text: str = ""
    duration_in_traffic_seconds: Optional[int] = None
    start_address: str = ""
    end_address: str = ""

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000.0

    @property
    def best_duration_seconds(self) -> int:
        """Время с учётом пробок, если API его вернул."""
        if self.duration_in_traffic_seconds is not None:
            return self.duration_in_traffic_seconds
        return self.duration_seconds


@dataclass
class RouteEstimate:
    """Итоговая оценка маршрута (API или запасная формула)."""
    distance_km: float
    duration_minutes: int
    method: RouteMethod
    polyline: Optional[str] = None
    points: list[LatLng] = field(default_factory=list)

    @property
    def is_estimated(self) -> bool:
        return self.method == RouteMethod.HAVERSINE_FORMULA


def haversine_estimate(
    origin: LatLng,
    destination: LatLng,
    road_factor: float = 1.3,
    average_speed_kmh: float = 40.0,
) -> RouteEstimate:
    """
    Оценка маршрута по прямой.

    Время считается по средней скорости, затем расстояние и время
    умножаются на коэффициент извилистости дорог.

    Args:
        origin: Начальная точка (lat, lng)
        destination: Конечная точка (lat, lng)
        road_factor: Коэффициент извилистости
        average_speed_kmh: Средняя скорость в городе

    Returns:
        Оценка с методом haversine_formula и прямой линией вместо маршрута
    """
    distance_km = haversine_km(origin[0], origin[1], destination[0], destination[1])
    duration_minutes = round_half_up(distance_km / average_speed_kmh * 60)

    return RouteEstimate(
        distance_km=distance_km * road_factor,
        duration_minutes=round_half_up(duration_minutes * road_factor),
        method=RouteMethod.HAVERSINE_FORMULA,
        polyline=None,
        points=[origin, destination],
    )


class DirectionsService:
    """
    Сервис маршрутов Google Directions.

    Реализует:
    - Запрос маршрута с учётом пробок (departure_time=now)
    - Оценку маршрута с откатом на формулу Haversine
    """

    def __init__(
        self,
        api_key: str | None = None,
        url: str | None = None,
        timeout: float | None = None,
        road_factor: float | None = None,
        average_speed_kmh: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            api_key: API ключ Google Maps (берётся из конфига если None)
            url: Адрес Directions API
            timeout: Таймаут запроса в секундах
            road_factor: Коэффициент извилистости для запасной оценки
            average_speed_kmh: Средняя скорость для запасной оценки
            client: Готовый HTTP клиент (для тестов)
        """
        from src.config import settings

        self._api_key = api_key if api_key is not None else settings.google_maps.GOOGLE_MAPS_API_KEY
        self._url = url or settings.google_maps.DIRECTIONS_URL
        self._timeout = timeout if timeout is not None else settings.google_maps.DIRECTIONS_TIMEOUT
        self._road_factor = road_factor if road_factor is not None else settings.fallback.ROAD_FACTOR
        self._average_speed_kmh = (
            average_speed_kmh if average_speed_kmh is not None else settings.fallback.AVERAGE_SPEED_KMH
        )
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def get_directions(self, origin: LatLng, destination: LatLng) -> DirectionsResult:
        """
        Запрашивает маршрут на автомобиле между двумя точками.

        Raises:
            TimeoutFailure: API не ответил за отведённое время
            RouteUnavailable: Ответ не 200, статус не OK или нет маршрутов
        """
        if not self._api_key:
            raise RouteUnavailable("Google Maps API key не настроен")

        try:
            response = await self._client.get(
                self._url,
                params={
                    "origin": f"{origin[0]},{origin[1]}",
                    "destination": f"{destination[0]},{destination[1]}",
                    "mode": "driving",
                    "departure_time": "now",
                    "key": self._api_key,
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise TimeoutFailure(f"Directions API не ответил за {self._timeout} с") from e
        except httpx.HTTPError as e:
            raise RouteUnavailable(f"Ошибка запроса Directions API: {e}") from e

        if response.status_code != 200:
            raise RouteUnavailable(f"Directions API вернул {response.status_code}")

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise RouteUnavailable("Directions API вернул не JSON") from e

        status = data.get("status")
        if status != "OK":
            error_message = data.get("error_message")
            suffix = f" - {error_message}" if error_message else ""
            raise RouteUnavailable(f"Directions API error: {status}{suffix}")

        routes = data.get("routes") or []
        if not routes:
            raise RouteUnavailable("Маршрут не найден")

        route = routes[0]
        legs = route.get("legs") or []
        if not legs:
            raise RouteUnavailable("В маршруте нет участков")

        leg = legs[0]
        try:
            traffic = leg.get("duration_in_traffic")
            return DirectionsResult(
                distance_meters=int(leg["distance"]["value"]),
                duration_seconds=int(leg["duration"]["value"]),
                polyline=route.get("overview_polyline", {}).get("points", ""),
                distance_text=leg["distance"].get("text", ""),
                duration_text=leg["duration"].get("text", ""),
                duration_in_traffic_seconds=int(traffic["value"]) if traffic else None,
                start_address=leg.get("start_address", ""),
                end_address=leg.get("end_address", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RouteUnavailable(f"Некорректный ответ Directions API: {e}") from e

    async def estimate_route(self, origin: LatLng, destination: LatLng) -> RouteEstimate:
        """
        Оценивает маршрут: сначала Directions API, при любой ошибке формула Haversine.

        Returns:
            Оценка маршрута (никогда не поднимает исключение)
        """
        try:
            result = await self.get_directions(origin, destination)
        except (TimeoutFailure, RouteUnavailable) as e:
            await log_info(
                f"Маршрут оценён по прямой: {e.message}",
                type_msg=TypeMsg.WARNING,
            )
            return haversine_estimate(origin, destination, self._road_factor, self._average_speed_kmh)

        try:
            points = polyline_codec.decode(result.polyline) if result.polyline else []
        except Exception as e:
            await log_error(f"Ошибка декодирования polyline: {e}")
            points = []

        return RouteEstimate(
            distance_km=round(result.distance_km, 2),
            duration_minutes=round_half_up(result.best_duration_seconds / 60),
            method=RouteMethod.GOOGLE_DIRECTIONS,
            polyline=result.polyline or None,
            points=points or [origin, destination],
        )

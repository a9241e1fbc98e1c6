# src/core/tracking/session.py
"""
Сеанс отслеживания водителя пассажиром.

Подписывается на топик геопозиции водителя, держит последнее состояние
(побеждает последнее пришедшее сообщение), считает ETA и обновляет
маршрут для отображения. Изменения раздаются подписчикам updates().
Потерю связи с брокером сеанс замечает сам и переподключается.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Optional

from src.common.constants import TransportRole
from src.common.errors import ConnectionFailure, DecodeFailure, RecordNotFound, RelayError
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.config.loader import FallbackSettings, MqttSettings, TrackingSettings
from src.core.geo.service import DirectionsService, haversine_estimate
from src.core.geo.utils import haversine_m
from src.core.location.models import PositionSample, decode_sample, now_ms
from src.core.location.topics import driver_location_topic, parse_driver_id
from src.core.rides.watcher import PickupStatusWatcher
from src.core.tracking.eta import estimate_eta_seconds, format_eta, format_last_update
from src.core.tracking.models import (
    GeoPoint,
    RouteState,
    TrackingContext,
    TrackingSnapshot,
    TrackingTarget,
)
from src.core.tracking.targets import TargetResolver
from src.infra.mqtt_transport import MqttCredentials, MqttTransport, TransportMessage


class TrackingSession:
    """
    Отслеживание одного водителя.

    Реализует:
    - Подключение и подписку на топик водителя, переподключение после обрыва
    - Обработку сообщений с отбрасыванием некорректных
    - ETA по текущей скорости и маршрут с откатом на прямую линию
    - Смену цели (посадка, следующая посадка, назначение)
    - Повтор после ошибки (retry)
    """

    def __init__(
        self,
        transport: MqttTransport,
        directions: DirectionsService,
        context: TrackingContext,
        resolver: TargetResolver | None = None,
        watcher: PickupStatusWatcher | None = None,
        credentials: MqttCredentials | None = None,
        mqtt_settings: MqttSettings | None = None,
        tracking_settings: TrackingSettings | None = None,
        fallback_settings: FallbackSettings | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if mqtt_settings is None or tracking_settings is None or fallback_settings is None:
            from src.config import settings
            mqtt_settings = mqtt_settings or settings.mqtt
            tracking_settings = tracking_settings or settings.tracking
            fallback_settings = fallback_settings or settings.fallback

        self._transport = transport
        self._directions = directions
        self._context = context
        self._resolver = resolver or TargetResolver()
        self._watcher = watcher
        self._credentials = credentials or MqttCredentials.for_role(TransportRole.PASSENGER, mqtt_settings)
        self._mqtt_settings = mqtt_settings
        self._settings = tracking_settings
        self._fallback = fallback_settings
        self._clock = clock

        self._driver_id: Optional[str] = None
        self._topic: Optional[str] = None
        self._location: Optional[PositionSample] = None
        self._last_update_ms: Optional[int] = None
        self._target: Optional[TrackingTarget] = None
        self._route: Optional[RouteState] = None

        # Ошибка связи снимается после успешного переподключения,
        # ошибка цели после успешного выбора цели
        self._connection_error: Optional[RelayError] = None
        self._target_error: Optional[RelayError] = None

        self._consumer: Optional[asyncio.Task] = None
        self._connection_watch: Optional[asyncio.Task] = None
        self._route_task: Optional[asyncio.Task] = None
        self._listeners: list[asyncio.Queue[Optional[TrackingSnapshot]]] = []
        self._snapshot = TrackingSnapshot()

    # -------------------------------------------------------------------------
    # Состояние
    # -------------------------------------------------------------------------

    @property
    def driver_id(self) -> Optional[str]:
        return self._driver_id

    @property
    def is_tracking(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def is_live(self) -> bool:
        """Соединение активно и подписка на топик водителя на месте."""
        return (
            self._topic is not None
            and self._transport.is_connected
            and self._topic in self._transport.subscribed_topics
        )

    @property
    def location(self) -> Optional[PositionSample]:
        return self._location

    @property
    def target(self) -> Optional[TrackingTarget]:
        return self._target

    @property
    def route(self) -> Optional[RouteState]:
        return self._route

    @property
    def snapshot(self) -> TrackingSnapshot:
        return self._snapshot

    # -------------------------------------------------------------------------
    # Жизненный цикл
    # -------------------------------------------------------------------------

    async def start(self, driver_id: str) -> bool:
        """
        Начинает отслеживание водителя.

        Повторный вызов для того же водителя при живом соединении ничего
        не делает; после обрыва переподключается и подписывается заново.
        Для другого водителя предыдущее отслеживание останавливается.

        Returns:
            False если ID водителя недопустим или не удалось подключиться и подписаться
        """
        if self._driver_id is not None and driver_id == self._driver_id:
            if self.is_tracking and self.is_live:
                return True
            return await self._resume()

        if self._driver_id is not None or self.is_tracking:
            await self.stop()

        try:
            topic = driver_location_topic(self._mqtt_settings.MQTT_TOPIC_NAMESPACE, driver_id)
        except ValueError as e:
            await log_warning(f"Отслеживание не запущено: {e}")
            self._fail(RelayError(str(e)))
            return False

        self._driver_id = driver_id
        self._topic = topic
        self._connection_error = None
        self._target_error = None

        if not await self._connect_and_subscribe():
            return False

        self._ensure_background_tasks()

        await self._apply_target(await self._resolver.resolve(self._context))
        self._ensure_pickup_watch()

        await log_info(f"Отслеживание водителя {driver_id} по топику {topic}")
        self._publish()
        return True

    def _ensure_pickup_watch(self) -> None:
        if self._watcher is None or self._watcher.is_running:
            return
        if self._context.booking_id and self._context.ride_id:
            self._watcher.start(
                self._context.booking_id,
                self._on_pickup_status,
                initial=self._resolver.last_status,
            )

    async def retry(self) -> bool:
        """
        Повтор после ошибки: восстанавливает соединение и заново выбирает цель.

        Returns:
            True если после повтора ошибок нет
        """
        if self._driver_id is None:
            return False

        if not await self._resume():
            return False

        await self._apply_target(await self._resolver.resolve(self._context))
        self._ensure_pickup_watch()
        self._publish()
        return self._target_error is None

    async def stop(self) -> None:
        """Отписывается, отключается и завершает все фоновые задачи и потоки updates()."""
        tasks = (self._connection_watch, self._consumer, self._route_task)
        self._connection_watch = None
        self._consumer = None
        self._route_task = None

        for task in tasks:
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                await log_error(f"Фоновая задача отслеживания завершилась с ошибкой: {e}")

        if self._watcher is not None:
            await self._watcher.stop()

        if self._topic is not None and self._transport.is_connected:
            await self._transport.unsubscribe(self._topic)
        await self._transport.disconnect()

        if self._driver_id is not None:
            await log_info(f"Отслеживание водителя {self._driver_id} остановлено")

        self._driver_id = None
        self._topic = None
        self._location = None
        self._last_update_ms = None
        self._target = None
        self._route = None
        self._connection_error = None
        self._target_error = None
        self._snapshot = TrackingSnapshot()

        listeners, self._listeners = self._listeners, []
        for queue in listeners:
            queue.put_nowait(None)

    async def updates(self) -> AsyncIterator[TrackingSnapshot]:
        """
        Поток снимков состояния. Первым приходит текущий снимок;
        поток завершается после stop().
        """
        queue: asyncio.Queue[Optional[TrackingSnapshot]] = asyncio.Queue()
        queue.put_nowait(self._snapshot)
        self._listeners.append(queue)
        try:
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    return
                yield snapshot
        finally:
            if queue in self._listeners:
                self._listeners.remove(queue)

    # -------------------------------------------------------------------------
    # Соединение
    # -------------------------------------------------------------------------

    async def _connect_and_subscribe(self) -> bool:
        """Подключается при необходимости и восстанавливает подписку на топик водителя."""
        if not self._transport.is_connected:
            connected = await self._transport.connect(
                client_id=f"passenger_{self._clock()}",
                username=self._credentials.username,
                password=self._credentials.password,
            )
            if not connected:
                self._fail(ConnectionFailure(self._transport.last_error or "Connection failed"))
                return False

        if self._topic not in self._transport.subscribed_topics:
            if not await self._transport.subscribe(self._topic, self._mqtt_settings.MQTT_QOS):
                self._fail(ConnectionFailure(self._transport.last_error or f"Subscribe to {self._topic} failed"))
                return False

        self._connection_error = None
        return True

    async def _resume(self) -> bool:
        """Переподключение для уже выбранного водителя без сброса состояния."""
        if not self.is_live:
            await log_info(f"Восстановление подписки на {self._topic}")
            if not await self._connect_and_subscribe():
                return False
        self._ensure_background_tasks()
        self._publish()
        return True

    def _ensure_background_tasks(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())
        if self._connection_watch is None or self._connection_watch.done():
            self._connection_watch = asyncio.create_task(self._watch_connection())

    async def _watch_connection(self) -> None:
        """Периодически проверяет соединение и переподключается после обрыва."""
        while True:
            await asyncio.sleep(self._settings.RECONNECT_CHECK_SEC)
            if self.is_live:
                continue

            try:
                if self._snapshot.connected:
                    await log_warning(f"Связь с брокером потеряна, топик {self._topic}")
                    self._publish()

                if await self._connect_and_subscribe():
                    await log_info(f"Подписка на {self._topic} восстановлена")
                    self._publish()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка переподключения к брокеру: {e}")

    # -------------------------------------------------------------------------
    # Сообщения
    # -------------------------------------------------------------------------

    async def _consume(self) -> None:
        try:
            async for message in self._transport.messages():
                await self.handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await log_error(f"Ошибка потока сообщений MQTT: {e}", exc_info=True)
            self._fail(ConnectionFailure(f"Tracking error: {e}"))

    async def handle_message(self, message: TransportMessage) -> bool:
        """
        Обрабатывает входящее сообщение.

        Returns:
            True если состояние обновлено
        """
        driver_id = parse_driver_id(message.topic, self._mqtt_settings.MQTT_TOPIC_NAMESPACE)
        if driver_id is None or driver_id != self._driver_id:
            await log_debug(f"Пропущено сообщение с чужого топика {message.topic}")
            return False

        try:
            sample = decode_sample(message.payload, driver_id)
        except DecodeFailure as e:
            await log_warning(f"Сообщение водителя {driver_id} отброшено: {e.message}")
            return False

        if sample.driver_id != driver_id:
            sample = sample.model_copy(update={"driver_id": driver_id})

        self._location = sample
        self._last_update_ms = self._clock()
        self._maybe_refresh_route()
        self._publish()
        return True

    # -------------------------------------------------------------------------
    # Цель и маршрут
    # -------------------------------------------------------------------------

    async def set_target(self, target: TrackingTarget) -> None:
        """Меняет цель; маршрут к прежней цели сбрасывается."""
        await self._apply_target(target)
        self._publish()

    async def _apply_target(self, target: Optional[TrackingTarget]) -> None:
        if target is None:
            self._fail(RecordNotFound("Destination is unavailable"))
            return

        self._target_error = None

        if target == self._target:
            self._maybe_refresh_route()
            return

        self._target = target
        self._route = None

        task, self._route_task = self._route_task, None
        if task is not None and not task.done():
            task.cancel()

        await log_info(f"Цель: {target.status_text} ({target.label})")
        self._maybe_refresh_route()

    async def _on_pickup_status(self, status: Optional[str]) -> None:
        target = await self._resolver.resolve_for_status(self._context, status)
        await self._apply_target(target)
        self._publish()

    def _maybe_refresh_route(self) -> None:
        if self._target is None or self._location is None:
            return
        if self._route_task is not None and not self._route_task.done():
            return

        origin = GeoPoint(self._location.latitude, self._location.longitude)
        if self._route is not None and self._route.target == self._target:
            moved = haversine_m(
                self._route.origin.latitude,
                self._route.origin.longitude,
                origin.latitude,
                origin.longitude,
            )
            if moved <= self._settings.ROUTE_REFETCH_DISTANCE_M:
                return

        self._route_task = asyncio.create_task(self._fetch_route(origin, self._target))

    async def _fetch_route(self, origin: GeoPoint, target: TrackingTarget) -> None:
        try:
            estimate = await self._directions.estimate_route(origin.as_tuple(), target.point.as_tuple())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await log_warning(f"Маршрут недоступен, используется прямая линия: {e}")
            estimate = haversine_estimate(
                origin.as_tuple(),
                target.point.as_tuple(),
                self._fallback.ROAD_FACTOR,
                self._fallback.AVERAGE_SPEED_KMH,
            )

        if target != self._target:
            return

        self._route = RouteState(origin=origin, target=target, estimate=estimate)
        self._publish()

    async def wait_for_route(self) -> None:
        """Дожидается текущего запроса маршрута, если он идёт."""
        task = self._route_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -------------------------------------------------------------------------
    # Снимки
    # -------------------------------------------------------------------------

    def _fail(self, error: RelayError) -> None:
        if isinstance(error, ConnectionFailure):
            self._connection_error = error
        else:
            self._target_error = error
        self._publish()

    def _build_snapshot(self) -> TrackingSnapshot:
        target_point = self._target.point.as_tuple() if self._target is not None else None
        eta_seconds = estimate_eta_seconds(
            self._location,
            target_point,
            self._settings.STATIONARY_SPEED_KMH,
        )
        last_update = (
            format_last_update(self._last_update_ms, self._clock())
            if self._last_update_ms is not None
            else None
        )
        error = self._connection_error or self._target_error
        return TrackingSnapshot(
            driver_id=self._driver_id,
            connected=self._transport.is_connected,
            location=self._location,
            target=self._target,
            route=self._route,
            eta_seconds=eta_seconds,
            eta_text=format_eta(eta_seconds),
            last_update_text=last_update,
            error=error.message if error is not None else None,
            retryable=error.retryable if error is not None else False,
            route_points=tuple(self._route.points) if self._route is not None else (),
        )

    def _publish(self) -> None:
        self._snapshot = self._build_snapshot()
        for queue in self._listeners:
            queue.put_nowait(self._snapshot)

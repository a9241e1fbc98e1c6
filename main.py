#!/usr/bin/env python3
# main.py
"""
Главная точка входа ретранслятора геолокации.
Запускает публикацию позиции водителя или отслеживание водителя пассажиром
в зависимости от аргументов.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import Optional

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None

MODES = ("driver", "passenger")


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def wait_for_shutdown() -> None:
    if _shutdown_event is not None:
        await _shutdown_event.wait()
    else:
        await asyncio.Event().wait()


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise SystemExit(f"Не задана переменная окружения {name}")
    return value


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


async def run_driver() -> None:
    """Публикует позицию водителя из gpsd до сигнала остановки."""
    from src.core.location.publisher import DriverLocationPublisher
    from src.infra.gpsd_provider import GpsdPositionProvider
    from src.infra.mqtt_transport import MqttTransport

    driver_id = _require_env("DRIVER_ID")
    await log_info(f"Запуск публикации позиции водителя {driver_id}...", type_msg=TypeMsg.INFO)

    publisher = DriverLocationPublisher(MqttTransport(), GpsdPositionProvider())
    if not await publisher.start(driver_id):
        await log_error("Публикация позиции не запущена")
        return

    try:
        await wait_for_shutdown()
    finally:
        await publisher.stop()
        await log_info(
            f"Публикация завершена, отправлено сообщений: {publisher.published_count}",
            type_msg=TypeMsg.INFO,
        )


async def run_passenger() -> None:
    """Отслеживает водителя и показывает уведомления пассажиру."""
    from src.core.geo.service import DirectionsService
    from src.core.notifications import LogNotifier, NotificationListener, NotificationRepository
    from src.core.rides import PickupStatusWatcher, RideRepository
    from src.core.tracking import GeoPoint, TargetResolver, TrackingContext, TrackingSession
    from src.infra.database import DatabaseManager
    from src.infra.mqtt_transport import MqttTransport

    driver_id = _require_env("DRIVER_ID")
    passenger_id = os.getenv("PASSENGER_ID") or None

    destination = None
    dest_lat, dest_lng = _optional_float("DESTINATION_LAT"), _optional_float("DESTINATION_LNG")
    if dest_lat is not None and dest_lng is not None:
        destination = GeoPoint(dest_lat, dest_lng)

    context = TrackingContext(
        pickup=GeoPoint(float(_require_env("PICKUP_LAT")), float(_require_env("PICKUP_LNG"))),
        passenger_id=passenger_id,
        booking_id=os.getenv("BOOKING_ID") or None,
        ride_id=os.getenv("RIDE_ID") or None,
        pickup_label=os.getenv("PICKUP_LABEL") or "Pickup Location",
        destination=destination,
        destination_label=os.getenv("DESTINATION_LABEL") or None,
    )

    db = DatabaseManager()
    try:
        await db.connect()
    except Exception as e:
        await log_error(f"PostgreSQL недоступен, статус посадки не отслеживается: {e}")
        db = None

    rides = RideRepository(db) if db is not None else None
    directions = DirectionsService()
    session = TrackingSession(
        transport=MqttTransport(),
        directions=directions,
        context=context,
        resolver=TargetResolver(rides),
        watcher=PickupStatusWatcher(rides) if rides is not None else None,
    )

    listener = None
    if db is not None and passenger_id:
        listener = NotificationListener(
            NotificationRepository(db),
            LogNotifier(),
            current_user=lambda: passenger_id,
        )
        listener.start()

    async def render() -> None:
        async for snapshot in session.updates():
            if snapshot.error:
                await log_error(f"Отслеживание: {snapshot.error} (повтор: {snapshot.retryable})")
                continue
            await log_info(
                f"{snapshot.status_text} | ETA {snapshot.eta_text} | {snapshot.last_update_text or '-'}",
                type_msg=TypeMsg.INFO,
            )

    renderer = asyncio.create_task(render())
    try:
        started = await session.start(driver_id)
        while not started and session.snapshot.retryable:
            try:
                await asyncio.wait_for(wait_for_shutdown(), settings.tracking.RECONNECT_CHECK_SEC)
                break
            except asyncio.TimeoutError:
                started = await session.retry()
        if started:
            await wait_for_shutdown()
    finally:
        await session.stop()
        await renderer
        if listener is not None:
            await listener.stop()
        await directions.close()
        if db is not None:
            await db.disconnect()


async def main(mode: str) -> None:
    """Главная асинхронная функция."""
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} ({settings.system.ENVIRONMENT}), режим: {mode}",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "driver":
            await run_driver()
        else:
            await run_passenger()
    except asyncio.CancelledError:
        await log_info("Получен сигнал отмены", type_msg=TypeMsg.DEBUG)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}", exc_info=True)
        raise
    finally:
        await log_info("Работа завершена", type_msg=TypeMsg.INFO)


def parse_mode(argv: list[str]) -> str:
    mode = (argv[1] if len(argv) > 1 else settings.system.COMPONENT_MODE).strip().lower()
    if mode not in MODES:
        raise SystemExit(f"Неизвестный режим '{mode}'. Доступно: {', '.join(MODES)}")
    return mode


if __name__ == "__main__":
    try:
        asyncio.run(main(parse_mode(sys.argv)))
    except KeyboardInterrupt:
        pass

# src/core/rides/watcher.py
"""
Наблюдатель за статусом посадки пассажира.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from src.common.logger import log_debug, log_error, log_info
from src.core.rides.repository import RideRepository


StatusCallback = Callable[[Optional[str]], Awaitable[None]]


class PickupStatusWatcher:
    """
    Периодически опрашивает pickup_status бронирования и вызывает
    колбэк при изменении значения.
    """

    def __init__(self, repository: RideRepository, interval: float | None = None) -> None:
        if interval is None:
            from src.config import settings
            interval = settings.tracking.PICKUP_STATUS_POLL_SEC

        self._repository = repository
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._last_status: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_status(self) -> Optional[str]:
        return self._last_status

    def start(self, booking_id: str, on_change: StatusCallback, initial: Optional[str] = None) -> None:
        """
        Запускает опрос.

        Args:
            booking_id: ID бронирования
            on_change: Колбэк, получает новый статус
            initial: Уже известный статус (колбэк не вызывается, пока он не изменится)
        """
        if self.is_running:
            return
        self._last_status = initial
        self._task = asyncio.create_task(self._run(booking_id, on_change))

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def poll_once(self, booking_id: str, on_change: StatusCallback) -> bool:
        """
        Один опрос статуса.

        Returns:
            True если статус изменился
        """
        status = await self._repository.get_pickup_status(booking_id)
        if status == self._last_status:
            return False

        await log_info(f"Статус посадки {booking_id}: {self._last_status} -> {status}")
        self._last_status = status
        await on_change(status)
        return True

    async def _run(self, booking_id: str, on_change: StatusCallback) -> None:
        await log_debug(f"Опрос статуса посадки {booking_id} каждые {self._interval} с")
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.poll_once(booking_id, on_change)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка опроса статуса посадки {booking_id}: {e}")

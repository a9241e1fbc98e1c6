# src/core/location/sampler.py
"""
Снятие координат водителя.

Источник платформы скрыт за PositionProvider. LocationSampler отдаёт
ленивый бесконечный поток показаний: поток провайдера (фильтр по
расстоянию и времени) плюс страховочный периодический опрос.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from src.common.constants import PermissionStatus
from src.common.errors import PermissionDenied, ServiceDisabled
from src.common.logger import log_debug, log_info, log_warning
from src.config.loader import SamplerSettings
from src.core.location.models import RawPosition


class PositionProvider(ABC):
    """Платформенный API геопозиции."""

    @abstractmethod
    async def is_service_enabled(self) -> bool:
        """Включена ли геолокация на устройстве."""

    @abstractmethod
    async def check_permission(self) -> PermissionStatus:
        """Текущий статус разрешения."""

    @abstractmethod
    async def request_permission(self) -> PermissionStatus:
        """Запрашивает разрешение у пользователя."""

    @abstractmethod
    async def current_position(self) -> RawPosition:
        """Однократное получение позиции."""

    @abstractmethod
    def position_stream(self, distance_filter_m: float, time_limit_s: float) -> AsyncIterator[RawPosition]:
        """
        Поток позиций: новое показание при смещении больше distance_filter_m
        или не реже чем раз в time_limit_s.
        """

    async def close(self) -> None:
        """Освобождает ресурсы провайдера."""
        return None


class LocationSampler:
    """
    Поток показаний геопозиции для одного сеанса публикации.

    samples() можно вызвать только один раз; после close() поток завершается
    и опрос GPS прекращается.
    """

    def __init__(self, provider: PositionProvider, sampler_settings: SamplerSettings | None = None) -> None:
        if sampler_settings is None:
            from src.config import settings
            sampler_settings = settings.sampler

        self._provider = provider
        self._settings = sampler_settings
        self._queue: asyncio.Queue[Optional[RawPosition]] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._started = False
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def ensure_access(self) -> None:
        """
        Проверяет, что геолокация включена и разрешена.
        При отказе запрашивает разрешение один раз; при вечном отказе не спрашивает.

        Raises:
            ServiceDisabled: Геолокация выключена
            PermissionDenied: Пользователь отказал
        """
        if not await self._provider.is_service_enabled():
            raise ServiceDisabled("Location services are disabled")

        status = await self._provider.check_permission()
        if status == PermissionStatus.DENIED:
            await log_info("Запрос разрешения на геолокацию")
            status = await self._provider.request_permission()
            if status == PermissionStatus.DENIED:
                raise PermissionDenied("Location permission denied")

        if status == PermissionStatus.DENIED_FOREVER:
            raise PermissionDenied("Location permission permanently denied")

    def samples(self) -> AsyncIterator[RawPosition]:
        """
        Ленивый бесконечный поток показаний.

        Raises:
            RuntimeError: Поток уже был запрошен
        """
        if self._started:
            raise RuntimeError("Поток показаний уже запущен и не может быть перезапущен")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RawPosition]:
        self._tasks = [
            asyncio.create_task(self._initial_fix()),
            asyncio.create_task(self._follow_stream()),
            asyncio.create_task(self._safety_poll()),
        ]
        try:
            while True:
                position = await self._queue.get()
                if position is None:
                    return
                yield position
        finally:
            self._cancel_tasks()

    async def close(self) -> None:
        """Останавливает поток и все фоновые опросы."""
        if self._closed:
            return
        self._closed = True
        self._cancel_tasks()
        self._queue.put_nowait(None)
        await self._provider.close()

    def _cancel_tasks(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks = []

    def _emit(self, position: RawPosition) -> None:
        if not self._closed:
            self._queue.put_nowait(position)

    async def _initial_fix(self) -> None:
        try:
            self._emit(await self._provider.current_position())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await log_warning(f"Не удалось получить начальную позицию: {e}")

    async def _follow_stream(self) -> None:
        while not self._closed:
            try:
                async for position in self._provider.position_stream(
                    self._settings.DISTANCE_FILTER_M,
                    self._settings.TIME_LIMIT_SEC,
                ):
                    self._emit(position)
                await log_debug("Поток позиций провайдера завершился, переподписка")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_warning(f"Ошибка потока позиций: {e}")
            await asyncio.sleep(self._settings.SAFETY_POLL_SEC)

    async def _safety_poll(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._settings.SAFETY_POLL_SEC)
            try:
                self._emit(await self._provider.current_position())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_debug(f"Периодический опрос позиции не удался: {e}")

# src/infra/gpsd_provider.py
"""
Источник координат на базе gpsd.

gpsd отдаёт JSON отчёты построчно по TCP (порт 2947) после команды
?WATCH. Используются отчёты класса TPV с фиксом 2D или 3D.
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from src.common.constants import PermissionStatus
from src.common.errors import ServiceUnavailable, TimeoutFailure
from src.common.logger import log_debug, log_info
from src.core.geo.utils import haversine_m
from src.core.location.models import RawPosition
from src.core.location.sampler import PositionProvider


WATCH_COMMAND = b'?WATCH={"enable":true,"json":true};\n'

# mode в TPV: 0/1 нет фикса, 2 = 2D, 3 = 3D
_MIN_FIX_MODE = 2


def parse_tpv(report: dict[str, Any]) -> Optional[RawPosition]:
    """
    Разбирает TPV отчёт gpsd.

    Returns:
        RawPosition или None, если это не TPV или нет фикса
    """
    if report.get("class") != "TPV" or report.get("mode", 0) < _MIN_FIX_MODE:
        return None

    lat = report.get("lat")
    lon = report.get("lon")
    if lat is None or lon is None:
        return None

    timestamp_ms = None
    raw_time = report.get("time")
    if isinstance(raw_time, str):
        try:
            timestamp_ms = int(datetime.fromisoformat(raw_time.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            timestamp_ms = None

    error_x = report.get("epx")
    error_y = report.get("epy")
    accuracy = max(error_x, error_y) if error_x is not None and error_y is not None else None

    return RawPosition(
        latitude=float(lat),
        longitude=float(lon),
        speed_mps=float(report.get("speed", float("nan"))),
        heading_deg=float(report.get("track", float("nan"))),
        timestamp_ms=timestamp_ms,
        accuracy_m=accuracy,
    )


class GpsdPositionProvider(PositionProvider):
    """Провайдер координат, читающий gpsd через asyncio streams."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        fix_timeout: float = 10.0,
    ) -> None:
        """
        Args:
            host: Адрес gpsd (из конфига если None)
            port: Порт gpsd (из конфига если None)
            fix_timeout: Сколько ждать фикса для current_position()
        """
        if host is None or port is None:
            from src.config import settings
            host = host or settings.sampler.GPSD_HOST
            port = port or settings.sampler.GPSD_PORT

        self._host = host
        self._port = port
        self._fix_timeout = fix_timeout

    async def _open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            reader, writer = await asyncio.open_connection(self._host, self._port)
        except OSError as e:
            raise ServiceUnavailable(f"gpsd недоступен на {self._host}:{self._port}: {e}") from e
        writer.write(WATCH_COMMAND)
        await writer.drain()
        return reader, writer

    async def _reports(self) -> AsyncIterator[RawPosition]:
        reader, writer = await self._open()
        try:
            while True:
                line = await reader.readline()
                if not line:
                    raise ServiceUnavailable("gpsd закрыл соединение")
                try:
                    report = json.loads(line)
                except ValueError:
                    await log_debug(f"Пропущена строка gpsd: {line[:80]!r}")
                    continue
                if not isinstance(report, dict):
                    continue
                position = parse_tpv(report)
                if position is not None:
                    yield position
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def is_service_enabled(self) -> bool:
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=3.0,
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        return True

    async def check_permission(self) -> PermissionStatus:
        # У gpsd нет модели разрешений
        return PermissionStatus.GRANTED

    async def request_permission(self) -> PermissionStatus:
        return PermissionStatus.GRANTED

    async def current_position(self) -> RawPosition:
        """
        Raises:
            TimeoutFailure: Нет фикса за fix_timeout
            ServiceUnavailable: gpsd недоступен
        """
        reports = self._reports()
        try:
            return await asyncio.wait_for(anext(reports), timeout=self._fix_timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutFailure(f"Нет GPS фикса за {self._fix_timeout} с") from e
        finally:
            await reports.aclose()

    async def position_stream(self, distance_filter_m: float, time_limit_s: float) -> AsyncIterator[RawPosition]:
        await log_info(f"Подписка на gpsd {self._host}:{self._port}")
        last: Optional[RawPosition] = None
        last_emit = 0.0

        async for position in self._reports():
            now = time.monotonic()
            if last is not None:
                moved = haversine_m(last.latitude, last.longitude, position.latitude, position.longitude)
                if moved <= distance_filter_m and now - last_emit < time_limit_s:
                    continue
            last = position
            last_emit = now
            yield position

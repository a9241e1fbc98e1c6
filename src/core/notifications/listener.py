# src/core/notifications/listener.py
"""
Слушатель отложенных уведомлений.

Показывает уведомление, только если текущий пользователь есть в списке
получателей, и отмечает его отправленным.
"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from src.common.errors import NotAuthenticated
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.core.notifications.models import PendingNotification
from src.core.notifications.notifier import Notifier
from src.core.notifications.repository import NotificationRepository


class NotificationListener:
    """
    Опрашивает pending_push_notifications и показывает новые уведомления.
    История до запуска слушателя не показывается.
    """

    def __init__(
        self,
        repository: NotificationRepository,
        notifier: Notifier,
        current_user: Callable[[], Optional[str]],
        interval: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        """
        Args:
            repository: Репозиторий уведомлений
            notifier: Способ показа
            current_user: Возвращает ID авторизованного пользователя или None
            interval: Период опроса (секунды)
            batch_size: Сколько записей читать за раз
        """
        if interval is None or batch_size is None:
            from src.config import settings
            interval = interval if interval is not None else settings.notifications.NOTIFICATIONS_POLL_SEC
            batch_size = batch_size if batch_size is not None else settings.notifications.NOTIFICATIONS_BATCH_SIZE

        self._repository = repository
        self._notifier = notifier
        self._current_user = current_user
        self._interval = interval
        self._batch_size = batch_size
        self._cursor: Optional[datetime] = None
        self._seen: deque[str] = deque(maxlen=1000)
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def handle_record(self, record: Mapping[str, Any]) -> bool:
        """
        Обрабатывает одну запись таблицы.

        Returns:
            True если уведомление показано текущему пользователю
        """
        try:
            notification = PendingNotification.model_validate(dict(record))
        except (ValidationError, TypeError, ValueError) as e:
            await log_warning(f"Пропущена некорректная запись уведомления: {e}")
            return False

        user_id = self._current_user()
        if not user_id:
            await log_debug(f"Уведомление {notification.id} пропущено: {NotAuthenticated('no current user').message}")
            return False

        if not notification.is_addressed_to(user_id):
            await log_debug(f"Уведомление {notification.id} не для пользователя {user_id}")
            return False

        await self._notifier.show(notification)
        await self._repository.mark_sent(notification.id)
        return True

    async def poll_once(self) -> int:
        """
        Один проход по новым записям.

        Returns:
            Сколько уведомлений показано
        """
        records = await self._repository.fetch_pending(self._cursor, self._batch_size)
        shown = 0
        for record in records:
            record_id = str(record.get("id"))
            if record_id in self._seen:
                continue
            self._seen.append(record_id)

            created_at = record.get("created_at")
            if isinstance(created_at, datetime) and (self._cursor is None or created_at > self._cursor):
                self._cursor = created_at

            if await self.handle_record(record):
                shown += 1
        return shown

    async def run(self) -> None:
        """Цикл опроса до отмены."""
        if self._cursor is None:
            self._cursor = datetime.now(timezone.utc)
        await log_info(f"Слушатель уведомлений запущен, опрос каждые {self._interval} с")

        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка опроса уведомлений: {e}")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if not self.is_running:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

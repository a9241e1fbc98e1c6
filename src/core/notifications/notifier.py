# src/core/notifications/notifier.py
"""
Отображение уведомлений пользователю.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.common.logger import log_info
from src.core.notifications.models import PendingNotification


class Notifier(ABC):
    """Способ показать уведомление."""

    @abstractmethod
    async def show(self, notification: PendingNotification) -> None:
        ...


class LogNotifier(Notifier):
    """Выводит уведомление в лог."""

    async def show(self, notification: PendingNotification) -> None:
        await log_info(
            f"[{notification.notification_type}] {notification.title}: {notification.body}",
            extra={"notification_id": notification.id},
        )

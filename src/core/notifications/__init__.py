# src/core/notifications/__init__.py
"""
Отложенные уведомления пользователям.
"""

from src.core.notifications.models import PendingNotification
from src.core.notifications.notifier import LogNotifier, Notifier
from src.core.notifications.repository import NotificationRepository
from src.core.notifications.listener import NotificationListener

__all__ = [
    "PendingNotification",
    "Notifier",
    "LogNotifier",
    "NotificationRepository",
    "NotificationListener",
]

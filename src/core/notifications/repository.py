# src/core/notifications/repository.py
"""
Репозиторий отложенных уведомлений.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from src.common.logger import log_error, log_warning
from src.infra.database import DatabaseManager


class NotificationRepository:
    """Чтение pending_push_notifications и отметка об отправке."""

    MARK_SENT_FUNCTION = "mark_push_notification_sent"

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def fetch_pending(self, after: Optional[datetime], limit: int = 50) -> list[dict[str, Any]]:
        """
        Уведомления, созданные позже after, в порядке создания.

        Записи возвращаются как есть; проверка формата на стороне потребителя.
        """
        try:
            if after is None:
                rows = await self._db.fetch(
                    """
                    SELECT id, title, body, target_user_ids, notification_type, created_at
                    FROM pending_push_notifications
                    ORDER BY created_at
                    LIMIT $1
                    """,
                    limit,
                )
            else:
                rows = await self._db.fetch(
                    """
                    SELECT id, title, body, target_user_ids, notification_type, created_at
                    FROM pending_push_notifications
                    WHERE created_at > $1
                    ORDER BY created_at
                    LIMIT $2
                    """,
                    after,
                    limit,
                )
        except Exception as e:
            await log_error(f"Ошибка получения уведомлений: {e}")
            raise

        return [dict(row) for row in rows]

    async def mark_sent(self, notification_id: str) -> bool:
        """Отмечает уведомление отправленным (RPC). Ошибки не поднимаются."""
        try:
            await self._db.rpc(self.MARK_SENT_FUNCTION, notification_id=notification_id)
            return True
        except Exception as e:
            await log_warning(f"Не удалось отметить уведомление {notification_id}: {e}")
            return False

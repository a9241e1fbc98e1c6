# src/core/notifications/models.py
"""
Модель отложенного уведомления (таблица pending_push_notifications).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PendingNotification(BaseModel):
    """Уведомление для группы пользователей."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(..., description="UUID уведомления")
    title: str = Field(..., description="Заголовок")
    body: str = Field(..., description="Текст")
    target_user_ids: list[str] = Field(default_factory=list, description="Получатели")
    notification_type: str = Field("general", description="Тип уведомления")
    created_at: Optional[datetime] = Field(None, description="Время создания")

    @field_validator("id", mode="before")
    @classmethod
    def id_to_str(cls, v):
        return str(v) if v is not None else v

    @field_validator("target_user_ids", mode="before")
    @classmethod
    def ids_to_str(cls, v):
        if v is None:
            return []
        return [str(item) for item in v]

    @field_validator("notification_type", mode="before")
    @classmethod
    def default_type(cls, v):
        return v or "general"

    def is_addressed_to(self, user_id: str) -> bool:
        return user_id in self.target_user_ids

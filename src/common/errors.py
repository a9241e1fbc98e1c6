# src/common/errors.py
"""
Таксономия ошибок ретранслятора геолокации.

Ожидаемые сбои (нет GPS, таймаут API) поглощаются и деградируют до
запасного значения. Неожиданные (пропала запись поездки) поднимаются
в слой отображения как ошибка с возможностью повтора.
"""

from __future__ import annotations


class RelayError(Exception):
    """Базовая ошибка ретранслятора."""

    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class PermissionDenied(RelayError):
    """Пользователь отказал в доступе к геолокации."""
    pass


class ServiceUnavailable(RelayError):
    """Сервис (геолокация или транспорт) недоступен."""
    pass


class ServiceDisabled(ServiceUnavailable):
    """Геолокация на устройстве выключена."""
    pass


class ConnectionFailure(RelayError):
    """Не удалось подключиться к брокеру."""

    retryable = True


class TimeoutFailure(RelayError):
    """Внешний вызов не уложился в дедлайн."""
    pass


class RouteUnavailable(RelayError):
    """Directions API не вернул маршрут."""
    pass


class DecodeFailure(RelayError):
    """Некорректное сообщение (сбрасывается, не фатально)."""
    pass


class NotAuthenticated(RelayError):
    """Нет активной сессии пользователя."""
    pass


class RecordNotFound(RelayError):
    """Отсутствуют обязательные данные (например, запись поездки)."""

    retryable = True

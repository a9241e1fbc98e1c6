# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TransportRole(str, Enum):
    """Роль клиента MQTT (у каждой свои учётные данные)."""
    DRIVER = "driver"
    PASSENGER = "passenger"


class ConnectionState(str, Enum):
    """Состояния транспортного клиента."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PermissionStatus(str, Enum):
    """Статусы разрешения на геолокацию."""
    GRANTED = "granted"
    DENIED = "denied"
    DENIED_FOREVER = "denied_forever"


class PickupStatus(str, Enum):
    """Статусы посадки пассажира (колонка bookings.pickup_status)."""
    PENDING = "pending"
    ARRIVED = "arrived"


class TargetKind(str, Enum):
    """Текущая цель отслеживания."""
    PICKUP = "pickup"
    NEXT_PICKUP = "next_pickup"
    DESTINATION = "destination"


class RouteMethod(str, Enum):
    """Способ расчёта маршрута."""
    GOOGLE_DIRECTIONS = "google_directions"
    HAVERSINE_FORMULA = "haversine_formula"


# Статус бронирования, при котором пассажир едет в поездке
BOOKING_ACCEPTED = "accepted"

# Текст ETA, когда оценка невозможна
ETA_UNKNOWN = "--"

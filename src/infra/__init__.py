# src/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: PostgreSQL, MQTT брокер, gpsd.
"""

from src.infra.database import DatabaseManager
from src.infra.mqtt_transport import MqttCredentials, MqttTransport, TransportMessage

__all__ = [
    "DatabaseManager",
    "MqttCredentials",
    "MqttTransport",
    "TransportMessage",
]

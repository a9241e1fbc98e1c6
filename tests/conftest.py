# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, AsyncIterator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "test_api_key")
os.environ.setdefault("MQTT_DRIVER_PASSWORD", "driver_secret")
os.environ.setdefault("MQTT_PASSENGER_PASSWORD", "passenger_secret")

from src.common.constants import ConnectionState, PermissionStatus
from src.config.loader import (
    FallbackSettings,
    MqttSettings,
    SamplerSettings,
    TrackingSettings,
)
from src.core.location.models import RawPosition
from src.core.location.sampler import PositionProvider
from src.infra.mqtt_transport import TransportMessage


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "carpool_relay_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "MQTT_HOST": "broker.test.local",
        "MQTT_TLS_PORT": 8883,
        "MQTT_WSS_PORTS": [443, 8884],
        "MQTT_WS_PATH": "/mqtt",
        "MQTT_KEEPALIVE": 20,
        "MQTT_CONNECT_TIMEOUT": 15.0,
        "MQTT_TOPIC_NAMESPACE": "carpool",
        "MQTT_QOS": 1,
        "MQTT_DRIVER_USERNAME": "carpool_driver",
        "MQTT_PASSENGER_USERNAME": "carpool_passenger",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "carpool_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_RETRY_ATTEMPTS": 2,
        "DB_RETRY_DELAY": 0.5,
        "DISTANCE_FILTER_M": 5.0,
        "TIME_LIMIT_SEC": 3.0,
        "SAFETY_POLL_SEC": 5.0,
        "ROUTE_REFETCH_DISTANCE_M": 100.0,
        "ROAD_FACTOR": 1.3,
        "AVERAGE_SPEED_KMH": 40.0,
        "NOTIFICATIONS_POLL_SEC": 10.0,
        "NOTIFICATIONS_BATCH_SIZE": 50,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def mqtt_settings() -> MqttSettings:
    """Настройки MQTT с короткими таймаутами."""
    return MqttSettings(
        MQTT_HOST="broker.test.local",
        MQTT_CONNECT_TIMEOUT=15.0,
        MQTT_MIN_ATTEMPT_TIMEOUT=3.0,
        MQTT_DRIVER_USERNAME="carpool_driver",
        MQTT_DRIVER_PASSWORD="driver_secret",
        MQTT_PASSENGER_USERNAME="carpool_passenger",
        MQTT_PASSENGER_PASSWORD="passenger_secret",
    )


@pytest.fixture
def sampler_settings() -> SamplerSettings:
    """Настройки снятия координат с быстрым опросом."""
    return SamplerSettings(DISTANCE_FILTER_M=5.0, TIME_LIMIT_SEC=3.0, SAFETY_POLL_SEC=0.01)


@pytest.fixture
def tracking_settings() -> TrackingSettings:
    return TrackingSettings(
        ROUTE_REFETCH_DISTANCE_M=100.0,
        STATIONARY_SPEED_KMH=1.0,
        PICKUP_STATUS_POLL_SEC=0.01,
        RECONNECT_CHECK_SEC=0.01,
    )


@pytest.fixture
def fallback_settings() -> FallbackSettings:
    return FallbackSettings(ROAD_FACTOR=1.3, AVERAGE_SPEED_KMH=40.0)


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetchval = AsyncMock(return_value=None)
    db.rpc = AsyncMock(return_value=None)
    return db


class FakeTransport:
    """
    Транспорт в памяти с интерфейсом MqttTransport.
    Входящие сообщения подаются через feed().
    """

    def __init__(self, connect_result: bool = True) -> None:
        self.connect_result = connect_result
        self.connect_calls: list[tuple[str, str, str]] = []
        self.published: list[tuple[str, bytes, int]] = []
        self.subscriptions: list[str] = []
        self.unsubscribed: list[str] = []
        self.publish_result = True
        self.last_error: Optional[str] = None
        self.state = ConnectionState.DISCONNECTED
        self._queue: asyncio.Queue[Optional[TransportMessage]] = asyncio.Queue()

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def subscribed_topics(self) -> frozenset[str]:
        return frozenset(self.subscriptions)

    async def connect(self, client_id: str, username: str, password: str) -> bool:
        self.connect_calls.append((client_id, username, password))
        if self.connect_result:
            self.state = ConnectionState.CONNECTED
        else:
            self.last_error = "Connection timeout: Unable to reach server. Please check your network connection."
        return self.connect_result

    async def disconnect(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.subscriptions = []

    async def subscribe(self, topic: str, qos: Optional[int] = None) -> bool:
        if not self.is_connected:
            return False
        self.subscriptions.append(topic)
        return True

    async def unsubscribe(self, topic: str) -> bool:
        self.unsubscribed.append(topic)
        if topic in self.subscriptions:
            self.subscriptions.remove(topic)
        return True

    async def publish(self, topic: str, payload: str | bytes, qos: Optional[int] = None, retain: bool = False) -> bool:
        if not self.is_connected:
            return False
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        self.published.append((topic, data, qos))
        return self.publish_result

    def drop(self) -> None:
        """Обрыв связи со стороны брокера: подписки теряются."""
        self.state = ConnectionState.DISCONNECTED
        self.subscriptions = []

    def feed(self, topic: str, payload: str | bytes) -> None:
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        self._queue.put_nowait(TransportMessage(topic=topic, payload=data))

    async def messages(self) -> AsyncIterator[TransportMessage]:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        await self.disconnect()
        self._queue.put_nowait(None)


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Транспорт MQTT в памяти."""
    return FakeTransport()


@pytest.fixture
def mock_paho_client() -> MagicMock:
    """Мок клиента paho-mqtt."""
    client = MagicMock()
    client.connect_async = MagicMock(return_value=None)
    client.loop_start = MagicMock(return_value=0)
    client.loop_stop = MagicMock(return_value=0)
    client.disconnect = MagicMock(return_value=0)
    client.subscribe = MagicMock(return_value=(0, 1))
    client.unsubscribe = MagicMock(return_value=(0, 2))
    info = MagicMock()
    info.rc = 0
    client.publish = MagicMock(return_value=info)
    return client


class FakeProvider(PositionProvider):
    """Источник координат в памяти."""

    def __init__(
        self,
        enabled: bool = True,
        permission: PermissionStatus = PermissionStatus.GRANTED,
        after_request: PermissionStatus = PermissionStatus.GRANTED,
        current: Optional[RawPosition] = None,
        stream: Optional[list[RawPosition]] = None,
    ) -> None:
        self.enabled = enabled
        self.permission = permission
        self.after_request = after_request
        self.current = current or RawPosition(latitude=1.0, longitude=2.0, speed_mps=3.0)
        self.stream = stream or []
        self.requests = 0
        self.current_calls = 0
        self.closed = False

    async def is_service_enabled(self) -> bool:
        return self.enabled

    async def check_permission(self) -> PermissionStatus:
        return self.permission

    async def request_permission(self) -> PermissionStatus:
        self.requests += 1
        return self.after_request

    async def current_position(self) -> RawPosition:
        self.current_calls += 1
        return self.current

    async def position_stream(self, distance_filter_m: float, time_limit_s: float) -> AsyncIterator[RawPosition]:
        for position in self.stream:
            yield position

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_provider() -> type[FakeProvider]:
    """Класс источника координат в памяти."""
    return FakeProvider


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Ждёт, пока predicate() не станет истинным."""
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def eventually():
    """Ожидание условия в асинхронных тестах."""
    return wait_until

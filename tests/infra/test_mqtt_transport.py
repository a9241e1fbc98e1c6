# tests/infra/test_mqtt_transport.py
"""
Тесты транспорта MQTT (клиент paho заменён моками).
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional
from unittest.mock import MagicMock

import pytest

from src.common.constants import ConnectionState, TransportRole
from src.config.loader import MqttSettings
from src.infra.mqtt_transport import (
    CONNECTION_TIMEOUT_MESSAGE,
    MqttCredentials,
    MqttTransport,
    describe_connack,
)


Behaviour = Callable[[MagicMock, str], None]


def make_client() -> MagicMock:
    client = MagicMock()
    client.subscribe.return_value = (0, 1)
    client.unsubscribe.return_value = (0, 2)
    client.publish.return_value = MagicMock(rc=0)
    return client


def accept(client: MagicMock, transport: str) -> None:
    client.on_connect(client, None, None, 0, None)


def reject_with(code: int) -> Behaviour:
    def behaviour(client: MagicMock, transport: str) -> None:
        client.on_connect(client, None, None, code, None)
    return behaviour


def silent(client: MagicMock, transport: str) -> None:
    """Брокер не отвечает."""


class ClientFactory:
    """Фабрика клиентов paho с управляемым поведением по транспорту."""

    def __init__(self, behaviour: Behaviour | dict[str, Behaviour]) -> None:
        self.behaviour = behaviour
        self.clients: list[MagicMock] = []
        self.calls: list[tuple[str, str]] = []

    def __call__(self, client_id: str, transport: str) -> MagicMock:
        client = make_client()
        self.calls.append((client_id, transport))
        self.clients.append(client)

        behaviour = self.behaviour
        if isinstance(behaviour, dict):
            behaviour = behaviour.get(transport, silent)

        client.connect_async.side_effect = lambda host, port, keepalive=60: behaviour(client, transport)
        return client


def make_settings(**overrides: Any) -> MqttSettings:
    values: dict[str, Any] = {
        "MQTT_HOST": "broker.test.local",
        "MQTT_CONNECT_TIMEOUT": 15.0,
        "MQTT_MIN_ATTEMPT_TIMEOUT": 3.0,
        "MQTT_DRIVER_USERNAME": "carpool_driver",
        "MQTT_DRIVER_PASSWORD": "driver_secret",
        "MQTT_PASSENGER_USERNAME": "carpool_passenger",
        "MQTT_PASSENGER_PASSWORD": "passenger_secret",
    }
    values.update(overrides)
    return MqttSettings(**values)


async def connected_transport(factory: Optional[ClientFactory] = None) -> tuple[MqttTransport, ClientFactory]:
    factory = factory or ClientFactory(accept)
    transport = MqttTransport(make_settings(), client_factory=factory)
    assert await transport.connect("passenger_1", "carpool_passenger", "passenger_secret") is True
    return transport, factory


class TestCredentials:
    """Учётные данные ролей."""

    def test_for_role(self) -> None:
        settings = make_settings()

        assert MqttCredentials.for_role(TransportRole.DRIVER, settings) == MqttCredentials("carpool_driver", "driver_secret")
        assert MqttCredentials.for_role(TransportRole.PASSENGER, settings).username == "carpool_passenger"


class TestDescribeConnack:
    """Тексты отказов брокера."""

    @pytest.mark.parametrize(
        "code, text",
        [
            (1, "Bad protocol version"),
            (2, "Client identifier rejected"),
            (3, "Server unavailable"),
            (4, "Bad username or password"),
            (5, "Not authorized"),
            (134, "Bad username or password"),
            (135, "Not authorized"),
        ],
    )
    def test_known_codes(self, code: int, text: str) -> None:
        assert describe_connack(code) == text

    def test_unknown_code(self) -> None:
        assert describe_connack(99) == "Connection rejected (code: 99)"

    def test_reason_code_object(self) -> None:
        reason = MagicMock(value=5)
        assert describe_connack(reason) == "Not authorized"


class TestAttempts:
    """Порядок способов подключения."""

    def test_tls_then_websockets(self) -> None:
        attempts = MqttTransport(make_settings()).attempts()

        assert [(a.name, a.port, a.transport) for a in attempts] == [
            ("tcp_tls_8883", 8883, "tcp"),
            ("wss_443", 443, "websockets"),
            ("wss_8884", 8884, "websockets"),
        ]


class TestConnect:
    """Подключение к брокеру."""

    @pytest.mark.asyncio
    async def test_connect_configures_client(self) -> None:
        transport, factory = await connected_transport()
        client = factory.clients[0]

        assert transport.is_connected is True
        assert transport.state == ConnectionState.CONNECTED
        assert transport.client_id == "passenger_1"
        assert transport.last_error is None
        client.username_pw_set.assert_called_once_with("carpool_passenger", "passenger_secret")
        client.tls_set.assert_called_once()
        client.connect_async.assert_called_once_with("broker.test.local", 8883, keepalive=20)
        client.loop_start.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_when_connected_reuses_connection(self) -> None:
        """Повторный connect при активном соединении не создаёт новую попытку."""
        transport, factory = await connected_transport()

        assert await transport.connect("passenger_2", "carpool_passenger", "passenger_secret") is True

        assert len(factory.calls) == 1
        assert transport.client_id == "passenger_1"

    @pytest.mark.asyncio
    async def test_falls_back_to_websockets(self) -> None:
        factory = ClientFactory({"tcp": reject_with(3), "websockets": accept})
        transport = MqttTransport(make_settings(), client_factory=factory)

        assert await transport.connect("driver_d1", "carpool_driver", "driver_secret") is True

        assert [call[1] for call in factory.calls] == ["tcp", "websockets"]
        factory.clients[1].ws_set_options.assert_called_once_with(path="/mqtt")
        factory.clients[0].loop_stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_bad_credentials_reported_once(self) -> None:
        factory = ClientFactory(reject_with(4))
        transport = MqttTransport(make_settings(), client_factory=factory)

        assert await transport.connect("driver_d1", "carpool_driver", "wrong") is False

        assert len(factory.calls) == 3
        assert transport.last_error == "Bad username or password (tcp_tls_8883)"
        assert transport.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_single_timeout_message(self) -> None:
        """Нет CONNACK за весь дедлайн: ошибка первой попытки."""
        factory = ClientFactory(silent)
        transport = MqttTransport(
            make_settings(MQTT_CONNECT_TIMEOUT=0.2, MQTT_MIN_ATTEMPT_TIMEOUT=0.1),
            client_factory=factory,
        )

        assert await transport.connect("driver_d1", "carpool_driver", "driver_secret") is False

        assert len(factory.calls) == 1
        assert transport.last_error.startswith("Connect exception (tcp_tls_8883): No CONNACK")

    @pytest.mark.asyncio
    async def test_several_timeouts_collapse_to_network_message(self) -> None:
        def refused_with_timeout(client: MagicMock, transport: str) -> None:
            raise OSError("Connection timeout")

        factory = ClientFactory({"tcp": refused_with_timeout, "websockets": silent})
        transport = MqttTransport(
            make_settings(MQTT_CONNECT_TIMEOUT=0.3, MQTT_MIN_ATTEMPT_TIMEOUT=0.1),
            client_factory=factory,
        )

        assert await transport.connect("driver_d1", "carpool_driver", "driver_secret") is False

        assert transport.last_error == CONNECTION_TIMEOUT_MESSAGE

    @pytest.mark.asyncio
    async def test_connect_fail_callback(self) -> None:
        def socket_failure(client: MagicMock, transport: str) -> None:
            client.on_connect_fail(client, None)

        factory = ClientFactory({"tcp": socket_failure, "websockets": socket_failure})
        transport = MqttTransport(make_settings(), client_factory=factory)

        assert await transport.connect("driver_d1", "carpool_driver", "driver_secret") is False

        assert transport.last_error == "Connect exception (tcp_tls_8883): socket connection failed"


class TestSubscriptions:
    """Подписки."""

    @pytest.mark.asyncio
    async def test_subscribe_requires_connection(self) -> None:
        transport = MqttTransport(make_settings(), client_factory=ClientFactory(accept))

        assert await transport.subscribe("carpool/drivers/d1/location") is False
        assert "not connected" in transport.last_error

    @pytest.mark.asyncio
    async def test_subscribe_once(self) -> None:
        transport, factory = await connected_transport()
        client = factory.clients[0]

        assert await transport.subscribe("carpool/drivers/d1/location") is True
        assert await transport.subscribe("carpool/drivers/d1/location") is True

        client.subscribe.assert_called_once_with("carpool/drivers/d1/location", 1)
        assert transport.subscribed_topics == frozenset({"carpool/drivers/d1/location"})

    @pytest.mark.asyncio
    async def test_subscribe_error_code(self) -> None:
        transport, factory = await connected_transport()
        factory.clients[0].subscribe.return_value = (4, None)

        assert await transport.subscribe("carpool/drivers/d1/location") is False
        assert transport.last_error.startswith("Error subscribing to carpool/drivers/d1/location")

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        transport, factory = await connected_transport()
        await transport.subscribe("carpool/drivers/d1/location")

        assert await transport.unsubscribe("carpool/drivers/d1/location") is True

        factory.clients[0].unsubscribe.assert_called_once_with("carpool/drivers/d1/location")
        assert transport.subscribed_topics == frozenset()


class TestPublish:
    """Публикация."""

    @pytest.mark.asyncio
    async def test_publish(self) -> None:
        transport, factory = await connected_transport()

        assert await transport.publish("carpool/drivers/d1/location", '{"lat": 1}') is True

        factory.clients[0].publish.assert_called_once_with(
            "carpool/drivers/d1/location", '{"lat": 1}', qos=1, retain=False
        )

    @pytest.mark.asyncio
    async def test_publish_without_connection(self) -> None:
        transport = MqttTransport(make_settings(), client_factory=ClientFactory(accept))
        assert await transport.publish("carpool/drivers/d1/location", "{}") is False

    @pytest.mark.asyncio
    async def test_publish_rejected_by_client(self) -> None:
        transport, factory = await connected_transport()
        factory.clients[0].publish.return_value = MagicMock(rc=4)

        assert await transport.publish("carpool/drivers/d1/location", "{}") is False


class TestMessagesAndDisconnect:
    """Входящие сообщения и потеря связи."""

    @pytest.mark.asyncio
    async def test_messages_are_delivered(self) -> None:
        transport, factory = await connected_transport()
        client = factory.clients[0]

        incoming = MagicMock(topic="carpool/drivers/d1/location", payload=b'{"lat": 1.0}')
        transport._on_message(client, None, incoming)
        await asyncio.sleep(0)
        await transport.close()

        received = [message async for message in transport.messages()]

        assert len(received) == 1
        assert received[0].topic == "carpool/drivers/d1/location"
        assert received[0].text == '{"lat": 1.0}'

    @pytest.mark.asyncio
    async def test_connection_lost(self) -> None:
        transport, factory = await connected_transport()
        client = factory.clients[0]
        await transport.subscribe("carpool/drivers/d1/location")

        transport._on_disconnect(client, None, None, 7, None)
        await asyncio.sleep(0)

        assert transport.is_connected is False
        assert transport.last_error == "Connection lost: 7"
        assert transport.subscribed_topics == frozenset()
        client.loop_stop.assert_called()

    @pytest.mark.asyncio
    async def test_disconnect(self) -> None:
        transport, factory = await connected_transport()
        client = factory.clients[0]

        await transport.disconnect()

        client.disconnect.assert_called_once()
        client.loop_stop.assert_called_once()
        assert transport.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reconnect_after_loss(self) -> None:
        transport, factory = await connected_transport()
        transport._on_disconnect(factory.clients[0], None, None, 7, None)
        await asyncio.sleep(0)

        assert await transport.connect("passenger_1", "carpool_passenger", "passenger_secret") is True
        assert len(factory.calls) == 2

# src/infra/mqtt_transport.py
"""
Транспорт MQTT на базе paho-mqtt.

Сетевой поток paho только пересылает колбэки в цикл asyncio
(call_soon_threadsafe), всё состояние меняется в цикле событий.
Подключение перебирает TCP/TLS и WSS порты в пределах общего дедлайна.
Автоматического переподключения нет: при потере связи состояние
становится disconnected, владелец сам проверяет is_connected.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional

import paho.mqtt.client as mqtt

from src.common.constants import ConnectionState, TransportRole
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.config.loader import MqttSettings


# =============================================================================
# МОДЕЛИ
# =============================================================================

@dataclass(frozen=True)
class MqttCredentials:
    """Учётные данные брокера для одной роли."""
    username: str
    password: str

    @classmethod
    def for_role(cls, role: TransportRole, mqtt_settings: MqttSettings | None = None) -> "MqttCredentials":
        """Берёт пару логин/пароль роли из конфига."""
        if mqtt_settings is None:
            from src.config import settings
            mqtt_settings = settings.mqtt

        if role == TransportRole.DRIVER:
            return cls(mqtt_settings.MQTT_DRIVER_USERNAME, mqtt_settings.MQTT_DRIVER_PASSWORD)
        return cls(mqtt_settings.MQTT_PASSENGER_USERNAME, mqtt_settings.MQTT_PASSENGER_PASSWORD)


@dataclass(frozen=True)
class TransportMessage:
    """Входящее сообщение брокера."""
    topic: str
    payload: bytes

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ConnectAttempt:
    """Один способ подключения к брокеру."""
    name: str
    port: int
    transport: str  # "tcp" или "websockets"


ClientFactory = Callable[[str, str], Any]

CONNECTION_TIMEOUT_MESSAGE = (
    "Connection timeout: Unable to reach server. Please check your network connection."
)

# Коды CONNACK: MQTT 3.1.1 (1-5) и их аналоги MQTT 5 (0x84-0x88)
_CONNACK_MESSAGES: dict[int, str] = {
    1: "Bad protocol version",
    2: "Client identifier rejected",
    3: "Server unavailable",
    4: "Bad username or password",
    5: "Not authorized",
    132: "Bad protocol version",
    133: "Client identifier rejected",
    134: "Bad username or password",
    135: "Not authorized",
    136: "Server unavailable",
}

_ATTEMPT_SUFFIX_RE = re.compile(r"\s*\([a-z_0-9]+\):?")


def describe_connack(reason_code: Any) -> str:
    """Человекочитаемое описание отказа брокера по коду CONNACK."""
    value = _reason_value(reason_code)
    return _CONNACK_MESSAGES.get(value, f"Connection rejected (code: {value})")


def _reason_value(reason_code: Any) -> int:
    # paho отдаёт ReasonCode с .value; в тестах бывает просто int
    return int(getattr(reason_code, "value", reason_code))


def _normalize_error(error: str) -> str:
    return _ATTEMPT_SUFFIX_RE.sub("", error).strip()


def _default_client_factory(client_id: str, transport: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        transport=transport,
        protocol=mqtt.MQTTv311,
        clean_session=True,
    )


# =============================================================================
# ТРАНСПОРТ
# =============================================================================

class MqttTransport:
    """
    Клиент MQTT брокера.

    Реализует:
    - Подключение с перебором TCP/TLS и WSS в пределах дедлайна
    - Подписку и отписку от топиков
    - Неблокирующую публикацию (без ожидания PUBACK)
    - Поток входящих сообщений через messages()
    """

    def __init__(
        self,
        mqtt_settings: MqttSettings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """
        Args:
            mqtt_settings: Секция mqtt конфига (берётся из settings если None)
            client_factory: Фабрика клиентов paho (client_id, transport) для тестов
        """
        if mqtt_settings is None:
            from src.config import settings
            mqtt_settings = settings.mqtt

        self._settings = mqtt_settings
        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._client_id: Optional[str] = None
        self._state = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._subscribed: set[str] = set()
        self._queue: asyncio.Queue[Optional[TransportMessage]] = asyncio.Queue()
        self._connect_lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    # -------------------------------------------------------------------------
    # Состояние
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def last_error(self) -> Optional[str]:
        """Последняя ошибка подключения или подписки."""
        return self._last_error

    @property
    def client_id(self) -> Optional[str]:
        return self._client_id

    @property
    def subscribed_topics(self) -> frozenset[str]:
        return frozenset(self._subscribed)

    def attempts(self) -> list[ConnectAttempt]:
        """Порядок способов подключения: TCP/TLS, затем WSS порты."""
        result = [ConnectAttempt(f"tcp_tls_{self._settings.MQTT_TLS_PORT}", self._settings.MQTT_TLS_PORT, "tcp")]
        for port in self._settings.MQTT_WSS_PORTS:
            result.append(ConnectAttempt(f"wss_{port}", port, "websockets"))
        return result

    # -------------------------------------------------------------------------
    # Подключение
    # -------------------------------------------------------------------------

    async def connect(self, client_id: str, username: str, password: str) -> bool:
        """
        Подключается к брокеру.

        Уже подключённый клиент возвращает True без новой попытки.
        Ошибки не поднимаются: результат в возвращаемом значении,
        причина в last_error.

        Args:
            client_id: Идентификатор клиента
            username: Логин роли
            password: Пароль роли

        Returns:
            True если соединение установлено
        """
        async with self._connect_lock:
            self._last_error = None

            if self.is_connected:
                await log_debug(f"MQTT уже подключён ({self._client_id})")
                return True

            self._loop = asyncio.get_running_loop()
            self._state = ConnectionState.CONNECTING

            overall = self._settings.MQTT_CONNECT_TIMEOUT
            deadline = self._loop.time() + overall
            errors: list[str] = []

            for attempt in self.attempts():
                remaining = deadline - self._loop.time()
                if remaining <= 0:
                    break

                timeout = min(max(remaining, self._settings.MQTT_MIN_ATTEMPT_TIMEOUT), overall)
                if await self._connect_with(attempt, client_id, username, password, timeout):
                    return True

                if self._last_error:
                    normalized = _normalize_error(self._last_error)
                    if all(_normalize_error(e) != normalized for e in errors):
                        errors.append(self._last_error)

            self._state = ConnectionState.DISCONNECTED

            if errors:
                all_timeouts = all("timeout" in e.lower() or "connack" in e.lower() for e in errors)
                if all_timeouts and len(errors) > 1:
                    self._last_error = CONNECTION_TIMEOUT_MESSAGE
                else:
                    self._last_error = errors[0]
            else:
                self._last_error = (
                    f"Connection timeout: No response from server within {overall:.0f}s"
                )

            await log_error(f"Не удалось подключиться к MQTT: {self._last_error}")
            return False

    async def _connect_with(
        self,
        attempt: ConnectAttempt,
        client_id: str,
        username: str,
        password: str,
        timeout: float,
    ) -> bool:
        """Одна попытка подключения; при неудаче записывает last_error."""
        loop = self._loop
        assert loop is not None

        await log_info(
            f"Подключение ({attempt.name}) к MQTT: {self._settings.MQTT_HOST}:{attempt.port}, "
            f"таймаут {timeout:.0f} с"
        )

        connack: asyncio.Future[Any] = loop.create_future()

        def on_connect(client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
            loop.call_soon_threadsafe(_resolve, connack, reason_code)

        def on_connect_fail(client: Any, userdata: Any) -> None:
            loop.call_soon_threadsafe(_fail, connack, OSError("socket connection failed"))

        try:
            client = self._client_factory(client_id, attempt.transport)
            client.username_pw_set(username, password)
            if attempt.transport == "websockets":
                client.ws_set_options(path=self._settings.MQTT_WS_PATH)
            if self._settings.MQTT_USE_TLS:
                client.tls_set()
            client.on_connect = on_connect
            client.on_connect_fail = on_connect_fail
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message

            client.connect_async(self._settings.MQTT_HOST, attempt.port, keepalive=self._settings.MQTT_KEEPALIVE)
            client.loop_start()
        except Exception as e:
            self._last_error = f"Connect error ({attempt.name}): {e}"
            await log_warning(self._last_error)
            return False

        try:
            reason_code = await asyncio.wait_for(connack, timeout)
        except asyncio.TimeoutError:
            self._last_error = f"Connect exception ({attempt.name}): No CONNACK within {timeout:.0f}s"
            await log_warning(self._last_error)
            await self._teardown(client)
            return False
        except Exception as e:
            self._last_error = f"Connect exception ({attempt.name}): {e}"
            await log_warning(self._last_error)
            await self._teardown(client)
            return False

        if _reason_value(reason_code) != 0:
            self._last_error = f"{describe_connack(reason_code)} ({attempt.name})"
            await log_warning(self._last_error)
            await self._teardown(client)
            return False

        self._client = client
        self._client_id = client_id
        self._state = ConnectionState.CONNECTED
        await log_info(f"MQTT подключён ({attempt.name}) как {client_id}")
        return True

    async def _teardown(self, client: Any) -> None:
        """Останавливает клиент неудачной попытки."""
        try:
            client.disconnect()
            await asyncio.to_thread(client.loop_stop)
        except Exception as e:
            await log_debug(f"Ошибка остановки клиента MQTT: {e}")

    async def disconnect(self) -> None:
        """Отключается от брокера и забывает подписки."""
        client = self._client
        if client is None:
            self._state = ConnectionState.DISCONNECTED
            return

        await log_info("Отключение от MQTT")
        self._client = None
        self._state = ConnectionState.DISCONNECTED
        self._subscribed.clear()

        try:
            client.disconnect()
            await asyncio.to_thread(client.loop_stop)
        except Exception as e:
            await log_warning(f"Ошибка при отключении от MQTT: {e}")

    async def close(self) -> None:
        """Отключается и завершает поток messages()."""
        await self.disconnect()
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    # -------------------------------------------------------------------------
    # Подписки и публикация
    # -------------------------------------------------------------------------

    async def subscribe(self, topic: str, qos: int | None = None) -> bool:
        """
        Подписывается на топик. Повторная подписка на тот же топик ничего не делает.

        Returns:
            True если подписка активна
        """
        if not self.is_connected or self._client is None:
            self._last_error = f"Subscribe failed: not connected (state={self._state.value})"
            await log_error(self._last_error)
            return False

        if topic in self._subscribed:
            await log_debug(f"Уже подписан на {topic}")
            return True

        qos = self._settings.MQTT_QOS if qos is None else qos
        try:
            result, _mid = self._client.subscribe(topic, qos)
        except Exception as e:
            self._last_error = f"Error subscribing to {topic}: {e}"
            await log_error(self._last_error)
            return False

        if result != mqtt.MQTT_ERR_SUCCESS:
            self._last_error = f"Error subscribing to {topic}: {mqtt.error_string(result)}"
            await log_error(self._last_error)
            return False

        self._subscribed.add(topic)
        await log_info(f"Подписка на {topic} (QoS {qos})")
        return True

    async def unsubscribe(self, topic: str) -> bool:
        """Отписывается от топика."""
        if not self.is_connected or self._client is None:
            return False

        if topic not in self._subscribed:
            return True

        try:
            self._client.unsubscribe(topic)
        except Exception as e:
            await log_error(f"Ошибка отписки от {topic}: {e}")
            return False

        self._subscribed.discard(topic)
        await log_info(f"Отписка от {topic}")
        return True

    async def publish(
        self,
        topic: str,
        payload: str | bytes,
        qos: int | None = None,
        retain: bool = False,
    ) -> bool:
        """
        Ставит сообщение в очередь отправки paho. Подтверждения брокера не ждёт.

        Returns:
            True если сообщение принято клиентом
        """
        if not self.is_connected or self._client is None:
            await log_warning(f"Публикация в {topic} невозможна: нет соединения с MQTT")
            return False

        qos = self._settings.MQTT_QOS if qos is None else qos
        try:
            info = self._client.publish(topic, payload, qos=qos, retain=retain)
        except Exception as e:
            await log_error(f"Ошибка публикации в {topic}: {e}")
            return False

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            await log_warning(f"Публикация в {topic} отклонена: {mqtt.error_string(info.rc)}")
            return False

        await log_debug(f"Опубликовано в {topic}: {len(payload)} байт")
        return True

    async def messages(self) -> AsyncIterator[TransportMessage]:
        """
        Поток входящих сообщений. Завершается после close().
        """
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    # -------------------------------------------------------------------------
    # Колбэки paho (сетевой поток)
    # -------------------------------------------------------------------------

    def _on_message(self, client: Any, userdata: Any, message: Any) -> None:
        if self._loop is None:
            return
        item = TransportMessage(topic=message.topic, payload=bytes(message.payload))
        self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def _on_disconnect(
        self,
        client: Any,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if client is self._client:
            # Глушим встроенный цикл переподключения paho
            client.loop_stop()
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._handle_disconnect, client, reason_code)

    def _handle_disconnect(self, client: Any, reason_code: Any) -> None:
        if client is not self._client:
            return

        self._client = None
        self._state = ConnectionState.DISCONNECTED
        self._subscribed.clear()
        self._last_error = f"Connection lost: {reason_code}"
        asyncio.ensure_future(log_warning(f"MQTT соединение потеряно: {reason_code}"))


def _resolve(future: asyncio.Future[Any], value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _fail(future: asyncio.Future[Any], error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)

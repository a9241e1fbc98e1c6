# src/core/location/publisher.py
"""
Публикация геопозиции водителя в MQTT.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from src.common.constants import TransportRole
from src.common.errors import PermissionDenied, ServiceUnavailable
from src.common.logger import log_error, log_info, log_warning
from src.config.loader import MqttSettings, SamplerSettings
from src.core.location.models import PositionSample
from src.core.location.sampler import LocationSampler, PositionProvider
from src.core.location.topics import driver_location_topic
from src.infra.mqtt_transport import MqttCredentials, MqttTransport


class DriverLocationPublisher:
    """
    Публикатор геопозиции водителя.

    Реализует:
    - Публикацию одного снимка (QoS 1, без очереди повторов)
    - Фоновую публикацию потока показаний с LocationSampler
    """

    def __init__(
        self,
        transport: MqttTransport,
        provider: PositionProvider,
        credentials: MqttCredentials | None = None,
        mqtt_settings: MqttSettings | None = None,
        sampler_settings: SamplerSettings | None = None,
        sampler_factory: Callable[[PositionProvider], LocationSampler] | None = None,
    ) -> None:
        if mqtt_settings is None or sampler_settings is None:
            from src.config import settings
            mqtt_settings = mqtt_settings or settings.mqtt
            sampler_settings = sampler_settings or settings.sampler

        self._transport = transport
        self._provider = provider
        self._credentials = credentials or MqttCredentials.for_role(TransportRole.DRIVER, mqtt_settings)
        self._mqtt_settings = mqtt_settings
        self._sampler_factory = sampler_factory or (lambda p: LocationSampler(p, sampler_settings))
        self._sampler: Optional[LocationSampler] = None
        self._task: Optional[asyncio.Task] = None
        self._driver_id: Optional[str] = None
        self._published_count = 0

    @property
    def is_publishing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def driver_id(self) -> Optional[str]:
        return self._driver_id

    @property
    def published_count(self) -> int:
        return self._published_count

    async def _ensure_connected(self, driver_id: str) -> bool:
        if self._transport.is_connected:
            return True
        return await self._transport.connect(
            client_id=f"driver_{driver_id}",
            username=self._credentials.username,
            password=self._credentials.password,
        )

    async def publish(self, driver_id: str, sample: PositionSample) -> bool:
        """
        Публикует снимок позиции водителя.

        Подключается к брокеру при необходимости. Ошибки логируются,
        наружу не поднимаются.

        Returns:
            True если сообщение передано клиенту MQTT
        """
        try:
            if not await self._ensure_connected(driver_id):
                await log_warning(
                    f"Позиция водителя {driver_id} не опубликована: {self._transport.last_error}"
                )
                return False

            topic = driver_location_topic(self._mqtt_settings.MQTT_TOPIC_NAMESPACE, driver_id)
            ok = await self._transport.publish(topic, sample.to_json(), qos=self._mqtt_settings.MQTT_QOS)
            if ok:
                self._published_count += 1
            return ok
        except Exception as e:
            await log_error(f"Ошибка публикации позиции водителя {driver_id}: {e}")
            return False

    async def start(self, driver_id: str) -> bool:
        """
        Начинает публикацию позиции.

        Returns:
            False если нет доступа к геолокации или брокер недоступен
        """
        if self.is_publishing:
            if self._driver_id == driver_id:
                return True
            await self.stop()

        sampler = self._sampler_factory(self._provider)
        try:
            await sampler.ensure_access()
        except (PermissionDenied, ServiceUnavailable) as e:
            await log_warning(f"Нет доступа к геолокации: {e.message}")
            await sampler.close()
            return False

        if not await self._ensure_connected(driver_id):
            await log_error(f"Не удалось подключиться к MQTT: {self._transport.last_error}")
            await sampler.close()
            return False

        self._driver_id = driver_id
        self._sampler = sampler
        self._task = asyncio.create_task(self._run(driver_id, sampler))
        await log_info(f"Публикация позиции водителя {driver_id} запущена")
        return True

    async def _run(self, driver_id: str, sampler: LocationSampler) -> None:
        async for raw in sampler.samples():
            try:
                sample = raw.to_sample(driver_id)
            except Exception as e:
                await log_warning(f"Пропущено некорректное показание GPS: {e}")
                continue
            await self.publish(driver_id, sample)

    async def stop(self) -> None:
        """Останавливает публикацию, опрос GPS и отключается от брокера."""
        task, self._task = self._task, None
        sampler, self._sampler = self._sampler, None

        if sampler is not None:
            await sampler.close()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                await log_error(f"Цикл публикации завершился с ошибкой: {e}")

        await self._transport.disconnect()
        if self._driver_id is not None:
            await log_info(f"Публикация позиции водителя {self._driver_id} остановлена")
        self._driver_id = None

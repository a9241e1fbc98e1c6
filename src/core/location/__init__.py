# src/core/location/__init__.py
"""
Геопозиция водителя: модели, снятие координат, публикация в MQTT.
"""

from src.core.location.models import PositionSample, RawPosition, decode_sample
from src.core.location.sampler import LocationSampler, PositionProvider
from src.core.location.publisher import DriverLocationPublisher
from src.core.location.topics import driver_location_topic, parse_driver_id

__all__ = [
    "PositionSample",
    "RawPosition",
    "decode_sample",
    "LocationSampler",
    "PositionProvider",
    "DriverLocationPublisher",
    "driver_location_topic",
    "parse_driver_id",
]

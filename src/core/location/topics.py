# src/core/location/topics.py
"""Топики MQTT для геопозиции водителей."""

from __future__ import annotations

from typing import Optional


def driver_location_topic(namespace: str, driver_id: str) -> str:
    """<namespace>/drivers/<driverId>/location"""
    if not driver_id or "/" in driver_id or "+" in driver_id or "#" in driver_id:
        raise ValueError(f"Недопустимый ID водителя для топика: {driver_id!r}")
    return f"{namespace}/drivers/{driver_id}/location"


def parse_driver_id(topic: str, namespace: str) -> Optional[str]:
    """Достаёт ID водителя из топика; для чужих топиков возвращает None."""
    parts = topic.split("/")
    if len(parts) != 4:
        return None
    if parts[0] != namespace or parts[1] != "drivers" or parts[3] != "location" or not parts[2]:
        return None
    return parts[2]

# src/core/tracking/eta.py
"""
Оценка времени прибытия водителя по текущей скорости.
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import ETA_UNKNOWN
from src.core.geo.utils import haversine_m, round_half_up
from src.core.location.models import PositionSample


def estimate_eta_seconds(
    sample: Optional[PositionSample],
    target: Optional[tuple[float, float]],
    stationary_speed_kmh: float = 1.0,
) -> Optional[int]:
    """
    Секунды до цели при текущей скорости по прямой.

    Returns:
        None, если нет позиции, нет цели или водитель стоит
        (скорость не больше stationary_speed_kmh)
    """
    if sample is None or target is None:
        return None
    if sample.speed_kmh <= stationary_speed_kmh:
        return None

    meters = haversine_m(sample.latitude, sample.longitude, target[0], target[1])
    seconds = round_half_up(meters / sample.speed_mps)
    return seconds if seconds > 0 else None


def format_eta(seconds: Optional[int]) -> str:
    """
    Форматирует ETA: "Xh Ym", "Xm" или "Xs"; неизвестное значение как "--".
    """
    if seconds is None:
        return ETA_UNKNOWN

    if seconds >= 3600:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m"
    if seconds >= 60:
        return f"{seconds // 60}m"
    return f"{seconds}s"


def format_last_update(timestamp_ms: int, now_ms: int) -> str:
    """Давность последнего обновления: "Just now", "Nm ago", "Nh ago"."""
    age_seconds = max(0, (now_ms - timestamp_ms) // 1000)
    if age_seconds < 60:
        return "Just now"
    if age_seconds < 3600:
        return f"{age_seconds // 60}m ago"
    return f"{age_seconds // 3600}h ago"

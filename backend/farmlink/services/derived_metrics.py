"""Pure tank and moisture metrics derived from raw sensor values.

Every function here is total: malformed or missing inputs produce ``0`` or
``None`` and never raise, because a reading is always persisted even when
its configuration is incomplete.
"""

from __future__ import annotations

import math
from typing import Any


def clamp_distance(distance: Any, tank_height: Any) -> float | None:
    raw = _finite_float(distance)
    if raw is None:
        return None
    height = _positive_float(tank_height)
    upper = height if height is not None else math.inf
    return min(max(raw, 0.0), upper)


def compute_water_level(distance: Any, tank_height: Any) -> float:
    """Water column height for an ultrasonic distance-to-surface reading.

    ``max(0, height - clamp(distance, 0, height))``. A missing or
    non-positive tank height yields ``0`` instead of an error.
    """
    height = _positive_float(tank_height)
    if height is None:
        return 0.0
    clamped = clamp_distance(distance, height)
    if clamped is None:
        return 0.0
    return max(0.0, height - clamped)


def compute_fill_percentage(water_level: Any, tank_height: Any) -> int | None:
    height = _positive_float(tank_height)
    level = _finite_float(water_level)
    if height is None or level is None:
        return None
    return round_half_up(level / height * 100.0)


def compute_estimated_volume(water_level: Any, radius: Any) -> int | None:
    """Cylinder volume in liters for a level and radius given in cm."""
    radius_cm = _positive_float(radius)
    level = _finite_float(water_level)
    if radius_cm is None or level is None:
        return None
    return round_half_up(math.pi * radius_cm**2 * level / 1000.0)


def moisture_status(moisture_percentage: Any) -> str | None:
    value = _finite_float(moisture_percentage)
    if value is None:
        return None
    if value >= 70:
        return "optimal"
    if value >= 50:
        return "good"
    if value >= 30:
        return "low"
    return "critical"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _finite_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


def _positive_float(value: Any) -> float | None:
    numeric = _finite_float(value)
    if numeric is None or numeric <= 0:
        return None
    return numeric

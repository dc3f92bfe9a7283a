from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

DecisionReason = Literal[
    "disabled",
    "no_metric",
    "at_or_above_minimum",
    "cooldown",
    "below_minimum",
]


@dataclass(frozen=True)
class TargetBand:
    min: float | None
    max: float | None = None


@dataclass(frozen=True)
class ActuationDecision:
    triggered: bool
    reason: DecisionReason
    target_min: float | None
    cooldown_remaining_seconds: int | None = None


def should_actuate(
    current_metric: float | None,
    target_band: TargetBand,
    enabled: bool,
    last_actuation_at: datetime | None,
    cooldown_minutes: float,
    now: datetime | None = None,
) -> bool:
    """Whether an automatic start should fire.

    Only a metric strictly below ``target_band.min`` triggers; the upper
    bound is informational. A metric equal to the minimum never triggers.
    """
    return evaluate_actuation(
        current_metric,
        target_band,
        enabled,
        last_actuation_at,
        cooldown_minutes,
        now=now,
    ).triggered


def evaluate_actuation(
    current_metric: float | None,
    target_band: TargetBand,
    enabled: bool,
    last_actuation_at: datetime | None,
    cooldown_minutes: float,
    now: datetime | None = None,
) -> ActuationDecision:
    if not enabled:
        return ActuationDecision(False, "disabled", target_band.min)
    if not _is_number(current_metric) or not _is_number(target_band.min):
        return ActuationDecision(False, "no_metric", target_band.min)
    if current_metric >= target_band.min:  # type: ignore[operator]
        return ActuationDecision(False, "at_or_above_minimum", target_band.min)

    if last_actuation_at is not None:
        current = _to_utc(now or datetime.now(timezone.utc))
        elapsed = current - _to_utc(last_actuation_at)
        cooldown = timedelta(minutes=max(0.0, float(cooldown_minutes or 0)))
        if elapsed < cooldown:
            remaining = int(math.ceil((cooldown - elapsed).total_seconds()))
            return ActuationDecision(False, "cooldown", target_band.min, remaining)

    return ActuationDecision(True, "below_minimum", target_band.min)


def decide_zone_irrigation(
    zone: Any,
    moisture_percentage: float,
    target_min: float,
    target_max: float | None,
    now: datetime,
) -> ActuationDecision:
    return evaluate_actuation(
        moisture_percentage,
        TargetBand(min=target_min, max=target_max),
        bool(zone.irrigation_enabled),
        zone.last_irrigation_at,
        zone.irrigation_cooldown_minutes,
        now=now,
    )


def decide_tank_refill(tank: Any, water_level_cm: float, now: datetime) -> ActuationDecision:
    return evaluate_actuation(
        water_level_cm,
        TargetBand(min=tank.min_threshold_cm, max=tank.tank_height_cm),
        bool(tank.pump_auto_enabled),
        tank.last_pump_start_at,
        tank.pump_cooldown_minutes,
        now=now,
    )


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest import TestCase

from farmlink.services.irrigation_decision import (
    TargetBand,
    decide_tank_refill,
    decide_zone_irrigation,
    evaluate_actuation,
    should_actuate,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class ShouldActuateTests(TestCase):
    def test_below_minimum_triggers(self) -> None:
        self.assertTrue(should_actuate(29.9, TargetBand(min=30, max=60), True, None, 120, now=NOW))

    def test_exactly_at_minimum_does_not_trigger(self) -> None:
        decision = evaluate_actuation(30.0, TargetBand(min=30, max=60), True, None, 120, now=NOW)

        self.assertFalse(decision.triggered)
        self.assertEqual(decision.reason, "at_or_above_minimum")

    def test_disabled_never_triggers(self) -> None:
        band = TargetBand(min=30, max=60)
        self.assertFalse(should_actuate(5, band, False, None, 120, now=NOW))
        self.assertFalse(should_actuate(5, band, False, NOW - timedelta(days=3), 120, now=NOW))

    def test_missing_metric_does_not_trigger(self) -> None:
        decision = evaluate_actuation(None, TargetBand(min=30), True, None, 120, now=NOW)

        self.assertFalse(decision.triggered)
        self.assertEqual(decision.reason, "no_metric")

    def test_cooldown_blocks_until_elapsed(self) -> None:
        band = TargetBand(min=30, max=60)
        blocked = evaluate_actuation(10, band, True, NOW - timedelta(minutes=119), 120, now=NOW)

        self.assertFalse(blocked.triggered)
        self.assertEqual(blocked.reason, "cooldown")
        self.assertEqual(blocked.cooldown_remaining_seconds, 60)
        self.assertTrue(should_actuate(10, band, True, NOW - timedelta(minutes=120), 120, now=NOW))

    def test_naive_last_actuation_is_treated_as_utc(self) -> None:
        last = (NOW - timedelta(minutes=10)).replace(tzinfo=None)
        self.assertFalse(should_actuate(10, TargetBand(min=30), True, last, 60, now=NOW))


class ConfigDecisionTests(TestCase):
    def test_zone_uses_resolved_band_and_zone_cooldown(self) -> None:
        zone = SimpleNamespace(
            irrigation_enabled=True,
            last_irrigation_at=None,
            irrigation_cooldown_minutes=120,
        )
        decision = decide_zone_irrigation(zone, 45.0, 50.0, 70.0, NOW)

        self.assertTrue(decision.triggered)
        self.assertEqual(decision.target_min, 50.0)

    def test_disabled_zone_below_threshold_does_not_trigger(self) -> None:
        zone = SimpleNamespace(
            irrigation_enabled=False,
            last_irrigation_at=NOW - timedelta(days=1),
            irrigation_cooldown_minutes=0,
        )
        self.assertFalse(decide_zone_irrigation(zone, 5.0, 50.0, 70.0, NOW).triggered)

    def test_tank_pump_automation_is_opt_in(self) -> None:
        tank = SimpleNamespace(
            pump_auto_enabled=False,
            min_threshold_cm=20.0,
            tank_height_cm=300.0,
            last_pump_start_at=None,
            pump_cooldown_minutes=60,
        )
        self.assertEqual(decide_tank_refill(tank, 5.0, NOW).reason, "disabled")

        tank.pump_auto_enabled = True
        self.assertTrue(decide_tank_refill(tank, 5.0, NOW).triggered)

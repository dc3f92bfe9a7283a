from __future__ import annotations

from unittest import TestCase

from farmlink.services.derived_metrics import (
    clamp_distance,
    compute_estimated_volume,
    compute_fill_percentage,
    compute_water_level,
    moisture_status,
    round_half_up,
)


class DerivedMetricsTests(TestCase):
    def test_nearly_empty_tank(self) -> None:
        level = compute_water_level(280, 300)
        self.assertEqual(level, 20.0)
        self.assertEqual(compute_fill_percentage(level, 300), 7)

    def test_sensor_touching_surface_is_full(self) -> None:
        level = compute_water_level(0, 300)
        self.assertEqual(level, 300.0)
        self.assertEqual(compute_fill_percentage(level, 300), 100)

    def test_distance_beyond_tank_height_clamps_to_empty(self) -> None:
        self.assertEqual(clamp_distance(350, 300), 300.0)
        self.assertEqual(compute_water_level(350, 300), 0.0)
        self.assertEqual(compute_fill_percentage(0.0, 300), 0)

    def test_negative_distance_clamps_to_zero(self) -> None:
        self.assertEqual(clamp_distance(-5, 300), 0.0)
        self.assertEqual(compute_water_level(-5, 300), 300.0)

    def test_invalid_height_yields_zero_level_and_no_percentage(self) -> None:
        self.assertEqual(compute_water_level(50, 0), 0.0)
        self.assertEqual(compute_water_level(50, None), 0.0)
        self.assertEqual(compute_water_level(50, "abc"), 0.0)
        self.assertIsNone(compute_fill_percentage(10, 0))

    def test_non_finite_distance_yields_zero_level(self) -> None:
        self.assertEqual(compute_water_level(float("nan"), 300), 0.0)
        self.assertIsNone(clamp_distance(float("inf"), 300))

    def test_volume_in_liters(self) -> None:
        # pi * 50^2 * 100 / 1000 = 785.398...
        self.assertEqual(compute_estimated_volume(100, 50), 785)
        self.assertIsNone(compute_estimated_volume(100, 0))
        self.assertIsNone(compute_estimated_volume(None, 50))

    def test_rounding_is_half_up(self) -> None:
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(6.4999), 6)
        self.assertEqual(compute_fill_percentage(1, 200), 1)

    def test_moisture_status_thresholds(self) -> None:
        self.assertEqual(moisture_status(70), "optimal")
        self.assertEqual(moisture_status(69.9), "good")
        self.assertEqual(moisture_status(50), "good")
        self.assertEqual(moisture_status(30), "low")
        self.assertEqual(moisture_status(29.9), "critical")
        self.assertIsNone(moisture_status(None))

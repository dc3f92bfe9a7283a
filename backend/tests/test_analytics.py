from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest import TestCase

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farmlink.db.base import Base
from farmlink.db.models import ActuationLog, SoilMoistureReading, WaterReading
from farmlink.services.analytics import pair_irrigation_sessions, tank_stats, zone_analytics

NOW = datetime(2026, 6, 3, 12, 0, tzinfo=timezone.utc)


def _log(action: str, minutes_ago: int, measured: float | None, trigger: str = "manual") -> ActuationLog:
    return ActuationLog(
        config_kind="zone",
        config_id="zone-a",
        device_id="gw-1",
        target="irrigation",
        action=action,
        trigger=trigger,
        measured_value=measured,
        target_min=30.0,
        ts=NOW - timedelta(minutes=minutes_ago),
    )


class IrrigationSessionTests(TestCase):
    def test_start_pairs_with_next_stop(self) -> None:
        sessions = pair_irrigation_sessions(
            [
                _log("stop", 300, 10.0),
                _log("start", 200, 20.0, trigger="automatic_low_moisture"),
                _log("start", 120, 25.0),
                _log("stop", 90, 55.0),
                _log("start", 30, 28.0),
            ]
        )

        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].trigger, "manual")
        self.assertEqual(sessions[0].duration_minutes, 30.0)
        self.assertEqual(sessions[0].moisture_increase, 30.0)

    def test_missing_measurement_leaves_increase_empty(self) -> None:
        sessions = pair_irrigation_sessions([_log("start", 60, None), _log("stop", 0, 40.0)])

        self.assertIsNone(sessions[0].moisture_increase)
        self.assertEqual(sessions[0].duration_minutes, 60.0)


class AnalyticsQueryTests(TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def _soil(self, moisture: float, hours_ago: float) -> SoilMoistureReading:
        return SoilMoistureReading(
            zone_id="zone-a",
            sensor_id="gw-1",
            moisture_percentage=moisture,
            target_source="static",
            target_min_moisture=30.0,
            target_max_moisture=60.0,
            ts=NOW - timedelta(hours=hours_ago),
        )

    def _water(self, level: float, hours_ago: float, tank_id: str = "main_tank") -> WaterReading:
        return WaterReading(
            tank_id=tank_id,
            sensor_id="gw-2",
            distance_cm=300 - level,
            water_level_cm=level,
            fill_percentage=None,
            volume_liters=None,
            ts=NOW - timedelta(hours=hours_ago),
        )

    def test_zone_analytics_daily_and_overall(self) -> None:
        with self.session_factory() as db:
            db.add_all(
                [
                    self._soil(20.0, 36),
                    self._soil(31.0, 30),
                    self._soil(40.0, 6),
                    self._soil(50.0, 2),
                    self._soil(99.0, 24 * 10),
                    _log("start", 180, 40.0),
                    _log("stop", 120, 50.0),
                ]
            )
            db.commit()

            result = zone_analytics(db, zone_id="zone-a", days=7, now=NOW)

        self.assertEqual(result.total_readings, 4)
        self.assertEqual(result.avg_moisture, 35)
        self.assertEqual((result.min_moisture, result.max_moisture), (20.0, 50.0))
        self.assertEqual([item.day for item in result.daily], [date(2026, 6, 2), date(2026, 6, 3)])
        self.assertEqual(result.daily[0].avg_moisture, 26)
        self.assertEqual(result.daily[1].reading_count, 2)
        self.assertEqual(result.irrigation_sessions, 1)
        self.assertEqual(result.total_irrigation_minutes, 60.0)
        self.assertEqual(result.moisture_trend, 30.0)
        self.assertAlmostEqual(result.irrigation_frequency, 1 / 7)

    def test_zone_analytics_without_readings(self) -> None:
        with self.session_factory() as db:
            result = zone_analytics(db, zone_id="zone-a", days=3, now=NOW)

        self.assertEqual(result.total_readings, 0)
        self.assertEqual(result.avg_moisture, 0)
        self.assertEqual(result.daily, [])
        self.assertEqual(result.avg_irrigation_minutes, 0.0)

    def test_tank_stats_over_window(self) -> None:
        with self.session_factory() as db:
            db.add_all(
                [
                    self._water(100.0, 20),
                    self._water(150.0, 10),
                    self._water(125.5, 1),
                    self._water(10.0, 48),
                    self._water(5.0, 1, tank_id="other"),
                ]
            )
            db.commit()

            stats = tank_stats(db, tank_id="main_tank", hours=24, now=NOW)
            empty = tank_stats(db, tank_id="main_tank", hours=24, now=NOW + timedelta(days=5))

        self.assertEqual(stats.reading_count, 3)
        self.assertEqual(stats.average_water_level, 125.17)
        self.assertEqual((stats.min_water_level, stats.max_water_level), (100.0, 150.0))
        self.assertEqual(stats.latest_reading.water_level_cm, 125.5)
        self.assertEqual(empty.reading_count, 0)
        self.assertIsNone(empty.average_water_level)
        self.assertIsNone(empty.latest_reading)

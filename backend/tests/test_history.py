from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import TestCase

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farmlink.db.base import Base
from farmlink.db.models import TankConfig, WaterReading
from farmlink.services.history import (
    Aggregation,
    HistoryPoint,
    HistoryQueryError,
    MetricKind,
    bin_points,
    get_history,
    parse_interval,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class HistoryParsingTests(TestCase):
    def test_metric_aliases(self) -> None:
        self.assertIs(MetricKind.parse("temp"), MetricKind.TEMPERATURE)
        self.assertIs(MetricKind.parse("Moisture"), MetricKind.SOIL)
        self.assertIs(MetricKind.parse("distance"), MetricKind.WATER_DISTANCE)
        self.assertIsNone(MetricKind.parse("all"))
        with self.assertRaises(HistoryQueryError):
            MetricKind.parse("pressure")

    def test_interval_parsing(self) -> None:
        self.assertEqual(parse_interval("15m"), (900, "15m"))
        self.assertEqual(parse_interval("2D"), (172800, "2d"))
        self.assertEqual(parse_interval("soon"), (3600, "1h"))
        self.assertEqual(parse_interval("0h"), (3600, "1h"))

    def test_binning_floors_to_interval(self) -> None:
        points = [
            HistoryPoint(ts=NOW + timedelta(minutes=1), value=10.0),
            HistoryPoint(ts=NOW + timedelta(minutes=20), value=20.0),
            HistoryPoint(ts=NOW + timedelta(minutes=70), value=5.0),
        ]

        averaged = bin_points(points, Aggregation.AVG, 3600)
        minimum = bin_points(points, Aggregation.MIN, 3600)

        self.assertEqual([point.ts for point in averaged], [NOW, NOW + timedelta(hours=1)])
        self.assertEqual([point.value for point in averaged], [15.0, 5.0])
        self.assertEqual(minimum[0].value, 10.0)


class HistoryQueryTests(TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def test_water_series_follow_assigned_tank(self) -> None:
        with self.session_factory() as db:
            db.add(TankConfig(tank_id="main_tank", tank_height_cm=300, tank_radius_cm=50, sensor_id="gw-new"))
            for minutes, sensor_id in ((30, "gw-old"), (10, "gw-new")):
                db.add(
                    WaterReading(
                        tank_id="main_tank",
                        sensor_id=sensor_id,
                        distance_cm=100,
                        water_level_cm=200,
                        fill_percentage=67,
                        volume_liters=1571,
                        ts=NOW - timedelta(minutes=minutes),
                    )
                )
            db.commit()

            result = get_history(db, device_id="gw-new", metric="level", now=NOW)
            unassigned = get_history(db, device_id="gw-old", metric="all", now=NOW)

        self.assertEqual(len(result.series["water_level"]), 2)
        self.assertEqual(result.series["water_level"][0].ts, NOW - timedelta(minutes=30))
        self.assertEqual(unassigned.series["water_level"], [])
        self.assertEqual(sorted(unassigned.series), sorted(kind.value for kind in MetricKind))

    def test_reversed_range_is_rejected(self) -> None:
        with self.session_factory() as db:
            with self.assertRaises(HistoryQueryError):
                get_history(db, device_id="gw-1", start=NOW, end=NOW - timedelta(hours=1), now=NOW)

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farmlink.core.config import Settings
from farmlink.db.base import Base
from farmlink.db.models import ActuationLog, SoilMoistureReading, TankConfig, ZoneConfig
from farmlink.services.command_queue import CommandQueueService, InMemoryCommandStore
from farmlink.services.irrigation_control import (
    IrrigationControlService,
    UnknownZoneError,
    ZoneWithoutSensorError,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _memory_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class IrrigationControlServiceTests(TestCase):
    def setUp(self) -> None:
        self.session_factory = _memory_session_factory()
        self.queue = CommandQueueService(settings=Settings(), store=InMemoryCommandStore())
        self.service = IrrigationControlService(
            session_factory=self.session_factory,
            command_queue=self.queue,
        )

    def _seed_zone(self, zone_id: str, **overrides: Any) -> None:
        values = {
            "zone_id": zone_id,
            "name": zone_id,
            "crop_type": "lettuce",
            "planting_date": NOW - timedelta(days=10),
            "min_moisture": 30.0,
            "max_moisture": 60.0,
            "use_static_thresholds": True,
        }
        values.update(overrides)
        with self.session_factory() as db:
            db.add(ZoneConfig(**values))
            db.commit()

    def _logs(self) -> list[ActuationLog]:
        with self.session_factory() as db:
            return list(db.scalars(select(ActuationLog).order_by(ActuationLog.id.asc())))

    def _zone(self, zone_id: str) -> ZoneConfig:
        with self.session_factory() as db:
            return db.scalars(select(ZoneConfig).where(ZoneConfig.zone_id == zone_id)).one()

    def test_zone_command_is_queued_for_assigned_sensor_and_logged(self) -> None:
        self._seed_zone("zone-a", sensor_id="gw-7", relay_id="relay-2")
        with self.session_factory() as db:
            db.add(
                SoilMoistureReading(
                    zone_id="zone-a",
                    sensor_id="gw-7",
                    moisture_percentage=42.0,
                    target_source="static",
                    target_min_moisture=30.0,
                    target_max_moisture=60.0,
                    ts=NOW - timedelta(minutes=5),
                )
            )
            db.commit()

        result = self.service.command_zone(zone_id="zone-a", action="start", now=NOW)

        self.assertEqual(result.sensor_id, "gw-7")
        self.assertEqual(result.trigger, "manual")
        self.assertEqual(result.moisture_level, 42.0)
        self.assertEqual(result.targets.source, "static")
        self.assertEqual(result.days_since_planting, 10)
        pending = self.queue.list_pending("gw-7")
        self.assertEqual([(item.action, item.target, item.trigger) for item in pending], [("start", "irrigation", "manual")])
        logs = self._logs()
        self.assertEqual(len(logs), 1)
        self.assertEqual((logs[0].config_id, logs[0].action, logs[0].relay_id), ("zone-a", "start", "relay-2"))
        self.assertEqual(logs[0].measured_value, 42.0)
        self.assertIsNotNone(self._zone("zone-a").last_irrigation_at)

    def test_force_manual_uses_override_trigger_and_stop_keeps_cooldown(self) -> None:
        self._seed_zone("zone-a", sensor_id="gw-7")

        result = self.service.command_zone(zone_id="zone-a", action="stop", force_manual=True, now=NOW)

        self.assertEqual(result.trigger, "manual_override")
        self.assertIsNone(result.moisture_level)
        self.assertEqual(self.queue.list_pending("gw-7")[0].trigger, "manual_override")
        self.assertIsNone(self._logs()[0].measured_value)
        self.assertIsNone(self._zone("zone-a").last_irrigation_at)

    def test_unknown_zone_and_zone_without_sensor_are_rejected(self) -> None:
        self._seed_zone("zone-bare")

        with self.assertRaises(UnknownZoneError):
            self.service.command_zone(zone_id="nope", action="start")
        with self.assertRaises(ZoneWithoutSensorError):
            self.service.command_zone(zone_id="zone-bare", action="start")

        self.assertEqual(self.queue.count_pending(), 0)
        self.assertEqual(self._logs(), [])

    def test_bulk_targets_active_zones_and_reports_per_zone_errors(self) -> None:
        self._seed_zone("zone-a", sensor_id="gw-1")
        self._seed_zone("zone-b", sensor_id="gw-2")
        self._seed_zone("zone-c")
        self._seed_zone("zone-off", sensor_id="gw-9", is_active=False)

        result = self.service.command_bulk(action="start", now=NOW)

        self.assertEqual([item.zone_id for item in result.queued], ["zone-a", "zone-b"])
        self.assertEqual(result.errors, [{"zone_id": "zone-c", "error": "zone 'zone-c' has no sensor assigned"}])
        self.assertEqual({item.trigger for item in self.queue.list_pending()}, {"bulk_operation"})
        self.assertFalse(self.queue.has_pending("gw-9"))
        self.assertEqual(len(self._logs()), 2)

    def test_bulk_with_explicit_zone_ids(self) -> None:
        self._seed_zone("zone-a", sensor_id="gw-1")

        result = self.service.command_bulk(action="stop", zone_ids=["zone-a", "ghost", "zone-a"], now=NOW)

        self.assertEqual([item.zone_id for item in result.queued], ["zone-a"])
        self.assertEqual(result.errors, [{"zone_id": "ghost", "error": "zone not found"}])
        self.assertEqual(self.queue.count_pending(), 1)

    def test_device_command_is_logged_against_its_zone_or_tank(self) -> None:
        self._seed_zone("zone-a", sensor_id="gw-1")
        with self.session_factory() as db:
            db.add(TankConfig(tank_id="main_tank", tank_height_cm=300, tank_radius_cm=50, sensor_id="gw-2"))
            db.commit()

        irrigation = self.queue.enqueue(device_id="gw-1", action="start", target="irrigation")
        pump = self.queue.enqueue(device_id="gw-2", action="stop", target="pump")
        unmapped = self.queue.enqueue(device_id="gw-3", action="start", target="irrigation")

        zone_entry = self.service.record_device_command(irrigation, now=NOW)
        tank_entry = self.service.record_device_command(pump, now=NOW)

        self.assertEqual((zone_entry.config_kind, zone_entry.config_id, zone_entry.trigger), ("zone", "zone-a", "manual"))
        self.assertEqual((tank_entry.config_kind, tank_entry.target, tank_entry.action), ("tank", "water_pump", "stop"))
        self.assertIsNone(self.service.record_device_command(unmapped, now=NOW))
        self.assertEqual(len(self._logs()), 2)

    def test_device_command_log_failure_is_not_raised(self) -> None:
        self._seed_zone("zone-a", sensor_id="gw-1")
        command = self.queue.enqueue(device_id="gw-1", action="start", target="irrigation")

        with patch(
            "farmlink.services.irrigation_control.add_actuation_log",
            side_effect=OperationalError("INSERT", {}, Exception("database is down")),
        ):
            self.assertIsNone(self.service.record_device_command(command, now=NOW))

        self.assertTrue(self.queue.has_pending("gw-1"))

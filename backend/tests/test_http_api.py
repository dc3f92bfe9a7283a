from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import TestCase
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farmlink.core.config import Settings
from farmlink.db.base import Base
from farmlink.db.session import get_db
from farmlink.main import app
from farmlink.services.command_queue import CommandQueueService, InMemoryCommandStore
from farmlink.services.equipment import EquipmentService
from farmlink.services.heartbeat_sweeper import HeartbeatSweeperService
from farmlink.services.irrigation_control import IrrigationControlService
from farmlink.services.sensor_ingest import IngestPersistenceError, SensorIngestService


def _memory_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class HttpApiTests(TestCase):
    def setUp(self) -> None:
        session_factory = _memory_session_factory()
        settings = Settings(heartbeat_sweeper_enabled=False)
        self.queue = CommandQueueService(settings=settings, store=InMemoryCommandStore())
        self.ingest_service = SensorIngestService(
            settings=settings,
            session_factory=session_factory,
            command_queue=self.queue,
        )
        app.state.settings = settings
        app.state.command_queue = self.queue
        app.state.sensor_ingest_service = self.ingest_service
        app.state.equipment_service = EquipmentService(session_factory=session_factory)
        app.state.irrigation_control_service = IrrigationControlService(
            session_factory=session_factory,
            command_queue=self.queue,
        )
        app.state.heartbeat_sweeper = HeartbeatSweeperService(
            settings=settings,
            session_factory=session_factory,
            command_queue=self.queue,
        )

        def _get_test_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _get_test_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        for name in (
            "settings",
            "command_queue",
            "sensor_ingest_service",
            "equipment_service",
            "irrigation_control_service",
            "heartbeat_sweeper",
        ):
            if hasattr(app.state, name):
                delattr(app.state, name)

    def _put_tank(self) -> None:
        response = self.client.put(
            "/api/tanks/main_tank",
            json={"tank_height_cm": 300, "tank_radius_cm": 50, "location": "barn"},
        )
        self.assertEqual(response.status_code, 200)

    def test_ingest_reading_returns_queued_command(self) -> None:
        self._put_tank()
        self.assertEqual(
            self.client.post("/api/tanks/main_tank/sensor", json={"sensor_id": "gw-1"}).status_code,
            200,
        )
        queued = self.client.post(
            "/api/command",
            json={"device_id": "gw-1", "action": "start", "target": "pump"},
        )
        self.assertEqual(queued.status_code, 201)
        self.assertTrue(queued.json()["queued"])
        self.assertEqual(queued.json()["target"], "water_pump")

        response = self.client.post(
            "/api/ingest-reading",
            json={"sensor_id": "gw-1", "sensors": {"water_distance": {"value": 280, "valid": True}}},
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["device_id"], "gw-1")
        self.assertEqual(payload["responses"]["water"]["data"]["fill_percentage"], 7)
        self.assertEqual(payload["manual_command"]["id"], queued.json()["id"])
        self.assertEqual(payload["manual_command"]["target"], "water_pump")

        status_response = self.client.get("/api/device-status/gw-1")
        self.assertEqual(status_response.status_code, 200)
        status_payload = status_response.json()
        self.assertEqual(status_payload["water"]["tank_id"], "main_tank")
        self.assertEqual(status_payload["water"]["latest_reading"]["water_level_cm"], 20.0)
        self.assertFalse(status_payload["has_pending_command"])

    def test_ingest_without_valid_class_is_rejected_with_400(self) -> None:
        response = self.client.post(
            "/api/ingest-reading",
            json={"device_id": "gw-1", "sensors": {"soil_moisture": {"value": 40, "valid": False}}},
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_ingest_rejects_valid_entry_without_number(self) -> None:
        for sensors in (
            {"soil_moisture": {"valid": True}},
            {"soil_moisture": {"value": "wet", "valid": True}},
        ):
            response = self.client.post("/api/ingest-reading", json={"device_id": "gw-1", "sensors": sensors})
            self.assertEqual(response.status_code, 400)

        missing_device = self.client.post(
            "/api/ingest-reading",
            json={"device_id": "  ", "sensors": {"soil_moisture": {"value": 40, "valid": True}}},
        )
        self.assertEqual(missing_device.status_code, 400)

    def test_ingest_persistence_failure_maps_to_503(self) -> None:
        with patch.object(
            self.ingest_service,
            "ingest",
            side_effect=IngestPersistenceError("no sensor class could be stored"),
        ):
            response = self.client.post(
                "/api/ingest-reading",
                json={"device_id": "gw-1", "sensors": {"soil_moisture": {"value": 40, "valid": True}}},
            )

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.headers.get("retry-after"), "5")

    def test_database_error_maps_to_503(self) -> None:
        with patch.object(
            self.queue,
            "dequeue_oldest",
            side_effect=OperationalError("UPDATE", {}, Exception("timeout")),
        ):
            response = self.client.get("/api/pending-command/gw-1")

        self.assertEqual(response.status_code, 503)

    def test_poll_and_acknowledge(self) -> None:
        self.client.post("/api/command", json={"device_id": "gw-2", "action": "stop", "target": "irrigation"})

        listed = self.client.get("/api/commands", params={"device_id": "gw-2"})
        self.assertEqual(listed.json()["count"], 1)

        first = self.client.get("/api/pending-command/gw-2").json()
        second = self.client.get("/api/pending-command/gw-2").json()
        self.assertTrue(first["has_command"])
        self.assertEqual(first["command"]["action"], "stop")
        self.assertFalse(second["has_command"])
        self.assertIsNone(second["command"])

        ack = self.client.post(
            "/api/command/ack",
            json={"device_id": "gw-2", "action": "stop", "target": "irrigation", "success": True},
        )
        self.assertEqual(ack.status_code, 200)
        self.assertTrue(ack.json()["updated"])
        self.assertEqual(ack.json()["status"], "executed")

    def test_invalid_command_is_rejected(self) -> None:
        response = self.client.post(
            "/api/command",
            json={"device_id": "gw-1", "action": "explode", "target": "irrigation"},
        )
        self.assertEqual(response.status_code, 400)

    def test_clear_commands(self) -> None:
        self.client.post("/api/command", json={"device_id": "gw-3", "action": "start", "target": "irrigation"})

        response = self.client.delete("/api/commands/gw-3")

        self.assertEqual(response.json()["removed"], 1)
        self.assertEqual(self.client.get("/api/sensors/health").json()["pending_commands"], 0)

    def test_second_sensor_assignment_conflicts(self) -> None:
        self._put_tank()
        self.client.put("/api/tanks/spare_tank", json={"tank_height_cm": 200, "tank_radius_cm": 40})
        self.client.post("/api/tanks/main_tank/sensor", json={"sensor_id": "gw-1"})

        other_sensor = self.client.post("/api/tanks/main_tank/sensor", json={"sensor_id": "gw-9"})
        same_sensor_elsewhere = self.client.post("/api/tanks/spare_tank/sensor", json={"sensor_id": "gw-1"})
        unknown = self.client.post("/api/tanks/nope/sensor", json={"sensor_id": "gw-1"})

        self.assertEqual(other_sensor.status_code, 409)
        self.assertEqual(same_sensor_elsewhere.status_code, 409)
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(self.client.get("/api/sensors/health").json()["total_configured_sensors"], 1)

        cleared = self.client.delete("/api/tanks/main_tank/sensor")
        self.assertIsNone(cleared.json()["sensor_id"])
        reassigned = self.client.post("/api/tanks/spare_tank/sensor", json={"sensor_id": "gw-1"})
        self.assertEqual(reassigned.status_code, 200)

    def test_inactive_configs_are_not_counted_as_configured_sensors(self) -> None:
        self._put_tank()
        self.client.put(
            "/api/tanks/retired_tank",
            json={"tank_height_cm": 200, "tank_radius_cm": 40, "is_active": False},
        )
        self.client.post("/api/tanks/main_tank/sensor", json={"sensor_id": "gw-1"})
        self.client.post("/api/tanks/retired_tank/sensor", json={"sensor_id": "gw-old"})

        self.assertEqual(self.client.get("/api/sensors/health").json()["total_configured_sensors"], 1)

    def _put_zone(self, zone_id: str, **overrides) -> None:
        body = {
            "name": zone_id,
            "crop_type": "lettuce",
            "planting_date": datetime.now(timezone.utc).isoformat(),
            "min_moisture": 30,
            "max_moisture": 60,
        }
        body.update(overrides)
        self.assertEqual(self.client.put(f"/api/zones/{zone_id}", json=body).status_code, 200)

    def test_zone_irrigation_endpoint(self) -> None:
        self._put_zone("zone-a")
        self._put_zone("zone-bare")
        self.client.post("/api/zones/zone-a/sensor", json={"sensor_id": "gw-5"})

        queued = self.client.post(
            "/api/irrigation",
            json={"zone_id": "zone-a", "action": "start", "force_manual": True},
        )
        missing = self.client.post("/api/irrigation", json={"zone_id": "nope", "action": "start"})
        bare = self.client.post("/api/irrigation", json={"zone_id": "zone-bare", "action": "start"})
        invalid = self.client.post("/api/irrigation", json={"zone_id": "zone-a", "action": "flood"})

        self.assertEqual(queued.status_code, 201)
        self.assertEqual(queued.json()["sensor_id"], "gw-5")
        self.assertEqual(queued.json()["trigger"], "manual_override")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(bare.status_code, 409)
        self.assertEqual(invalid.status_code, 400)

        polled = self.client.get("/api/pending-command/gw-5").json()
        self.assertEqual(polled["command"]["id"], queued.json()["command_id"])
        self.assertEqual(polled["command"]["trigger"], "manual_override")

    def test_bulk_irrigation_endpoint(self) -> None:
        self._put_zone("zone-a")
        self._put_zone("zone-b")
        self.client.post("/api/zones/zone-a/sensor", json={"sensor_id": "gw-5"})

        response = self.client.post("/api/irrigation/bulk", json={"action": "stop"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["processed"], 1)
        self.assertEqual(payload["queued"][0]["zone_id"], "zone-a")
        self.assertEqual(payload["errors"][0]["zone_id"], "zone-b")
        self.assertTrue(self.queue.has_pending("gw-5"))

    def test_zone_analytics_endpoint(self) -> None:
        self._put_zone("zone-a", use_static_thresholds=True)
        self.client.post("/api/zones/zone-a/sensor", json={"sensor_id": "gw-5"})
        for value in (20, 40):
            self.client.post(
                "/api/ingest-reading",
                json={"device_id": "gw-5", "sensors": {"soil_moisture": {"value": value, "valid": True}}},
            )
        self.client.post("/api/irrigation", json={"zone_id": "zone-a", "action": "stop"})

        response = self.client.get("/api/zones/zone-a/analytics", params={"days": 2})
        unknown = self.client.get("/api/zones/nope/analytics")
        bad_days = self.client.get("/api/zones/zone-a/analytics", params={"days": 0})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["period"]["days"], 2)
        self.assertEqual(payload["overall"]["total_readings"], 2)
        self.assertEqual(payload["overall"]["avg_moisture"], 30)
        self.assertEqual(payload["overall"]["irrigation_sessions"], 1)
        self.assertEqual(payload["irrigation_sessions"][0]["trigger"], "automatic_low_moisture")
        self.assertEqual(payload["irrigation_sessions"][0]["moisture_increase"], 20.0)
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(bad_days.status_code, 400)

    def test_tank_stats_endpoint(self) -> None:
        self._put_tank()
        self.client.post("/api/tanks/main_tank/sensor", json={"sensor_id": "gw-1"})
        for distance in (280, 200):
            self.client.post(
                "/api/ingest-reading",
                json={"device_id": "gw-1", "sensors": {"water_distance": {"value": distance, "valid": True}}},
            )

        response = self.client.get("/api/tanks/main_tank/stats", params={"hours": 6})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["reading_count"], 2)
        self.assertEqual(payload["average_water_level"], 60.0)
        self.assertEqual(payload["min_water_level"], 20.0)
        self.assertEqual(payload["latest_reading"]["water_level_cm"], 100.0)
        self.assertEqual(self.client.get("/api/tanks/ghost/stats").status_code, 404)

    def test_manual_command_is_written_to_actuation_log(self) -> None:
        self._put_zone("zone-a", use_static_thresholds=True)
        self.client.post("/api/zones/zone-a/sensor", json={"sensor_id": "gw-5"})
        self.client.post(
            "/api/ingest-reading",
            json={"device_id": "gw-5", "sensors": {"soil_moisture": {"value": 45, "valid": True}}},
        )
        self.client.post("/api/command", json={"device_id": "gw-5", "action": "start", "target": "irrigation"})
        self.client.post("/api/command", json={"device_id": "gw-5", "action": "stop", "target": "irrigation"})

        sessions = self.client.get("/api/zones/zone-a/analytics").json()["irrigation_sessions"]

        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0]["trigger"], "manual")
        self.assertEqual(sessions[0]["start_moisture"], 45.0)

    def test_crop_profile_and_growth_stage(self) -> None:
        bad = self.client.put(
            "/api/crop-profiles/lettuce",
            json={
                "name": "Lettuce",
                "duration_days": 49,
                "stages": [{"name": "a", "start_day": 2, "end_day": 49, "min_moisture": 40, "max_moisture": 60}],
            },
        )
        self.assertEqual(bad.status_code, 400)

        good = self.client.put(
            "/api/crop-profiles/lettuce",
            json={
                "name": "Lettuce",
                "duration_days": 49,
                "stages": [
                    {"name": "vegetative", "start_day": 15, "end_day": 49, "min_moisture": 50, "max_moisture": 70},
                    {"name": "seedling", "start_day": 1, "end_day": 14, "min_moisture": 60, "max_moisture": 80},
                ],
            },
        )
        self.assertEqual(good.status_code, 200)
        self.assertEqual([stage["name"] for stage in good.json()["stages"]], ["seedling", "vegetative"])

        planted = datetime.now(timezone.utc) - timedelta(days=60, hours=1)
        zone = self.client.put(
            "/api/zones/zone-a",
            json={
                "name": "Zone A",
                "crop_type": "lettuce",
                "planting_date": planted.isoformat(),
                "min_moisture": 30,
                "max_moisture": 60,
            },
        )
        self.assertEqual(zone.status_code, 200)

        stage = self.client.get("/api/zones/zone-a/growth-stage").json()
        self.assertEqual(stage["stage_name"], "vegetative")
        self.assertEqual(stage["day_in_stage"], 35)
        self.assertEqual(stage["progress_percent"], 100.0)
        self.assertEqual(stage["target_source"], "crop_profile_final")

    def test_sensor_history(self) -> None:
        self.client.post(
            "/api/ingest-reading",
            json={
                "device_id": "gw-env",
                "sensors": {"environmental": {"valid": True, "temperature": {"value": 20, "valid": True}}},
            },
        )

        response = self.client.get("/api/sensors/history/gw-env", params={"param": "temp", "agg": "max"})
        invalid = self.client.get("/api/sensors/history/gw-env", params={"param": "pressure"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["query"]["metric"], "temperature")
        self.assertEqual(payload["readings"]["temperature"][0]["value"], 20.0)
        self.assertEqual(invalid.status_code, 400)

    def test_machines_flow(self) -> None:
        created = self.client.post("/api/machines", json={"name": "Pump house", "device_id": "mx-1"})
        self.assertEqual(created.status_code, 201)
        machine_id = created.json()["id"]

        beat = self.client.post(
            "/api/machines/ingest",
            json={"device_id": "mx-1", "sensor1": True, "sensor2": False, "sensor3": True},
        )
        self.assertEqual(beat.status_code, 200)
        self.assertEqual(beat.json()["status"], "warning")

        self.assertEqual(self.client.get(f"/api/machines/{machine_id}").json()["device_id"], "mx-1")
        self.assertEqual(self.client.get("/api/machines/by-device/mx-1").json()["id"], machine_id)
        self.assertEqual(len(self.client.get(f"/api/machines/{machine_id}/history").json()), 1)
        self.assertEqual(
            self.client.post(
                "/api/machines/ingest",
                json={"device_id": "ghost", "sensor1": True, "sensor2": True, "sensor3": True},
            ).status_code,
            404,
        )
        self.assertEqual(
            self.client.post("/api/machines", json={"name": "Again", "device_id": "mx-1"}).status_code,
            409,
        )

    def test_health_and_status(self) -> None:
        self.assertEqual(self.client.get("/health").json()["status"], "ok")

        status_payload = self.client.get("/status").json()
        self.assertTrue(status_payload["database"]["ok"])
        self.assertEqual(status_payload["command_queue"]["store"], "memory")
        self.assertFalse(status_payload["heartbeat_sweeper"]["running"])

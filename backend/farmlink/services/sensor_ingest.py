from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from farmlink.core.config import Settings
from farmlink.db.models import EnvironmentalReading, SoilMoistureReading, WaterReading, ZoneConfig
from farmlink.repositories.commands import QueuedCommand
from farmlink.repositories.device_configs import (
    get_crop_profile,
    get_tank_config_by_sensor,
    resolve_soil_zone,
)
from farmlink.repositories.readings import (
    add_actuation_log,
    add_environmental_reading,
    add_soil_moisture_reading,
    add_water_reading,
    claim_tank_pump_start,
    claim_zone_irrigation,
)
from farmlink.schemas.sensors import SensorReadingRequest
from farmlink.services.command_queue import CommandQueueService
from farmlink.services.derived_metrics import (
    clamp_distance,
    compute_estimated_volume,
    compute_fill_percentage,
    compute_water_level,
    moisture_status,
)
from farmlink.services.growth_stage import (
    CropProfileSnapshot,
    MoistureTargets,
    resolve_moisture_targets,
    snapshot_crop_profile,
)
from farmlink.services.irrigation_decision import decide_tank_refill, decide_zone_irrigation


class IngestPersistenceError(RuntimeError):
    """No sensor class could be stored; the gateway should retry the payload."""


class _ConfigurationMissing(Exception):
    pass


class ReadingOutOfRangeError(ValueError):
    """A sensor value outside its physical range; only that class is rejected."""


MOISTURE_RANGE = (0.0, 100.0)
TEMPERATURE_RANGE_CELSIUS = (-50.0, 80.0)
HUMIDITY_RANGE = (0.0, 100.0)


def check_range(name: str, value: float | None, bounds: tuple[float, float]) -> None:
    if value is None:
        return
    low, high = bounds
    if not low <= value <= high:
        raise ReadingOutOfRangeError(f"{name} {value} is outside {low:g}..{high:g}")


@dataclass
class IngestOutcome:
    device_id: str
    processed_at: datetime
    responses: dict[str, dict[str, Any]] = field(default_factory=dict)
    errors: list[dict[str, str]] = field(default_factory=list)
    manual_command: QueuedCommand | None = None

    @property
    def saved_count(self) -> int:
        return sum(1 for item in self.responses.values() if item.get("success"))


class SensorIngestService:
    """Reconciles one gateway upload: per-class readings, then one queued command.

    Sensor classes are independent failure domains. Each runs in its own
    session and transaction; an error is recorded for that class only.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        session_factory: sessionmaker,
        command_queue: CommandQueueService,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._command_queue = command_queue
        self._logger = logging.getLogger("farmlink.sensor_ingest")

    def ingest(self, request: SensorReadingRequest, *, received_ts: datetime | None = None) -> IngestOutcome:
        now = _to_utc(received_ts or datetime.now(timezone.utc))
        device_id = request.device_id
        classes = request.sensors.valid_classes()
        outcome = IngestOutcome(device_id=device_id, processed_at=now)
        self._logger.info("ingest received device_id=%s classes=%s", device_id, ",".join(classes))

        handlers = {
            "water": self._process_water,
            "soil": self._process_soil,
            "environmental": self._process_environmental,
        }
        persistence_failures = 0
        for sensor_class in classes:
            try:
                with self._session_factory() as db:
                    outcome.responses[sensor_class] = handlers[sensor_class](db, request, now)
            except _ConfigurationMissing as exc:
                outcome.responses[sensor_class] = {"success": False, "error": str(exc)}
                outcome.errors.append(
                    {"type": sensor_class, "kind": "configuration_missing", "error": str(exc)}
                )
                self._logger.warning(
                    "ingest skipped class=%s device_id=%s reason=%s",
                    sensor_class,
                    device_id,
                    exc,
                )
            except ReadingOutOfRangeError as exc:
                outcome.responses[sensor_class] = {"success": False, "error": str(exc)}
                outcome.errors.append({"type": sensor_class, "kind": "processing", "error": str(exc)})
                self._logger.warning(
                    "ingest rejected class=%s device_id=%s reason=%s",
                    sensor_class,
                    device_id,
                    exc,
                )
            except SQLAlchemyError as exc:
                persistence_failures += 1
                outcome.responses[sensor_class] = {"success": False, "error": "storage unavailable"}
                outcome.errors.append({"type": sensor_class, "kind": "persistence", "error": str(exc)})
                self._logger.exception(
                    "ingest persistence failed class=%s device_id=%s",
                    sensor_class,
                    device_id,
                )
            except Exception as exc:
                outcome.responses[sensor_class] = {"success": False, "error": str(exc)}
                outcome.errors.append({"type": sensor_class, "kind": "processing", "error": str(exc)})
                self._logger.exception(
                    "ingest processing failed class=%s device_id=%s",
                    sensor_class,
                    device_id,
                )

        if persistence_failures and outcome.saved_count == 0:
            raise IngestPersistenceError(
                f"no sensor class could be stored for device '{device_id}'"
            )

        outcome.manual_command = self._command_queue.try_dequeue_oldest(device_id)
        self._logger.info(
            "ingest done device_id=%s saved=%s errors=%s command=%s",
            device_id,
            outcome.saved_count,
            len(outcome.errors),
            outcome.manual_command.id if outcome.manual_command else None,
        )
        return outcome

    def _process_water(self, db: Session, request: SensorReadingRequest, now: datetime) -> dict[str, Any]:
        device_id = request.device_id
        tank = get_tank_config_by_sensor(db, device_id)
        if tank is None:
            raise _ConfigurationMissing(f"no tank configuration found for sensor '{device_id}'")

        source_field, raw_distance = request.sensors.water_value()  # type: ignore[misc]
        distance_cm = clamp_distance(raw_distance, tank.tank_height_cm) or 0.0
        water_level_cm = compute_water_level(raw_distance, tank.tank_height_cm)
        fill_percentage = compute_fill_percentage(water_level_cm, tank.tank_height_cm)
        volume_liters = compute_estimated_volume(water_level_cm, tank.tank_radius_cm)

        decision = decide_tank_refill(tank, water_level_cm, now)
        pump_triggered = decision.triggered and claim_tank_pump_start(
            db,
            tank_pk=tank.id,
            observed_last_pump_start_at=tank.last_pump_start_at,
            now=now,
        )
        relays = request.relays
        reading = add_water_reading(
            db,
            tank_id=tank.tank_id,
            sensor_id=device_id,
            distance_cm=distance_cm,
            water_level_cm=water_level_cm,
            fill_percentage=fill_percentage,
            volume_liters=volume_liters,
            relay_status=(relays.water_pump if relays and relays.water_pump else "unknown"),
            pump_triggered=pump_triggered,
            ts=now,
        )
        if pump_triggered:
            add_actuation_log(
                db,
                config_kind="tank",
                config_id=tank.tank_id,
                device_id=device_id,
                target="water_pump",
                trigger="automatic_low_water",
                measured_value=water_level_cm,
                target_min=decision.target_min,
                ts=now,
            )
        db.commit()

        self._logger.info(
            "water reading stored device_id=%s tank_id=%s field=%s distance_cm=%s level_cm=%s fill_pct=%s pump=%s",
            device_id,
            tank.tank_id,
            source_field,
            distance_cm,
            water_level_cm,
            fill_percentage,
            pump_triggered,
        )
        return {
            "success": True,
            "tank_id": tank.tank_id,
            "data": water_reading_to_dict(reading),
            "pump_triggered": pump_triggered,
            "decision": decision.reason,
        }

    def _process_soil(self, db: Session, request: SensorReadingRequest, now: datetime) -> dict[str, Any]:
        device_id = request.device_id
        moisture = float(request.sensors.soil_moisture.value)  # type: ignore[union-attr,arg-type]
        check_range("soil moisture", moisture, MOISTURE_RANGE)

        zone = resolve_soil_zone(db, device_id, self._settings.default_zone_id)
        if zone is None:
            raise _ConfigurationMissing(f"no zone configuration found for sensor '{device_id}'")

        targets = self._moisture_targets(db, zone, now)
        decision = decide_zone_irrigation(
            zone,
            moisture,
            targets.min_moisture,
            targets.max_moisture,
            now,
        )
        irrigation_triggered = decision.triggered and claim_zone_irrigation(
            db,
            zone_pk=zone.id,
            observed_last_irrigation_at=zone.last_irrigation_at,
            now=now,
        )
        if decision.triggered and not irrigation_triggered:
            self._logger.info(
                "irrigation already claimed by a concurrent reading zone_id=%s",
                zone.zone_id,
            )

        environmental = request.sensors.environmental
        temperature = None
        if environmental is not None and environmental.temperature is not None and environmental.temperature.usable:
            temperature = environmental.temperature.value
        relays = request.relays
        reading = add_soil_moisture_reading(
            db,
            zone_id=zone.zone_id,
            sensor_id=device_id,
            moisture_percentage=moisture,
            temperature=temperature,
            relay_status=(relays.irrigation if relays and relays.irrigation else "auto"),
            irrigation_triggered=irrigation_triggered,
            target_source=targets.source,
            target_min_moisture=targets.min_moisture,
            target_max_moisture=targets.max_moisture,
            stage_name=targets.stage_name,
            stage_day=targets.day_in_stage,
            ts=now,
        )
        if irrigation_triggered:
            add_actuation_log(
                db,
                config_kind="zone",
                config_id=zone.zone_id,
                device_id=device_id,
                target="irrigation",
                trigger="automatic_low_moisture",
                measured_value=moisture,
                target_min=targets.min_moisture,
                ts=now,
            )
        db.commit()

        self._logger.info(
            "soil reading stored device_id=%s zone_id=%s moisture=%s target_min=%s source=%s irrigation=%s",
            device_id,
            zone.zone_id,
            moisture,
            targets.min_moisture,
            targets.source,
            irrigation_triggered,
        )
        return {
            "success": True,
            "zone_id": zone.zone_id,
            "data": soil_reading_to_dict(reading),
            "irrigation_triggered": irrigation_triggered,
            "decision": decision.reason,
        }

    def _process_environmental(
        self,
        db: Session,
        request: SensorReadingRequest,
        now: datetime,
    ) -> dict[str, Any]:
        environmental = request.sensors.environmental
        temperature = environmental.temperature if environmental else None
        humidity = environmental.humidity if environmental else None
        temperature_celsius = temperature.value if temperature is not None and temperature.usable else None
        humidity_percent = humidity.value if humidity is not None and humidity.usable else None
        check_range("temperature", temperature_celsius, TEMPERATURE_RANGE_CELSIUS)
        check_range("humidity", humidity_percent, HUMIDITY_RANGE)

        reading = add_environmental_reading(
            db,
            sensor_id=request.device_id,
            location=request.location or "field_station_1",
            temperature_celsius=temperature_celsius,
            humidity_percent=humidity_percent,
            ts=now,
        )
        db.commit()
        self._logger.info(
            "environmental reading stored device_id=%s temperature=%s humidity=%s",
            request.device_id,
            reading.temperature_celsius,
            reading.humidity_percent,
        )
        return {"success": True, "data": environmental_reading_to_dict(reading)}

    def _moisture_targets(self, db: Session, zone: ZoneConfig, now: datetime) -> MoistureTargets:
        profile: CropProfileSnapshot | None = None
        if not zone.use_static_thresholds:
            try:
                model = get_crop_profile(db, zone.crop_type, active_only=True)
                profile = snapshot_crop_profile(model) if model is not None else None
            except SQLAlchemyError:
                db.rollback()
                self._logger.warning(
                    "crop profile lookup failed; using static thresholds zone_id=%s crop_type=%s",
                    zone.zone_id,
                    zone.crop_type,
                    exc_info=True,
                )
        return resolve_moisture_targets(zone, profile, now)


def water_reading_to_dict(reading: WaterReading) -> dict[str, Any]:
    return {
        "id": reading.id,
        "tank_id": reading.tank_id,
        "sensor_id": reading.sensor_id,
        "distance_cm": reading.distance_cm,
        "water_level_cm": reading.water_level_cm,
        "fill_percentage": reading.fill_percentage,
        "volume_liters": reading.volume_liters,
        "relay_status": reading.relay_status,
        "pump_triggered": reading.pump_triggered,
        "ts": _to_utc(reading.ts).isoformat(),
    }


def soil_reading_to_dict(reading: SoilMoistureReading) -> dict[str, Any]:
    stage_info = None
    if reading.stage_name is not None:
        stage_info = {"stage_name": reading.stage_name, "day_in_stage": reading.stage_day}
    return {
        "id": reading.id,
        "zone_id": reading.zone_id,
        "sensor_id": reading.sensor_id,
        "moisture_percentage": reading.moisture_percentage,
        "moisture_status": moisture_status(reading.moisture_percentage),
        "temperature": reading.temperature,
        "relay_status": reading.relay_status,
        "irrigation_triggered": reading.irrigation_triggered,
        "targets": {
            "min_moisture": reading.target_min_moisture,
            "max_moisture": reading.target_max_moisture,
            "source": reading.target_source,
        },
        "stage_info": stage_info,
        "ts": _to_utc(reading.ts).isoformat(),
    }


def environmental_reading_to_dict(reading: EnvironmentalReading) -> dict[str, Any]:
    return {
        "id": reading.id,
        "sensor_id": reading.sensor_id,
        "location": reading.location,
        "temperature_celsius": reading.temperature_celsius,
        "humidity_percent": reading.humidity_percent,
        "ts": _to_utc(reading.ts).isoformat(),
    }


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

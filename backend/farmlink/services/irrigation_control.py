"""Operator-issued actuator commands.

A zone command is delivered to the sensor gateway assigned to the zone.
Every manual command, zone- or device-addressed, is written to the
actuation log next to the automatic decisions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from farmlink.db.models import ActuationLog, ZoneConfig
from farmlink.repositories.commands import QueuedCommand
from farmlink.repositories.device_configs import (
    get_crop_profile,
    get_tank_config_by_sensor,
    get_zone_config,
    get_zone_config_by_sensor,
    list_zone_configs,
)
from farmlink.repositories.readings import (
    add_actuation_log,
    get_latest_soil_reading,
    get_latest_water_reading,
    stamp_zone_irrigation,
)
from farmlink.services.command_queue import CommandQueueService
from farmlink.services.growth_stage import (
    MoistureTargets,
    days_since_planting,
    resolve_moisture_targets,
    snapshot_crop_profile,
)

TRIGGER_MANUAL = "manual"
TRIGGER_MANUAL_OVERRIDE = "manual_override"
TRIGGER_BULK = "bulk_operation"


class UnknownZoneError(LookupError):
    pass


class ZoneWithoutSensorError(Exception):
    pass


@dataclass(frozen=True)
class ZoneCommandResult:
    zone_id: str
    sensor_id: str
    action: str
    trigger: str
    command: QueuedCommand
    moisture_level: float | None
    targets: MoistureTargets
    days_since_planting: int


@dataclass
class BulkIrrigationResult:
    action: str
    queued: list[ZoneCommandResult] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)


class IrrigationControlService:
    def __init__(self, *, session_factory: sessionmaker, command_queue: CommandQueueService):
        self._session_factory = session_factory
        self._command_queue = command_queue
        self._logger = logging.getLogger("farmlink.irrigation_control")

    def command_zone(
        self,
        *,
        zone_id: str,
        action: str,
        force_manual: bool = False,
        relay_id: str | None = None,
        now: datetime | None = None,
    ) -> ZoneCommandResult:
        trigger = TRIGGER_MANUAL_OVERRIDE if force_manual else TRIGGER_MANUAL
        with self._session_factory() as db:
            zone = get_zone_config(db, zone_id)
            if zone is None:
                raise UnknownZoneError(f"zone '{zone_id}' not found")
            return self._command(
                db,
                zone,
                action=action,
                trigger=trigger,
                relay_id=relay_id,
                now=now or datetime.now(timezone.utc),
            )

    def command_bulk(
        self,
        *,
        action: str,
        zone_ids: Sequence[str] | None = None,
        now: datetime | None = None,
    ) -> BulkIrrigationResult:
        """Queue ``action`` for the listed zones, or for every active zone when none are given."""
        issued_at = now or datetime.now(timezone.utc)
        result = BulkIrrigationResult(action=action)
        with self._session_factory() as db:
            if zone_ids:
                targets = list(dict.fromkeys(zone_ids))
            else:
                targets = [zone.zone_id for zone in list_zone_configs(db, active_only=True)]

            for zone_id in targets:
                zone = get_zone_config(db, zone_id)
                if zone is None:
                    result.errors.append({"zone_id": zone_id, "error": "zone not found"})
                    continue
                try:
                    result.queued.append(
                        self._command(
                            db,
                            zone,
                            action=action,
                            trigger=TRIGGER_BULK,
                            relay_id=None,
                            now=issued_at,
                        )
                    )
                except ZoneWithoutSensorError as exc:
                    result.errors.append({"zone_id": zone_id, "error": str(exc)})
                except SQLAlchemyError as exc:
                    db.rollback()
                    result.errors.append({"zone_id": zone_id, "error": "storage unavailable"})
                    self._logger.error("bulk irrigation failed zone_id=%s error=%s", zone_id, exc)

        self._logger.info(
            "bulk irrigation action=%s queued=%s errors=%s",
            action,
            len(result.queued),
            len(result.errors),
        )
        return result

    def record_device_command(self, command: QueuedCommand, *, now: datetime | None = None) -> ActuationLog | None:
        """Log a device-addressed manual command against the zone or tank its device serves.

        The command is already queued, so a storage fault here is logged and
        does not fail the caller.
        """
        issued_at = now or datetime.now(timezone.utc)
        try:
            with self._session_factory() as db:
                if command.target == "irrigation":
                    zone = get_zone_config_by_sensor(db, command.device_id)
                    if zone is None:
                        return None
                    latest = get_latest_soil_reading(db, zone.zone_id)
                    entry = add_actuation_log(
                        db,
                        config_kind="zone",
                        config_id=zone.zone_id,
                        device_id=command.device_id,
                        relay_id=zone.relay_id,
                        target=command.target,
                        action=command.action,
                        trigger=command.trigger,
                        measured_value=latest.moisture_percentage if latest is not None else None,
                        target_min=zone.min_moisture,
                        ts=issued_at,
                    )
                    if command.action == "start":
                        stamp_zone_irrigation(db, zone_pk=zone.id, now=issued_at)
                else:
                    tank = get_tank_config_by_sensor(db, command.device_id)
                    if tank is None:
                        return None
                    latest_water = get_latest_water_reading(db, tank.tank_id)
                    entry = add_actuation_log(
                        db,
                        config_kind="tank",
                        config_id=tank.tank_id,
                        device_id=command.device_id,
                        target=command.target,
                        action=command.action,
                        trigger=command.trigger,
                        measured_value=latest_water.water_level_cm if latest_water is not None else None,
                        target_min=tank.min_threshold_cm,
                        ts=issued_at,
                    )
                db.commit()
                return entry
        except SQLAlchemyError:
            self._logger.exception(
                "actuation log write failed command_id=%s device_id=%s",
                command.id,
                command.device_id,
            )
            return None

    def _command(
        self,
        db: Session,
        zone: ZoneConfig,
        *,
        action: str,
        trigger: str,
        relay_id: str | None,
        now: datetime,
    ) -> ZoneCommandResult:
        if not zone.sensor_id:
            raise ZoneWithoutSensorError(f"zone '{zone.zone_id}' has no sensor assigned")

        latest = get_latest_soil_reading(db, zone.zone_id)
        moisture_level = latest.moisture_percentage if latest is not None else None
        targets = self._moisture_targets(db, zone, now)

        command = self._command_queue.enqueue(
            device_id=zone.sensor_id,
            action=action,
            target="irrigation",
            trigger=trigger,
        )
        add_actuation_log(
            db,
            config_kind="zone",
            config_id=zone.zone_id,
            device_id=zone.sensor_id,
            relay_id=relay_id or zone.relay_id,
            target="irrigation",
            action=action,
            trigger=trigger,
            measured_value=moisture_level,
            target_min=targets.min_moisture,
            ts=now,
        )
        if action == "start":
            stamp_zone_irrigation(db, zone_pk=zone.id, now=now)
        db.commit()

        self._logger.info(
            "zone command queued zone_id=%s sensor_id=%s action=%s trigger=%s command_id=%s",
            zone.zone_id,
            zone.sensor_id,
            action,
            trigger,
            command.id,
        )
        return ZoneCommandResult(
            zone_id=zone.zone_id,
            sensor_id=zone.sensor_id,
            action=action,
            trigger=trigger,
            command=command,
            moisture_level=moisture_level,
            targets=targets,
            days_since_planting=days_since_planting(zone.planting_date, now),
        )

    def _moisture_targets(self, db: Session, zone: ZoneConfig, now: datetime) -> MoistureTargets:
        profile = None
        if not zone.use_static_thresholds:
            try:
                model = get_crop_profile(db, zone.crop_type, active_only=True)
                profile = snapshot_crop_profile(model) if model is not None else None
            except SQLAlchemyError:
                db.rollback()
                self._logger.warning(
                    "crop profile lookup failed; using static thresholds zone_id=%s",
                    zone.zone_id,
                    exc_info=True,
                )
        return resolve_moisture_targets(zone, profile, now)

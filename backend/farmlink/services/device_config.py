"""Sensor assignment rules for tank and zone configurations.

A configuration holds at most one sensor and a sensor belongs to at most
one configuration of each kind. Re-assigning the same pair is a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from farmlink.db.models import TankConfig, ZoneConfig
from farmlink.repositories.device_configs import (
    get_tank_config,
    get_tank_config_by_sensor,
    get_zone_config,
    get_zone_config_by_sensor,
    set_tank_sensor,
    set_zone_sensor,
)

logger = logging.getLogger("farmlink.device_config")


class ConfigNotFoundError(LookupError):
    pass


class SensorAssignmentConflict(Exception):
    pass


def assign_tank_sensor(
    db: Session,
    *,
    tank_id: str,
    sensor_id: str,
    now: datetime | None = None,
) -> TankConfig:
    tank = get_tank_config(db, tank_id)
    if tank is None:
        raise ConfigNotFoundError(f"tank '{tank_id}' not found")
    if tank.sensor_id == sensor_id:
        return tank
    if tank.sensor_id is not None:
        raise SensorAssignmentConflict(
            f"tank '{tank_id}' already has sensor '{tank.sensor_id}' assigned"
        )
    holder = get_tank_config_by_sensor(db, sensor_id)
    if holder is not None and holder.tank_id != tank_id:
        raise SensorAssignmentConflict(
            f"sensor '{sensor_id}' is already assigned to tank '{holder.tank_id}'"
        )

    try:
        updated = set_tank_sensor(
            db,
            tank,
            sensor_id=sensor_id,
            assigned_at=now or datetime.now(timezone.utc),
        )
    except IntegrityError as exc:
        db.rollback()
        raise SensorAssignmentConflict(f"sensor '{sensor_id}' is already assigned") from exc
    logger.info("assigned sensor tank_id=%s sensor_id=%s", tank_id, sensor_id)
    return updated


def unassign_tank_sensor(db: Session, *, tank_id: str) -> TankConfig:
    tank = get_tank_config(db, tank_id)
    if tank is None:
        raise ConfigNotFoundError(f"tank '{tank_id}' not found")
    previous = tank.sensor_id
    updated = set_tank_sensor(db, tank, sensor_id=None, assigned_at=None)
    logger.info("unassigned sensor tank_id=%s sensor_id=%s", tank_id, previous)
    return updated


def assign_zone_sensor(
    db: Session,
    *,
    zone_id: str,
    sensor_id: str,
    now: datetime | None = None,
) -> ZoneConfig:
    zone = get_zone_config(db, zone_id)
    if zone is None:
        raise ConfigNotFoundError(f"zone '{zone_id}' not found")
    if zone.sensor_id == sensor_id:
        return zone
    if zone.sensor_id is not None:
        raise SensorAssignmentConflict(
            f"zone '{zone_id}' already has sensor '{zone.sensor_id}' assigned"
        )
    holder = get_zone_config_by_sensor(db, sensor_id)
    if holder is not None and holder.zone_id != zone_id:
        raise SensorAssignmentConflict(
            f"sensor '{sensor_id}' is already assigned to zone '{holder.zone_id}'"
        )

    try:
        updated = set_zone_sensor(
            db,
            zone,
            sensor_id=sensor_id,
            assigned_at=now or datetime.now(timezone.utc),
        )
    except IntegrityError as exc:
        db.rollback()
        raise SensorAssignmentConflict(f"sensor '{sensor_id}' is already assigned") from exc
    logger.info("assigned sensor zone_id=%s sensor_id=%s", zone_id, sensor_id)
    return updated


def unassign_zone_sensor(db: Session, *, zone_id: str) -> ZoneConfig:
    zone = get_zone_config(db, zone_id)
    if zone is None:
        raise ConfigNotFoundError(f"zone '{zone_id}' not found")
    previous = zone.sensor_id
    updated = set_zone_sensor(db, zone, sensor_id=None, assigned_at=None)
    logger.info("unassigned sensor zone_id=%s sensor_id=%s", zone_id, previous)
    return updated

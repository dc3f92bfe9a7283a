from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from farmlink.db.models import CropProfile, CropProfileStage, TankConfig, ZoneConfig


def list_tank_configs(db: Session) -> list[TankConfig]:
    return list(db.scalars(select(TankConfig).order_by(TankConfig.tank_id.asc())))


def get_tank_config(db: Session, tank_id: str) -> TankConfig | None:
    return db.scalars(select(TankConfig).where(TankConfig.tank_id == tank_id)).first()


def get_tank_config_by_sensor(db: Session, sensor_id: str) -> TankConfig | None:
    return db.scalars(
        select(TankConfig).where(TankConfig.sensor_id == sensor_id, TankConfig.is_active.is_(True))
    ).first()


def upsert_tank_config(db: Session, *, tank_id: str, values: dict[str, Any]) -> TankConfig:
    tank = get_tank_config(db, tank_id)
    if tank is None:
        tank = TankConfig(tank_id=tank_id)
    for key, value in values.items():
        setattr(tank, key, value)
    db.add(tank)
    db.commit()
    db.refresh(tank)
    return tank


def set_tank_sensor(
    db: Session,
    tank: TankConfig,
    *,
    sensor_id: str | None,
    assigned_at: datetime | None,
) -> TankConfig:
    tank.sensor_id = sensor_id
    tank.sensor_assigned_at = assigned_at
    db.add(tank)
    db.commit()
    db.refresh(tank)
    return tank


def list_zone_configs(db: Session, *, active_only: bool = False) -> list[ZoneConfig]:
    statement = select(ZoneConfig).order_by(ZoneConfig.zone_id.asc())
    if active_only:
        statement = statement.where(ZoneConfig.is_active.is_(True))
    return list(db.scalars(statement))


def get_zone_config(db: Session, zone_id: str) -> ZoneConfig | None:
    return db.scalars(select(ZoneConfig).where(ZoneConfig.zone_id == zone_id)).first()


def get_zone_config_by_sensor(db: Session, sensor_id: str) -> ZoneConfig | None:
    return db.scalars(
        select(ZoneConfig).where(ZoneConfig.sensor_id == sensor_id, ZoneConfig.is_active.is_(True))
    ).first()


def upsert_zone_config(db: Session, *, zone_id: str, values: dict[str, Any]) -> ZoneConfig:
    zone = get_zone_config(db, zone_id)
    if zone is None:
        zone = ZoneConfig(zone_id=zone_id)
    for key, value in values.items():
        setattr(zone, key, value)
    db.add(zone)
    db.commit()
    db.refresh(zone)
    return zone


def set_zone_sensor(
    db: Session,
    zone: ZoneConfig,
    *,
    sensor_id: str | None,
    assigned_at: datetime | None,
) -> ZoneConfig:
    zone.sensor_id = sensor_id
    zone.sensor_assigned_at = assigned_at
    db.add(zone)
    db.commit()
    db.refresh(zone)
    return zone


def list_crop_profiles(db: Session) -> list[CropProfile]:
    return list(
        db.scalars(
            select(CropProfile)
            .options(selectinload(CropProfile.stages))
            .order_by(CropProfile.crop_type.asc())
        )
    )


def get_crop_profile(db: Session, crop_type: str, *, active_only: bool = False) -> CropProfile | None:
    statement = (
        select(CropProfile)
        .options(selectinload(CropProfile.stages))
        .where(CropProfile.crop_type == crop_type)
    )
    if active_only:
        statement = statement.where(CropProfile.is_active.is_(True))
    return db.scalars(statement).first()


def upsert_crop_profile(
    db: Session,
    *,
    crop_type: str,
    name: str,
    duration_days: int,
    description: str,
    is_active: bool,
    stages: list[dict[str, Any]],
) -> CropProfile:
    profile = get_crop_profile(db, crop_type)
    if profile is None:
        profile = CropProfile(crop_type=crop_type)
    profile.name = name
    profile.duration_days = duration_days
    profile.description = description
    profile.is_active = is_active

    profile.stages.clear()
    db.flush()
    ordered = sorted(stages, key=lambda item: item["start_day"])
    for index, stage in enumerate(ordered):
        profile.stages.append(CropProfileStage(stage_index=index, **stage))

    db.add(profile)
    db.commit()
    return get_crop_profile(db, crop_type)  # type: ignore[return-value]


def count_assigned_sensors(db: Session) -> int:
    tanks = db.scalar(
        select(func.count(TankConfig.id)).where(
            TankConfig.sensor_id.is_not(None),
            TankConfig.is_active.is_(True),
        )
    ) or 0
    zones = db.scalar(
        select(func.count(ZoneConfig.id)).where(
            ZoneConfig.sensor_id.is_not(None),
            ZoneConfig.is_active.is_(True),
        )
    ) or 0
    return int(tanks) + int(zones)


def resolve_soil_zone(db: Session, sensor_id: str, default_zone_id: str | None) -> ZoneConfig | None:
    """Zone for a soil sensor: the assigned zone, else the configured default zone."""
    zone = get_zone_config_by_sensor(db, sensor_id)
    if zone is None and default_zone_id:
        zone = get_zone_config(db, default_zone_id)
    return zone

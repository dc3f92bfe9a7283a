from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from farmlink.db.models import (
    ActuationLog,
    EnvironmentalReading,
    SoilMoistureReading,
    TankConfig,
    WaterReading,
    ZoneConfig,
)

# The add_* helpers only flush; the caller commits so the reading, the
# actuation stamp and the actuation log land in one transaction.


def add_water_reading(
    db: Session,
    *,
    tank_id: str,
    sensor_id: str,
    distance_cm: float,
    water_level_cm: float,
    fill_percentage: int | None,
    volume_liters: int | None,
    relay_status: str,
    pump_triggered: bool,
    ts: datetime,
) -> WaterReading:
    reading = WaterReading(
        tank_id=tank_id,
        sensor_id=sensor_id,
        distance_cm=distance_cm,
        water_level_cm=water_level_cm,
        fill_percentage=fill_percentage,
        volume_liters=volume_liters,
        relay_status=relay_status,
        pump_triggered=pump_triggered,
        ts=ts,
    )
    db.add(reading)
    db.flush()
    return reading


def add_soil_moisture_reading(
    db: Session,
    *,
    zone_id: str,
    sensor_id: str,
    moisture_percentage: float,
    temperature: float | None,
    relay_status: str,
    irrigation_triggered: bool,
    target_source: str,
    target_min_moisture: float,
    target_max_moisture: float,
    stage_name: str | None,
    stage_day: int | None,
    ts: datetime,
) -> SoilMoistureReading:
    reading = SoilMoistureReading(
        zone_id=zone_id,
        sensor_id=sensor_id,
        moisture_percentage=moisture_percentage,
        temperature=temperature,
        relay_status=relay_status,
        irrigation_triggered=irrigation_triggered,
        target_source=target_source,
        target_min_moisture=target_min_moisture,
        target_max_moisture=target_max_moisture,
        stage_name=stage_name,
        stage_day=stage_day,
        ts=ts,
    )
    db.add(reading)
    db.flush()
    return reading


def add_environmental_reading(
    db: Session,
    *,
    sensor_id: str,
    location: str,
    temperature_celsius: float | None,
    humidity_percent: float | None,
    ts: datetime,
) -> EnvironmentalReading:
    reading = EnvironmentalReading(
        sensor_id=sensor_id,
        location=location,
        temperature_celsius=temperature_celsius,
        humidity_percent=humidity_percent,
        ts=ts,
    )
    db.add(reading)
    db.flush()
    return reading


def add_actuation_log(
    db: Session,
    *,
    config_kind: str,
    config_id: str,
    device_id: str,
    target: str,
    trigger: str,
    measured_value: float | None,
    target_min: float | None,
    ts: datetime,
    action: str = "start",
    relay_id: str | None = None,
) -> ActuationLog:
    entry = ActuationLog(
        config_kind=config_kind,
        config_id=config_id,
        device_id=device_id,
        relay_id=relay_id,
        target=target,
        action=action,
        trigger=trigger,
        measured_value=measured_value,
        target_min=target_min,
        ts=ts,
    )
    db.add(entry)
    db.flush()
    return entry


def claim_zone_irrigation(
    db: Session,
    *,
    zone_pk: int,
    observed_last_irrigation_at: datetime | None,
    now: datetime,
) -> bool:
    """Stamp ``last_irrigation_at`` only if nobody else stamped it since we read it."""
    if observed_last_irrigation_at is None:
        unchanged = ZoneConfig.last_irrigation_at.is_(None)
    else:
        unchanged = ZoneConfig.last_irrigation_at == observed_last_irrigation_at
    result = db.execute(
        update(ZoneConfig)
        .where(ZoneConfig.id == zone_pk, unchanged)
        .values(last_irrigation_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def stamp_zone_irrigation(db: Session, *, zone_pk: int, now: datetime) -> None:
    """Unconditional stamp for operator-issued starts; restarts the cooldown."""
    db.execute(
        update(ZoneConfig)
        .where(ZoneConfig.id == zone_pk)
        .values(last_irrigation_at=now)
        .execution_options(synchronize_session=False)
    )


def claim_tank_pump_start(
    db: Session,
    *,
    tank_pk: int,
    observed_last_pump_start_at: datetime | None,
    now: datetime,
) -> bool:
    if observed_last_pump_start_at is None:
        unchanged = TankConfig.last_pump_start_at.is_(None)
    else:
        unchanged = TankConfig.last_pump_start_at == observed_last_pump_start_at
    result = db.execute(
        update(TankConfig)
        .where(TankConfig.id == tank_pk, unchanged)
        .values(last_pump_start_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def get_latest_water_reading(db: Session, tank_id: str) -> WaterReading | None:
    return db.scalars(
        select(WaterReading)
        .where(WaterReading.tank_id == tank_id)
        .order_by(WaterReading.ts.desc(), WaterReading.id.desc())
        .limit(1)
    ).first()


def get_latest_soil_reading(db: Session, zone_id: str) -> SoilMoistureReading | None:
    return db.scalars(
        select(SoilMoistureReading)
        .where(SoilMoistureReading.zone_id == zone_id)
        .order_by(SoilMoistureReading.ts.desc(), SoilMoistureReading.id.desc())
        .limit(1)
    ).first()


def get_latest_environmental_reading(db: Session, sensor_id: str) -> EnvironmentalReading | None:
    return db.scalars(
        select(EnvironmentalReading)
        .where(EnvironmentalReading.sensor_id == sensor_id)
        .order_by(EnvironmentalReading.ts.desc(), EnvironmentalReading.id.desc())
        .limit(1)
    ).first()


def list_soil_readings_since(db: Session, zone_id: str, since: datetime) -> list[SoilMoistureReading]:
    return list(
        db.scalars(
            select(SoilMoistureReading)
            .where(SoilMoistureReading.zone_id == zone_id, SoilMoistureReading.ts >= since)
            .order_by(SoilMoistureReading.ts.asc(), SoilMoistureReading.id.asc())
        )
    )


def list_zone_irrigation_logs_since(db: Session, zone_id: str, since: datetime) -> list[ActuationLog]:
    return list(
        db.scalars(
            select(ActuationLog)
            .where(
                ActuationLog.config_kind == "zone",
                ActuationLog.config_id == zone_id,
                ActuationLog.target == "irrigation",
                ActuationLog.ts >= since,
            )
            .order_by(ActuationLog.ts.asc(), ActuationLog.id.asc())
        )
    )


def water_level_aggregates(
    db: Session,
    tank_id: str,
    since: datetime,
) -> tuple[int, float | None, float | None, float | None]:
    """(count, avg, min, max) of ``water_level_cm`` for one tank since ``since``."""
    row = db.execute(
        select(
            func.count(WaterReading.id),
            func.avg(WaterReading.water_level_cm),
            func.min(WaterReading.water_level_cm),
            func.max(WaterReading.water_level_cm),
        ).where(WaterReading.tank_id == tank_id, WaterReading.ts >= since)
    ).one()
    count, average, minimum, maximum = row
    return (
        int(count or 0),
        float(average) if average is not None else None,
        float(minimum) if minimum is not None else None,
        float(maximum) if maximum is not None else None,
    )

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from farmlink.db.models import Equipment, EquipmentStatusHistory


def create_equipment(db: Session, *, device_id: str, name: str, site: str | None) -> Equipment:
    equipment = Equipment(
        device_id=device_id,
        name=name,
        site=site,
        sensor1=False,
        sensor2=False,
        sensor3=False,
        status="offline",
        power_on=False,
        last_heartbeat_at=None,
    )
    db.add(equipment)
    db.commit()
    db.refresh(equipment)
    return equipment


def get_equipment(db: Session, equipment_id: int) -> Equipment | None:
    return db.get(Equipment, equipment_id)


def get_equipment_by_device(db: Session, device_id: str) -> Equipment | None:
    return db.scalars(select(Equipment).where(Equipment.device_id == device_id)).first()


def list_equipment(db: Session) -> list[Equipment]:
    return list(db.scalars(select(Equipment).order_by(Equipment.name.asc(), Equipment.id.asc())))


def add_status_history(
    db: Session,
    *,
    equipment: Equipment,
    source: str,
    at: datetime,
) -> EquipmentStatusHistory:
    entry = EquipmentStatusHistory(
        equipment_id=equipment.id,
        sensor1=equipment.sensor1,
        sensor2=equipment.sensor2,
        sensor3=equipment.sensor3,
        status=equipment.status,
        power_on=equipment.power_on,
        source=source,
        at=at,
    )
    db.add(entry)
    return entry


def list_status_history(
    db: Session,
    *,
    equipment_id: int,
    limit: int,
) -> list[EquipmentStatusHistory]:
    return list(
        db.scalars(
            select(EquipmentStatusHistory)
            .where(EquipmentStatusHistory.equipment_id == equipment_id)
            .order_by(EquipmentStatusHistory.at.desc(), EquipmentStatusHistory.id.desc())
            .limit(limit)
        )
    )


def mark_stale_equipment_offline(db: Session, *, cutoff: datetime, now: datetime) -> list[int]:
    """Flip every stale, not-yet-offline machine to offline in one statement.

    The filter is evaluated by the UPDATE itself, so a heartbeat committed
    after the cutoff was read is left alone. History rows are added in the
    same transaction; the caller commits.
    """
    result = db.execute(
        update(Equipment)
        .where(
            or_(Equipment.last_heartbeat_at.is_(None), Equipment.last_heartbeat_at < cutoff),
            or_(Equipment.power_on.is_(True), Equipment.status != "offline"),
        )
        .values(
            sensor1=False,
            sensor2=False,
            sensor3=False,
            status="offline",
            power_on=False,
            updated_at=now,
        )
        .returning(Equipment.id)
        .execution_options(synchronize_session=False)
    )
    equipment_ids = [int(row[0]) for row in result]
    for equipment_id in equipment_ids:
        db.add(
            EquipmentStatusHistory(
                equipment_id=equipment_id,
                sensor1=False,
                sensor2=False,
                sensor3=False,
                status="offline",
                power_on=False,
                source="sweeper",
                at=now,
            )
        )
    return equipment_ids

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from farmlink.db.models import Equipment, EquipmentStatusHistory
from farmlink.repositories.equipment import (
    add_status_history,
    create_equipment,
    get_equipment,
    get_equipment_by_device,
    list_equipment,
    list_status_history,
)

_STATUS_BY_ACTIVE_COUNT = {
    3: "operational",
    2: "warning",
    1: "critical",
    0: "offline",
}


class UnknownEquipmentError(LookupError):
    pass


class DuplicateEquipmentError(Exception):
    pass


def compute_equipment_status(sensor1: bool, sensor2: bool, sensor3: bool) -> str:
    active = sum(1 for flag in (sensor1, sensor2, sensor3) if flag)
    return _STATUS_BY_ACTIVE_COUNT[active]


class EquipmentService:
    def __init__(self, *, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._logger = logging.getLogger("farmlink.equipment")

    def register(self, *, device_id: str, name: str, site: str | None = None) -> Equipment:
        with self._session_factory() as db:
            if get_equipment_by_device(db, device_id) is not None:
                raise DuplicateEquipmentError(f"equipment with device_id '{device_id}' already exists")
            try:
                equipment = create_equipment(db, device_id=device_id, name=name, site=site)
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateEquipmentError(
                    f"equipment with device_id '{device_id}' already exists"
                ) from exc
        self._logger.info("registered equipment id=%s device_id=%s", equipment.id, device_id)
        return equipment

    def ingest_heartbeat(
        self,
        *,
        device_id: str,
        sensor1: bool,
        sensor2: bool,
        sensor3: bool,
        now: datetime | None = None,
    ) -> Equipment:
        received_at = now or datetime.now(timezone.utc)
        with self._session_factory() as db:
            equipment = get_equipment_by_device(db, device_id)
            if equipment is None:
                raise UnknownEquipmentError(f"no equipment registered for device_id '{device_id}'")

            previous_status = equipment.status
            equipment.sensor1 = bool(sensor1)
            equipment.sensor2 = bool(sensor2)
            equipment.sensor3 = bool(sensor3)
            equipment.status = compute_equipment_status(sensor1, sensor2, sensor3)
            equipment.power_on = True
            equipment.last_heartbeat_at = received_at
            db.add(equipment)
            db.flush()
            add_status_history(db, equipment=equipment, source="heartbeat", at=received_at)
            db.commit()
            db.refresh(equipment)

        if previous_status != equipment.status:
            self._logger.info(
                "equipment status changed device_id=%s from=%s to=%s",
                device_id,
                previous_status,
                equipment.status,
            )
        else:
            self._logger.debug("heartbeat device_id=%s status=%s", device_id, equipment.status)
        return equipment

    def get(self, equipment_id: int) -> Equipment:
        with self._session_factory() as db:
            equipment = get_equipment(db, equipment_id)
        if equipment is None:
            raise UnknownEquipmentError(f"equipment {equipment_id} not found")
        return equipment

    def get_by_device(self, device_id: str) -> Equipment:
        with self._session_factory() as db:
            equipment = get_equipment_by_device(db, device_id)
        if equipment is None:
            raise UnknownEquipmentError(f"no equipment registered for device_id '{device_id}'")
        return equipment

    def list(self) -> list[Equipment]:
        with self._session_factory() as db:
            return list_equipment(db)

    def history(self, equipment_id: int, *, limit: int = 100) -> list[EquipmentStatusHistory]:
        with self._session_factory() as db:
            if get_equipment(db, equipment_id) is None:
                raise UnknownEquipmentError(f"equipment {equipment_id} not found")
            return list_status_history(db, equipment_id=equipment_id, limit=limit)

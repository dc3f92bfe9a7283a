from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from farmlink.db.models import Equipment, EquipmentStatusHistory
from farmlink.dependencies import get_equipment_service
from farmlink.schemas.equipment import (
    EquipmentCreate,
    EquipmentHistoryItem,
    EquipmentResponse,
    HeartbeatRequest,
)
from farmlink.services.equipment import DuplicateEquipmentError, EquipmentService, UnknownEquipmentError


router = APIRouter(prefix="/api/machines", tags=["machines"])


def _raise_unknown(exc: UnknownEquipmentError) -> None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("", response_model=EquipmentResponse, status_code=status.HTTP_201_CREATED)
def register_machine(
    payload: EquipmentCreate,
    equipment_service: EquipmentService = Depends(get_equipment_service),
) -> Equipment:
    try:
        return equipment_service.register(device_id=payload.device_id, name=payload.name, site=payload.site)
    except DuplicateEquipmentError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.get("", response_model=list[EquipmentResponse])
def list_machines(
    equipment_service: EquipmentService = Depends(get_equipment_service),
) -> list[Equipment]:
    return equipment_service.list()


@router.post("/ingest", response_model=EquipmentResponse)
def ingest_heartbeat(
    payload: HeartbeatRequest,
    equipment_service: EquipmentService = Depends(get_equipment_service),
) -> Equipment:
    try:
        return equipment_service.ingest_heartbeat(
            device_id=payload.device_id,
            sensor1=payload.sensor1,
            sensor2=payload.sensor2,
            sensor3=payload.sensor3,
        )
    except UnknownEquipmentError as exc:
        _raise_unknown(exc)


@router.get("/by-device/{device_id}", response_model=EquipmentResponse)
def get_machine_by_device(
    device_id: str,
    equipment_service: EquipmentService = Depends(get_equipment_service),
) -> Equipment:
    try:
        return equipment_service.get_by_device(device_id)
    except UnknownEquipmentError as exc:
        _raise_unknown(exc)


@router.get("/{equipment_id}", response_model=EquipmentResponse)
def get_machine(
    equipment_id: int,
    equipment_service: EquipmentService = Depends(get_equipment_service),
) -> Equipment:
    try:
        return equipment_service.get(equipment_id)
    except UnknownEquipmentError as exc:
        _raise_unknown(exc)


@router.get("/{equipment_id}/history", response_model=list[EquipmentHistoryItem])
def get_machine_history(
    equipment_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    equipment_service: EquipmentService = Depends(get_equipment_service),
) -> list[EquipmentStatusHistory]:
    try:
        return equipment_service.history(equipment_id, limit=limit)
    except UnknownEquipmentError as exc:
        _raise_unknown(exc)

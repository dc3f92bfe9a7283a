from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from farmlink.db.models import CropProfile, TankConfig, ZoneConfig
from farmlink.db.session import get_db
from farmlink.repositories.device_configs import (
    get_crop_profile,
    get_tank_config,
    get_zone_config,
    list_crop_profiles,
    list_tank_configs,
    list_zone_configs,
    upsert_crop_profile,
    upsert_tank_config,
    upsert_zone_config,
)
from farmlink.schemas.device_configs import (
    CropProfileResponse,
    CropProfileUpsert,
    GrowthStageResponse,
    SensorAssignRequest,
    TankConfigResponse,
    TankConfigUpsert,
    ZoneConfigResponse,
    ZoneConfigUpsert,
)
from farmlink.services.device_config import (
    ConfigNotFoundError,
    SensorAssignmentConflict,
    assign_tank_sensor,
    assign_zone_sensor,
    unassign_tank_sensor,
    unassign_zone_sensor,
)
from farmlink.services.growth_stage import (
    days_since_planting,
    resolve_moisture_targets,
    resolve_stage,
    snapshot_crop_profile,
)


router = APIRouter(prefix="/api", tags=["device-configs"])
logger = logging.getLogger("farmlink.device_configs_api")


def _raise_not_found(exc: ConfigNotFoundError) -> None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _raise_conflict(exc: Exception) -> None:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/tanks", response_model=list[TankConfigResponse])
def get_all_tanks(db: Session = Depends(get_db)) -> list[TankConfig]:
    return list_tank_configs(db)


@router.get("/tanks/{tank_id}", response_model=TankConfigResponse)
def get_tank(tank_id: str, db: Session = Depends(get_db)) -> TankConfig:
    tank = get_tank_config(db, tank_id)
    if tank is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"tank '{tank_id}' not found")
    return tank


@router.put("/tanks/{tank_id}", response_model=TankConfigResponse)
def put_tank(tank_id: str, payload: TankConfigUpsert, db: Session = Depends(get_db)) -> TankConfig:
    tank = upsert_tank_config(db, tank_id=tank_id, values=payload.model_dump())
    logger.info("saved tank config tank_id=%s", tank_id)
    return tank


@router.post("/tanks/{tank_id}/sensor", response_model=TankConfigResponse)
def post_tank_sensor(
    tank_id: str,
    payload: SensorAssignRequest,
    db: Session = Depends(get_db),
) -> TankConfig:
    try:
        return assign_tank_sensor(db, tank_id=tank_id, sensor_id=payload.sensor_id)
    except ConfigNotFoundError as exc:
        _raise_not_found(exc)
    except SensorAssignmentConflict as exc:
        _raise_conflict(exc)


@router.delete("/tanks/{tank_id}/sensor", response_model=TankConfigResponse)
def delete_tank_sensor(tank_id: str, db: Session = Depends(get_db)) -> TankConfig:
    try:
        return unassign_tank_sensor(db, tank_id=tank_id)
    except ConfigNotFoundError as exc:
        _raise_not_found(exc)


@router.get("/zones", response_model=list[ZoneConfigResponse])
def get_all_zones(db: Session = Depends(get_db)) -> list[ZoneConfig]:
    return list_zone_configs(db)


@router.get("/zones/{zone_id}", response_model=ZoneConfigResponse)
def get_zone(zone_id: str, db: Session = Depends(get_db)) -> ZoneConfig:
    zone = get_zone_config(db, zone_id)
    if zone is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"zone '{zone_id}' not found")
    return zone


@router.put("/zones/{zone_id}", response_model=ZoneConfigResponse)
def put_zone(zone_id: str, payload: ZoneConfigUpsert, db: Session = Depends(get_db)) -> ZoneConfig:
    zone = upsert_zone_config(db, zone_id=zone_id, values=payload.model_dump())
    logger.info("saved zone config zone_id=%s crop_type=%s", zone_id, zone.crop_type)
    return zone


@router.post("/zones/{zone_id}/sensor", response_model=ZoneConfigResponse)
def post_zone_sensor(
    zone_id: str,
    payload: SensorAssignRequest,
    db: Session = Depends(get_db),
) -> ZoneConfig:
    try:
        return assign_zone_sensor(db, zone_id=zone_id, sensor_id=payload.sensor_id)
    except ConfigNotFoundError as exc:
        _raise_not_found(exc)
    except SensorAssignmentConflict as exc:
        _raise_conflict(exc)


@router.delete("/zones/{zone_id}/sensor", response_model=ZoneConfigResponse)
def delete_zone_sensor(zone_id: str, db: Session = Depends(get_db)) -> ZoneConfig:
    try:
        return unassign_zone_sensor(db, zone_id=zone_id)
    except ConfigNotFoundError as exc:
        _raise_not_found(exc)


@router.get("/zones/{zone_id}/growth-stage", response_model=GrowthStageResponse)
def get_zone_growth_stage(zone_id: str, db: Session = Depends(get_db)) -> GrowthStageResponse:
    zone = get_zone_config(db, zone_id)
    if zone is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"zone '{zone_id}' not found")

    now = datetime.now(timezone.utc)
    model = get_crop_profile(db, zone.crop_type, active_only=True)
    profile = snapshot_crop_profile(model) if model is not None else None
    resolution = resolve_stage(profile, zone.planting_date, now) if profile is not None else None
    targets = resolve_moisture_targets(zone, profile, now)

    return GrowthStageResponse(
        zone_id=zone.zone_id,
        crop_type=zone.crop_type,
        planting_date=zone.planting_date,
        days_since_planting=days_since_planting(zone.planting_date, now),
        stage_name=resolution.stage.name if resolution else None,
        stage_index=resolution.stage_index if resolution else None,
        day_in_stage=resolution.day_in_stage if resolution else None,
        stage_progress_percent=resolution.stage_progress_percent if resolution else None,
        days_remaining_in_stage=resolution.days_remaining_in_stage if resolution else None,
        progress_percent=resolution.progress_percent if resolution else None,
        past_maturity=resolution.past_maturity if resolution else False,
        is_critical=resolution.stage.is_critical if resolution else False,
        target_min_moisture=targets.min_moisture,
        target_max_moisture=targets.max_moisture,
        target_source=targets.source,
        timestamp=now,
    )


@router.get("/crop-profiles", response_model=list[CropProfileResponse])
def get_all_crop_profiles(db: Session = Depends(get_db)) -> list[CropProfile]:
    return list_crop_profiles(db)


@router.get("/crop-profiles/{crop_type}", response_model=CropProfileResponse)
def get_crop_profile_endpoint(crop_type: str, db: Session = Depends(get_db)) -> CropProfile:
    profile = get_crop_profile(db, crop_type)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"crop profile '{crop_type}' not found",
        )
    return profile


@router.put("/crop-profiles/{crop_type}", response_model=CropProfileResponse)
def put_crop_profile(
    crop_type: str,
    payload: CropProfileUpsert,
    db: Session = Depends(get_db),
) -> CropProfile:
    try:
        profile = upsert_crop_profile(
            db,
            crop_type=crop_type,
            name=payload.name,
            duration_days=payload.duration_days,
            description=payload.description,
            is_active=payload.is_active,
            stages=[stage.model_dump() for stage in payload.stages],
        )
    except IntegrityError as exc:
        db.rollback()
        _raise_conflict(exc)
    logger.info("saved crop profile crop_type=%s stages=%s", crop_type, len(payload.stages))
    return profile

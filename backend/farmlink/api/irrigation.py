from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from farmlink.dependencies import get_irrigation_control_service
from farmlink.schemas.irrigation import (
    BulkIrrigationErrorItem,
    BulkIrrigationQueuedItem,
    BulkIrrigationRequest,
    BulkIrrigationResponse,
    IrrigationStageInfo,
    ZoneIrrigationRequest,
    ZoneIrrigationResponse,
)
from farmlink.services.irrigation_control import (
    IrrigationControlService,
    UnknownZoneError,
    ZoneWithoutSensorError,
)


router = APIRouter(prefix="/api/irrigation", tags=["irrigation"])


@router.post("", response_model=ZoneIrrigationResponse, status_code=status.HTTP_201_CREATED)
def command_zone_irrigation(
    payload: ZoneIrrigationRequest,
    irrigation_service: IrrigationControlService = Depends(get_irrigation_control_service),
) -> ZoneIrrigationResponse:
    try:
        result = irrigation_service.command_zone(
            zone_id=payload.zone_id,
            action=payload.action,
            force_manual=payload.force_manual,
            relay_id=payload.relay_id,
        )
    except UnknownZoneError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ZoneWithoutSensorError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return ZoneIrrigationResponse(
        zone_id=result.zone_id,
        sensor_id=result.sensor_id,
        action=result.action,
        trigger=result.trigger,
        command_id=result.command.id,
        moisture_level=result.moisture_level,
        target_moisture=result.targets.min_moisture,
        target_source=result.targets.source,
        stage_info=IrrigationStageInfo(
            stage_name=result.targets.stage_name,
            day_in_stage=result.targets.day_in_stage,
            day_in_crop=result.days_since_planting,
        ),
        timestamp=result.command.created_at,
    )


@router.post("/bulk", response_model=BulkIrrigationResponse)
def command_bulk_irrigation(
    payload: BulkIrrigationRequest,
    irrigation_service: IrrigationControlService = Depends(get_irrigation_control_service),
) -> BulkIrrigationResponse:
    result = irrigation_service.command_bulk(action=payload.action, zone_ids=payload.zone_ids)
    return BulkIrrigationResponse(
        action=result.action,
        processed=len(result.queued),
        queued=[
            BulkIrrigationQueuedItem(
                zone_id=item.zone_id,
                sensor_id=item.sensor_id,
                command_id=item.command.id,
            )
            for item in result.queued
        ],
        errors=[BulkIrrigationErrorItem(**item) for item in result.errors],
    )

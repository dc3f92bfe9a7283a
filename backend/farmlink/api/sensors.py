from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from farmlink.core.config import Settings
from farmlink.db.session import get_db
from farmlink.dependencies import get_command_queue, get_sensor_ingest_service, get_settings_from_app
from farmlink.repositories.device_configs import (
    count_assigned_sensors,
    get_tank_config_by_sensor,
    resolve_soil_zone,
)
from farmlink.repositories.readings import (
    get_latest_environmental_reading,
    get_latest_soil_reading,
    get_latest_water_reading,
)
from farmlink.schemas.history import HistoryPointResponse, HistoryQueryEcho, HistoryResponse
from farmlink.schemas.sensors import (
    DeviceStatusResponse,
    IngestErrorItem,
    ManualCommandPayload,
    SensorReadingRequest,
    SensorReadingResponse,
    SensorsHealthResponse,
)
from farmlink.services.command_queue import CommandQueueService
from farmlink.services.history import HistoryQueryError, get_history
from farmlink.services.sensor_ingest import (
    IngestPersistenceError,
    SensorIngestService,
    environmental_reading_to_dict,
    soil_reading_to_dict,
    water_reading_to_dict,
)


router = APIRouter(prefix="/api", tags=["sensors"])


@router.post(
    "/ingest-reading",
    response_model=SensorReadingResponse,
    status_code=status.HTTP_201_CREATED,
)
def ingest_reading(
    payload: SensorReadingRequest,
    ingest_service: SensorIngestService = Depends(get_sensor_ingest_service),
) -> SensorReadingResponse:
    try:
        outcome = ingest_service.ingest(payload, received_ts=datetime.now(timezone.utc))
    except IngestPersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": "5"},
        ) from exc

    command = outcome.manual_command
    return SensorReadingResponse(
        device_id=outcome.device_id,
        responses=outcome.responses,
        errors=[IngestErrorItem(**item) for item in outcome.errors],
        manual_command=(
            ManualCommandPayload(
                id=command.id,
                action=command.action,
                target=command.target,
                trigger=command.trigger,
                timestamp=command.created_at,
            )
            if command is not None
            else None
        ),
        timestamp=outcome.processed_at,
    )


@router.get("/device-status/{device_id}", response_model=DeviceStatusResponse)
def get_device_status(
    device_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings_from_app),
    command_queue: CommandQueueService = Depends(get_command_queue),
) -> DeviceStatusResponse:
    water = None
    tank = get_tank_config_by_sensor(db, device_id)
    if tank is not None:
        latest_water = get_latest_water_reading(db, tank.tank_id)
        water = {
            "tank_id": tank.tank_id,
            "location": tank.location,
            "tank_height_cm": tank.tank_height_cm,
            "latest_reading": water_reading_to_dict(latest_water) if latest_water else None,
        }

    soil = None
    zone = resolve_soil_zone(db, device_id, settings.default_zone_id)
    if zone is not None:
        latest_soil = get_latest_soil_reading(db, zone.zone_id)
        soil = {
            "zone_id": zone.zone_id,
            "zone_name": zone.name,
            "latest_reading": soil_reading_to_dict(latest_soil) if latest_soil else None,
        }

    latest_environmental = get_latest_environmental_reading(db, device_id)
    return DeviceStatusResponse(
        device_id=device_id,
        water=water,
        soil=soil,
        environmental=(
            environmental_reading_to_dict(latest_environmental) if latest_environmental else None
        ),
        has_pending_command=command_queue.has_pending(device_id),
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/sensors/history/{device_id}", response_model=HistoryResponse)
def get_sensor_history(
    device_id: str,
    metric: str = Query(default="all", alias="param"),
    from_ts: datetime | None = Query(default=None, alias="from"),
    to_ts: datetime | None = Query(default=None, alias="to"),
    agg: str = Query(default="raw"),
    interval: str = Query(default="1h"),
    db: Session = Depends(get_db),
) -> HistoryResponse:
    try:
        result = get_history(
            db,
            device_id=device_id,
            metric=metric,
            start=from_ts,
            end=to_ts,
            aggregation=agg,
            interval=interval,
        )
    except HistoryQueryError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return HistoryResponse(
        query=HistoryQueryEcho(
            device_id=device_id,
            metric=result.metric.value if result.metric is not None else "all",
            start=result.start,
            end=result.end,
            aggregation=result.aggregation.value,
            interval=result.interval,
        ),
        readings={
            key: [HistoryPointResponse(ts=point.ts, value=point.value) for point in points]
            for key, points in result.series.items()
        },
    )


@router.get("/sensors/health", response_model=SensorsHealthResponse)
def get_sensors_health(
    db: Session = Depends(get_db),
    command_queue: CommandQueueService = Depends(get_command_queue),
) -> SensorsHealthResponse:
    return SensorsHealthResponse(
        status="healthy",
        total_configured_sensors=count_assigned_sensors(db),
        pending_commands=command_queue.count_pending(),
        command_store=command_queue.store_kind,
        timestamp=datetime.now(timezone.utc),
    )

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

from farmlink.core.config import Settings

if TYPE_CHECKING:
    from farmlink.services.command_queue import CommandQueueService
    from farmlink.services.equipment import EquipmentService
    from farmlink.services.heartbeat_sweeper import HeartbeatSweeperService
    from farmlink.services.irrigation_control import IrrigationControlService
    from farmlink.services.sensor_ingest import SensorIngestService


def get_settings_from_app(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(status_code=503, detail="Application settings are not initialized")
    return settings


def get_command_queue(request: Request) -> "CommandQueueService":
    service = getattr(request.app.state, "command_queue", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Command queue is not initialized")
    return service


def get_sensor_ingest_service(request: Request) -> "SensorIngestService":
    service = getattr(request.app.state, "sensor_ingest_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Sensor ingest service is not initialized")
    return service


def get_equipment_service(request: Request) -> "EquipmentService":
    service = getattr(request.app.state, "equipment_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Equipment service is not initialized")
    return service


def get_heartbeat_sweeper(request: Request) -> "HeartbeatSweeperService":
    service = getattr(request.app.state, "heartbeat_sweeper", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Heartbeat sweeper is not initialized")
    return service


def get_irrigation_control_service(request: Request) -> "IrrigationControlService":
    service = getattr(request.app.state, "irrigation_control_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Irrigation control service is not initialized")
    return service

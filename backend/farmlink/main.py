import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from farmlink.api.analytics import router as analytics_router
from farmlink.api.commands import router as commands_router
from farmlink.api.device_configs import router as device_configs_router
from farmlink.api.irrigation import router as irrigation_router
from farmlink.api.machines import router as machines_router
from farmlink.api.sensors import router as sensors_router
from farmlink.core.config import Settings, get_settings
from farmlink.core.logging import configure_logging
from farmlink.db.session import SessionLocal, check_db_connection, get_db
from farmlink.services.command_queue import CommandQueueService, build_command_store
from farmlink.services.equipment import EquipmentService
from farmlink.services.heartbeat_sweeper import HeartbeatSweeperService
from farmlink.services.irrigation_control import IrrigationControlService
from farmlink.services.sensor_ingest import SensorIngestService

logger = logging.getLogger("farmlink.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    command_queue = CommandQueueService(
        settings=settings,
        store=build_command_store(settings, SessionLocal),
    )
    sensor_ingest_service = SensorIngestService(
        settings=settings,
        session_factory=SessionLocal,
        command_queue=command_queue,
    )
    equipment_service = EquipmentService(session_factory=SessionLocal)
    irrigation_control_service = IrrigationControlService(
        session_factory=SessionLocal,
        command_queue=command_queue,
    )
    heartbeat_sweeper = HeartbeatSweeperService(
        settings=settings,
        session_factory=SessionLocal,
        command_queue=command_queue,
    )

    app.state.settings = settings
    app.state.command_queue = command_queue
    app.state.sensor_ingest_service = sensor_ingest_service
    app.state.equipment_service = equipment_service
    app.state.irrigation_control_service = irrigation_control_service
    app.state.heartbeat_sweeper = heartbeat_sweeper

    if settings.heartbeat_sweeper_enabled:
        heartbeat_sweeper.start()
    try:
        yield
    finally:
        heartbeat_sweeper.stop()


app = FastAPI(title="farmlink backend", lifespan=lifespan)
app.include_router(sensors_router)
app.include_router(commands_router)
app.include_router(device_configs_router)
app.include_router(machines_router)
app.include_router(irrigation_router)
app.include_router(analytics_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("database unavailable path=%s error=%s", request.url.path, exc.orig or exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"success": False, "detail": "Database unavailable, retry later"},
        headers={"Retry-After": "5"},
    )


@app.get("/health")
def health():
    return {"status": "ok", "service": "farmlink-backend"}


@app.get("/status")
def status_endpoint(request: Request, db: Session = Depends(get_db)):
    db_ok, db_error = check_db_connection(db)
    settings: Settings | None = getattr(request.app.state, "settings", None)
    command_queue: CommandQueueService | None = getattr(request.app.state, "command_queue", None)
    heartbeat_sweeper: HeartbeatSweeperService | None = getattr(
        request.app.state,
        "heartbeat_sweeper",
        None,
    )

    db_status: dict[str, object] = {"ok": db_ok}
    if db_error:
        db_status["error"] = db_error

    if heartbeat_sweeper is None:
        sweeper_status: dict[str, object] = {
            "running": False,
            "last_error": "Heartbeat sweeper not initialized",
        }
    else:
        sweeper_status = heartbeat_sweeper.get_status_snapshot()

    return {
        "database": db_status,
        "command_queue": {
            "store": command_queue.store_kind if command_queue else None,
        },
        "heartbeat_sweeper": sweeper_status,
        "config": {
            "command_retention_hours": settings.command_retention_hours if settings else None,
            "command_max_delivery_attempts": (
                settings.command_max_delivery_attempts if settings else None
            ),
            "heartbeat_offline_minutes": settings.heartbeat_offline_minutes if settings else None,
            "heartbeat_sweep_seconds": settings.heartbeat_sweep_seconds if settings else None,
            "default_zone_id": settings.default_zone_id if settings else None,
        },
    }

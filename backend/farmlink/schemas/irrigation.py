from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from farmlink.schemas.commands import CommandAction


def _trim(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class ZoneIrrigationRequest(BaseModel):
    zone_id: str = Field(min_length=1, max_length=64)
    action: CommandAction
    force_manual: bool = False
    relay_id: str | None = Field(default=None, max_length=64)

    @field_validator("zone_id", mode="before")
    @classmethod
    def _trim_zone_id(cls, value: Any) -> Any:
        return _trim(value)


class BulkIrrigationRequest(BaseModel):
    action: CommandAction
    zone_ids: list[str] = Field(default_factory=list, max_length=500)

    @field_validator("zone_ids", mode="before")
    @classmethod
    def _trim_zone_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_trim(item) for item in value]
        return value


class IrrigationStageInfo(BaseModel):
    stage_name: str | None = None
    day_in_stage: int | None = None
    day_in_crop: int


class ZoneIrrigationResponse(BaseModel):
    success: bool = True
    zone_id: str
    sensor_id: str
    action: CommandAction
    trigger: str
    command_id: int
    moisture_level: float | None = None
    target_moisture: float
    target_source: str
    stage_info: IrrigationStageInfo
    timestamp: datetime


class BulkIrrigationQueuedItem(BaseModel):
    zone_id: str
    sensor_id: str
    command_id: int
    status: str = "queued"


class BulkIrrigationErrorItem(BaseModel):
    zone_id: str
    error: str


class BulkIrrigationResponse(BaseModel):
    success: bool = True
    action: CommandAction
    processed: int
    queued: list[BulkIrrigationQueuedItem]
    errors: list[BulkIrrigationErrorItem]

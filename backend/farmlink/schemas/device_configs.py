from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from farmlink.services.growth_stage import validate_stage_table


class TankConfigUpsert(BaseModel):
    tank_height_cm: float = Field(gt=0, allow_inf_nan=False)
    tank_radius_cm: float = Field(gt=0, allow_inf_nan=False)
    max_capacity_liters: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    min_threshold_cm: float = Field(default=20.0, ge=0, allow_inf_nan=False)
    location: str = Field(default="", max_length=128)
    is_active: bool = True
    pump_auto_enabled: bool = False
    pump_cooldown_minutes: int = Field(default=60, ge=0, le=24 * 60)


class TankConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tank_id: str
    tank_height_cm: float
    tank_radius_cm: float
    max_capacity_liters: float | None
    min_threshold_cm: float
    location: str
    sensor_id: str | None
    sensor_assigned_at: datetime | None
    is_active: bool
    pump_auto_enabled: bool
    pump_cooldown_minutes: int
    last_pump_start_at: datetime | None


class ZoneConfigUpsert(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    field_name: str = Field(default="", max_length=128)
    area: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    crop_type: str = Field(min_length=1, max_length=64)
    planting_date: datetime
    min_moisture: float = Field(ge=0, le=100)
    max_moisture: float = Field(ge=0, le=100)
    irrigation_enabled: bool = True
    irrigation_duration_minutes: int = Field(default=30, ge=1, le=24 * 60)
    irrigation_cooldown_minutes: int = Field(default=120, ge=0, le=7 * 24 * 60)
    use_static_thresholds: bool = False
    relay_id: str | None = Field(default=None, max_length=64)
    is_active: bool = True
    notes: str = ""

    @model_validator(mode="after")
    def _validate_band(self) -> "ZoneConfigUpsert":
        if self.min_moisture > self.max_moisture:
            raise ValueError("min_moisture must not exceed max_moisture")
        return self


class ZoneConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    zone_id: str
    name: str
    field_name: str
    area: float | None
    crop_type: str
    planting_date: datetime
    min_moisture: float
    max_moisture: float
    irrigation_enabled: bool
    irrigation_duration_minutes: int
    irrigation_cooldown_minutes: int
    use_static_thresholds: bool
    sensor_id: str | None
    sensor_assigned_at: datetime | None
    relay_id: str | None
    is_active: bool
    last_irrigation_at: datetime | None
    notes: str


class CropStageInput(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    start_day: int = Field(ge=1)
    end_day: int = Field(ge=1)
    min_moisture: float = Field(ge=0, le=100)
    max_moisture: float = Field(ge=0, le=100)
    description: str = ""
    is_critical: bool = False


class CropProfileUpsert(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    duration_days: int = Field(gt=0, le=3650)
    description: str = ""
    is_active: bool = True
    stages: list[CropStageInput] = Field(min_length=1)

    @model_validator(mode="after")
    def _validate_stages(self) -> "CropProfileUpsert":
        validate_stage_table(self.stages, self.duration_days)
        return self


class CropStageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage_index: int
    name: str
    start_day: int
    end_day: int
    min_moisture: float
    max_moisture: float
    description: str
    is_critical: bool


class CropProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    crop_type: str
    name: str
    duration_days: int
    description: str
    is_active: bool
    stages: list[CropStageResponse]


class SensorAssignRequest(BaseModel):
    sensor_id: str = Field(min_length=1, max_length=64)

    @field_validator("sensor_id", mode="before")
    @classmethod
    def _trim_sensor_id(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class GrowthStageResponse(BaseModel):
    zone_id: str
    crop_type: str
    planting_date: datetime
    days_since_planting: int
    stage_name: str | None
    stage_index: int | None
    day_in_stage: int | None
    stage_progress_percent: float | None
    days_remaining_in_stage: int | None
    progress_percent: float | None
    past_maturity: bool
    is_critical: bool
    target_min_moisture: float
    target_max_moisture: float
    target_source: str
    timestamp: datetime

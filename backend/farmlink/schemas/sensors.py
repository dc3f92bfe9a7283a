from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

SensorClass = Literal["water", "soil", "environmental"]


def _trim_required(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


class SensorValue(BaseModel):
    value: float | None = Field(default=None, allow_inf_nan=False)
    valid: bool = False

    @model_validator(mode="after")
    def _valid_requires_value(self) -> "SensorValue":
        if self.valid and self.value is None:
            raise ValueError("value is required when valid is true")
        return self

    @property
    def usable(self) -> bool:
        return self.valid and self.value is not None


class EnvironmentalPayload(BaseModel):
    valid: bool = False
    temperature: SensorValue | None = None
    humidity: SensorValue | None = None


class SensorsPayload(BaseModel):
    water_distance: SensorValue | None = None
    water_level: SensorValue | None = None
    soil_moisture: SensorValue | None = None
    environmental: EnvironmentalPayload | None = None

    def valid_classes(self) -> list[SensorClass]:
        classes: list[SensorClass] = []
        if self.water_value() is not None:
            classes.append("water")
        if self.soil_moisture is not None and self.soil_moisture.usable:
            classes.append("soil")
        if self.environmental is not None and self.environmental.valid:
            classes.append("environmental")
        return classes

    def water_value(self) -> tuple[str, float] | None:
        # water_level is a legacy name for the same distance measurement.
        if self.water_distance is not None and self.water_distance.usable:
            return "water_distance", float(self.water_distance.value)  # type: ignore[arg-type]
        if self.water_level is not None and self.water_level.usable:
            return "water_level", float(self.water_level.value)  # type: ignore[arg-type]
        return None


class RelayStates(BaseModel):
    water_pump: Literal["on", "off", "unknown"] | None = None
    irrigation: Literal["on", "off", "auto"] | None = None


class SensorReadingRequest(BaseModel):
    device_id: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("device_id", "sensor_id"),
    )
    sensors: SensorsPayload
    relays: RelayStates | None = None
    location: str | None = Field(default=None, max_length=128)

    @field_validator("device_id", mode="before")
    @classmethod
    def _trim_device_id(cls, value: Any) -> Any:
        return _trim_required(value)

    @model_validator(mode="after")
    def _require_valid_class(self) -> "SensorReadingRequest":
        if not self.sensors.valid_classes():
            raise ValueError("at least one sensor class must be marked valid")
        return self


class ManualCommandPayload(BaseModel):
    id: int
    action: str
    target: str
    trigger: str
    timestamp: datetime


class IngestErrorItem(BaseModel):
    type: SensorClass
    kind: Literal["configuration_missing", "persistence", "processing"]
    error: str


class SensorReadingResponse(BaseModel):
    success: bool = True
    device_id: str
    responses: dict[str, dict[str, Any]]
    errors: list[IngestErrorItem]
    manual_command: ManualCommandPayload | None = None
    message: str = "Multi-sensor reading processed"
    timestamp: datetime


class DeviceStatusResponse(BaseModel):
    device_id: str
    water: dict[str, Any] | None
    soil: dict[str, Any] | None
    environmental: dict[str, Any] | None
    has_pending_command: bool
    timestamp: datetime


class SensorsHealthResponse(BaseModel):
    status: Literal["healthy"]
    total_configured_sensors: int
    pending_commands: int
    command_store: str
    timestamp: datetime

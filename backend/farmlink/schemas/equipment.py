from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

EquipmentStatus = Literal["operational", "warning", "critical", "offline"]


class EquipmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    device_id: str = Field(min_length=1, max_length=64)
    site: str | None = Field(default=None, max_length=128)


class HeartbeatRequest(BaseModel):
    device_id: str = Field(min_length=1, max_length=64)
    sensor1: bool
    sensor2: bool
    sensor3: bool


class EquipmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    device_id: str
    site: str | None
    sensor1: bool
    sensor2: bool
    sensor3: bool
    status: EquipmentStatus
    power_on: bool
    last_heartbeat_at: datetime | None


class EquipmentHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sensor1: bool
    sensor2: bool
    sensor3: bool
    status: EquipmentStatus
    power_on: bool
    source: Literal["heartbeat", "sweeper"]
    at: datetime

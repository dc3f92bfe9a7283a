from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from farmlink.services.command_queue import normalize_target

CommandAction = Literal["start", "stop"]
CommandTarget = Literal["water_pump", "irrigation"]
CommandStatus = Literal["queued", "dequeued", "executed", "failed"]


class _CommandTargetModel(BaseModel):
    device_id: str = Field(min_length=1, max_length=64)
    action: CommandAction
    target: CommandTarget

    @field_validator("device_id", mode="before")
    @classmethod
    def _trim_device_id(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("target", mode="before")
    @classmethod
    def _normalize_target(cls, value: Any) -> Any:
        # "pump" is accepted as shorthand for the water pump relay.
        return normalize_target(value) if isinstance(value, str) else value


class CommandCreateRequest(_CommandTargetModel):
    trigger: str = Field(default="manual", min_length=1, max_length=64)


class CommandAckRequest(_CommandTargetModel):
    success: bool = True


class CommandResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: str
    action: CommandAction
    target: CommandTarget
    trigger: str
    status: CommandStatus
    delivery_attempts: int
    created_at: datetime
    dequeued_at: datetime | None = None
    executed_at: datetime | None = None


class CommandQueuedResponse(BaseModel):
    success: bool = True
    queued: bool = True
    id: int
    device_id: str
    action: CommandAction
    target: CommandTarget
    trigger: str
    timestamp: datetime


class PendingCommandItem(BaseModel):
    id: int
    action: CommandAction
    target: CommandTarget
    trigger: str
    timestamp: datetime


class PendingCommandResponse(BaseModel):
    has_command: bool
    command: PendingCommandItem | None = None


class CommandAckResponse(BaseModel):
    success: bool = True
    updated: bool
    status: CommandStatus | None = None
    command_id: int | None = None


class CommandListResponse(BaseModel):
    count: int
    commands: list[CommandResponse]


class CommandClearResponse(BaseModel):
    success: bool = True
    device_id: str
    removed: int

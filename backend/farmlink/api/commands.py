from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from farmlink.dependencies import get_command_queue, get_irrigation_control_service
from farmlink.schemas.commands import (
    CommandAckRequest,
    CommandAckResponse,
    CommandClearResponse,
    CommandCreateRequest,
    CommandListResponse,
    CommandQueuedResponse,
    CommandResponse,
    PendingCommandItem,
    PendingCommandResponse,
)
from farmlink.services.command_queue import CommandQueueService
from farmlink.services.irrigation_control import IrrigationControlService


router = APIRouter(prefix="/api", tags=["commands"])


@router.post("/command", response_model=CommandQueuedResponse, status_code=status.HTTP_201_CREATED)
def create_command(
    payload: CommandCreateRequest,
    command_queue: CommandQueueService = Depends(get_command_queue),
    irrigation_service: IrrigationControlService = Depends(get_irrigation_control_service),
) -> CommandQueuedResponse:
    command = command_queue.enqueue(
        device_id=payload.device_id,
        action=payload.action,
        target=payload.target,
        trigger=payload.trigger,
    )
    irrigation_service.record_device_command(command)
    return CommandQueuedResponse(
        id=command.id,
        device_id=command.device_id,
        action=command.action,
        target=command.target,
        trigger=command.trigger,
        timestamp=command.created_at,
    )


@router.get("/pending-command/{device_id}", response_model=PendingCommandResponse)
def poll_pending_command(
    device_id: str,
    command_queue: CommandQueueService = Depends(get_command_queue),
) -> PendingCommandResponse:
    command = command_queue.dequeue_oldest(device_id)
    if command is None:
        return PendingCommandResponse(has_command=False)
    return PendingCommandResponse(
        has_command=True,
        command=PendingCommandItem(
            id=command.id,
            action=command.action,
            target=command.target,
            trigger=command.trigger,
            timestamp=command.created_at,
        ),
    )


@router.post("/command/ack", response_model=CommandAckResponse)
def acknowledge_command(
    payload: CommandAckRequest,
    command_queue: CommandQueueService = Depends(get_command_queue),
) -> CommandAckResponse:
    result = command_queue.acknowledge(
        device_id=payload.device_id,
        action=payload.action,
        target=payload.target,
        success=payload.success,
    )
    return CommandAckResponse(updated=result.updated, status=result.status, command_id=result.command_id)


@router.get("/commands", response_model=CommandListResponse)
def list_commands(
    device_id: str | None = Query(default=None, min_length=1, max_length=64),
    command_queue: CommandQueueService = Depends(get_command_queue),
) -> CommandListResponse:
    commands = command_queue.list_pending(device_id)
    return CommandListResponse(
        count=len(commands),
        commands=[CommandResponse.model_validate(item) for item in commands],
    )


@router.delete("/commands/{device_id}", response_model=CommandClearResponse)
def clear_commands(
    device_id: str,
    command_queue: CommandQueueService = Depends(get_command_queue),
) -> CommandClearResponse:
    removed = command_queue.clear_pending(device_id)
    return CommandClearResponse(device_id=device_id, removed=removed)

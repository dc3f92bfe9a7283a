from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, aliased

from farmlink.db.models import PendingCommand


@dataclass(frozen=True)
class QueuedCommand:
    id: int
    device_id: str
    action: str
    target: str
    trigger: str
    status: str
    delivery_attempts: int
    created_at: datetime
    dequeued_at: datetime | None
    executed_at: datetime | None


_COMMAND_COLUMNS = (
    PendingCommand.id,
    PendingCommand.device_id,
    PendingCommand.action,
    PendingCommand.target,
    PendingCommand.trigger,
    PendingCommand.status,
    PendingCommand.delivery_attempts,
    PendingCommand.created_at,
    PendingCommand.dequeued_at,
    PendingCommand.executed_at,
)


def insert_command(
    db: Session,
    *,
    device_id: str,
    action: str,
    target: str,
    trigger: str,
    created_at: datetime,
) -> QueuedCommand:
    command = PendingCommand(
        device_id=device_id,
        action=action,
        target=target,
        trigger=trigger,
        status="queued",
        delivery_attempts=0,
        created_at=created_at,
    )
    db.add(command)
    db.commit()
    db.refresh(command)
    return _snapshot(command)


def dequeue_oldest_command(
    db: Session,
    *,
    device_id: str,
    now: datetime,
    not_before: datetime,
) -> QueuedCommand | None:
    """Claim the oldest live ``queued`` command in one UPDATE ... RETURNING.

    The candidate id is chosen by a locking sub-select inside the same
    statement, so concurrent pollers can never claim the same row.
    """
    candidate = aliased(PendingCommand, name="candidate")
    candidate_id = (
        select(candidate.id)
        .where(
            candidate.device_id == device_id,
            candidate.status == "queued",
            candidate.created_at >= not_before,
        )
        .order_by(candidate.created_at.asc(), candidate.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    statement = (
        update(PendingCommand)
        .where(PendingCommand.id == candidate_id, PendingCommand.status == "queued")
        .values(
            status="dequeued",
            dequeued_at=now,
            delivery_attempts=PendingCommand.delivery_attempts + 1,
        )
        .returning(*_COMMAND_COLUMNS)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(statement).first()
    db.commit()
    if row is None:
        return None
    return _row_to_command(row)


def acknowledge_command(
    db: Session,
    *,
    device_id: str,
    action: str,
    target: str,
    success: bool,
    now: datetime,
    not_before: datetime,
    max_delivery_attempts: int,
) -> QueuedCommand | None:
    candidate = aliased(PendingCommand, name="candidate")
    candidate_id = (
        select(candidate.id)
        .where(
            candidate.device_id == device_id,
            candidate.action == action,
            candidate.target == target,
            candidate.status == "dequeued",
            candidate.created_at >= not_before,
        )
        .order_by(candidate.dequeued_at.desc(), candidate.id.desc())
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    if success:
        values = {"status": "executed", "executed_at": now}
    else:
        values = {
            "status": case(
                (PendingCommand.delivery_attempts >= max_delivery_attempts, "failed"),
                else_="queued",
            ),
            "dequeued_at": None,
        }
    statement = (
        update(PendingCommand)
        .where(PendingCommand.id == candidate_id, PendingCommand.status == "dequeued")
        .values(**values)
        .returning(*_COMMAND_COLUMNS)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(statement).first()
    db.commit()
    if row is None:
        return None
    return _row_to_command(row)


def count_queued_commands(
    db: Session,
    *,
    not_before: datetime,
    device_id: str | None = None,
) -> int:
    statement = select(func.count(PendingCommand.id)).where(
        PendingCommand.status == "queued",
        PendingCommand.created_at >= not_before,
    )
    if device_id is not None:
        statement = statement.where(PendingCommand.device_id == device_id)
    return int(db.scalar(statement) or 0)


def list_queued_commands(
    db: Session,
    *,
    not_before: datetime,
    device_id: str | None = None,
) -> list[QueuedCommand]:
    statement = select(*_COMMAND_COLUMNS).where(
        PendingCommand.status == "queued",
        PendingCommand.created_at >= not_before,
    )
    if device_id is not None:
        statement = statement.where(PendingCommand.device_id == device_id)
    statement = statement.order_by(
        PendingCommand.device_id.asc(),
        PendingCommand.created_at.asc(),
        PendingCommand.id.asc(),
    )
    return [_row_to_command(row) for row in db.execute(statement).all()]


def clear_queued_commands(db: Session, *, device_id: str) -> int:
    result = db.execute(
        delete(PendingCommand)
        .where(PendingCommand.device_id == device_id, PendingCommand.status == "queued")
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return int(result.rowcount or 0)


def purge_commands_created_before(db: Session, *, cutoff: datetime) -> int:
    result = db.execute(
        delete(PendingCommand)
        .where(PendingCommand.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return int(result.rowcount or 0)


def _snapshot(command: PendingCommand) -> QueuedCommand:
    return QueuedCommand(
        id=int(command.id),
        device_id=command.device_id,
        action=command.action,
        target=command.target,
        trigger=command.trigger,
        status=command.status,
        delivery_attempts=int(command.delivery_attempts),
        created_at=_to_utc(command.created_at),
        dequeued_at=_to_utc_or_none(command.dequeued_at),
        executed_at=_to_utc_or_none(command.executed_at),
    )


def _row_to_command(row) -> QueuedCommand:
    return QueuedCommand(
        id=int(row.id),
        device_id=row.device_id,
        action=row.action,
        target=row.target,
        trigger=row.trigger,
        status=row.status,
        delivery_attempts=int(row.delivery_attempts),
        created_at=_to_utc(row.created_at),
        dequeued_at=_to_utc_or_none(row.dequeued_at),
        executed_at=_to_utc_or_none(row.executed_at),
    )


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_utc_or_none(value: datetime | None) -> datetime | None:
    return _to_utc(value) if value is not None else None

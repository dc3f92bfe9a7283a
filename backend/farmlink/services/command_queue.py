from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol

from sqlalchemy.orm import sessionmaker

from farmlink.core.config import Settings
from farmlink.repositories.commands import (
    QueuedCommand,
    acknowledge_command,
    clear_queued_commands,
    count_queued_commands,
    dequeue_oldest_command,
    insert_command,
    list_queued_commands,
    purge_commands_created_before,
)

TARGET_ALIASES = {"pump": "water_pump"}


class CommandStore(Protocol):
    kind: str

    def enqueue(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        trigger: str,
        created_at: datetime,
    ) -> QueuedCommand: ...

    def dequeue_oldest(
        self,
        *,
        device_id: str,
        now: datetime,
        not_before: datetime,
    ) -> QueuedCommand | None: ...

    def acknowledge(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        success: bool,
        now: datetime,
        not_before: datetime,
        max_delivery_attempts: int,
    ) -> QueuedCommand | None: ...

    def count_queued(self, *, not_before: datetime, device_id: str | None = None) -> int: ...

    def list_queued(self, *, not_before: datetime, device_id: str | None = None) -> list[QueuedCommand]: ...

    def clear_queued(self, *, device_id: str) -> int: ...

    def purge_created_before(self, *, cutoff: datetime) -> int: ...


class SqlCommandStore:
    kind = "database"

    def __init__(self, *, session_factory: sessionmaker):
        self._session_factory = session_factory

    def enqueue(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        trigger: str,
        created_at: datetime,
    ) -> QueuedCommand:
        with self._session_factory() as db:
            return insert_command(
                db,
                device_id=device_id,
                action=action,
                target=target,
                trigger=trigger,
                created_at=created_at,
            )

    def dequeue_oldest(
        self,
        *,
        device_id: str,
        now: datetime,
        not_before: datetime,
    ) -> QueuedCommand | None:
        with self._session_factory() as db:
            return dequeue_oldest_command(db, device_id=device_id, now=now, not_before=not_before)

    def acknowledge(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        success: bool,
        now: datetime,
        not_before: datetime,
        max_delivery_attempts: int,
    ) -> QueuedCommand | None:
        with self._session_factory() as db:
            return acknowledge_command(
                db,
                device_id=device_id,
                action=action,
                target=target,
                success=success,
                now=now,
                not_before=not_before,
                max_delivery_attempts=max_delivery_attempts,
            )

    def count_queued(self, *, not_before: datetime, device_id: str | None = None) -> int:
        with self._session_factory() as db:
            return count_queued_commands(db, not_before=not_before, device_id=device_id)

    def list_queued(self, *, not_before: datetime, device_id: str | None = None) -> list[QueuedCommand]:
        with self._session_factory() as db:
            return list_queued_commands(db, not_before=not_before, device_id=device_id)

    def clear_queued(self, *, device_id: str) -> int:
        with self._session_factory() as db:
            return clear_queued_commands(db, device_id=device_id)

    def purge_created_before(self, *, cutoff: datetime) -> int:
        with self._session_factory() as db:
            return purge_commands_created_before(db, cutoff=cutoff)


class InMemoryCommandStore:
    """Process-local queue keyed by device id.

    State lives in this process only: several API workers or instances each
    see a different queue. Use it for tests and single-process deployments
    without a database.
    """

    kind = "memory"

    def __init__(self) -> None:
        self._lock = Lock()
        self._ids = itertools.count(1)
        self._commands: dict[str, list[QueuedCommand]] = {}

    def enqueue(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        trigger: str,
        created_at: datetime,
    ) -> QueuedCommand:
        with self._lock:
            command = QueuedCommand(
                id=next(self._ids),
                device_id=device_id,
                action=action,
                target=target,
                trigger=trigger,
                status="queued",
                delivery_attempts=0,
                created_at=created_at,
                dequeued_at=None,
                executed_at=None,
            )
            self._commands.setdefault(device_id, []).append(command)
            return command

    def dequeue_oldest(
        self,
        *,
        device_id: str,
        now: datetime,
        not_before: datetime,
    ) -> QueuedCommand | None:
        with self._lock:
            entries = self._commands.get(device_id, [])
            live = [
                (idx, item)
                for idx, item in enumerate(entries)
                if item.status == "queued" and item.created_at >= not_before
            ]
            if not live:
                return None
            idx, oldest = min(live, key=lambda pair: (pair[1].created_at, pair[1].id))
            claimed = replace(
                oldest,
                status="dequeued",
                dequeued_at=now,
                delivery_attempts=oldest.delivery_attempts + 1,
            )
            entries[idx] = claimed
            return claimed

    def acknowledge(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        success: bool,
        now: datetime,
        not_before: datetime,
        max_delivery_attempts: int,
    ) -> QueuedCommand | None:
        with self._lock:
            entries = self._commands.get(device_id, [])
            matches = [
                (idx, item)
                for idx, item in enumerate(entries)
                if item.status == "dequeued"
                and item.action == action
                and item.target == target
                and item.created_at >= not_before
            ]
            if not matches:
                return None
            idx, latest = max(matches, key=lambda pair: (pair[1].dequeued_at, pair[1].id))
            if success:
                updated = replace(latest, status="executed", executed_at=now)
            else:
                exhausted = latest.delivery_attempts >= max_delivery_attempts
                updated = replace(latest, status="failed" if exhausted else "queued", dequeued_at=None)
            entries[idx] = updated
            return updated

    def count_queued(self, *, not_before: datetime, device_id: str | None = None) -> int:
        return len(self.list_queued(not_before=not_before, device_id=device_id))

    def list_queued(self, *, not_before: datetime, device_id: str | None = None) -> list[QueuedCommand]:
        with self._lock:
            devices = [device_id] if device_id is not None else sorted(self._commands)
            items: list[QueuedCommand] = []
            for key in devices:
                queued = [
                    item
                    for item in self._commands.get(key, [])
                    if item.status == "queued" and item.created_at >= not_before
                ]
                items.extend(sorted(queued, key=lambda item: (item.created_at, item.id)))
            return items

    def clear_queued(self, *, device_id: str) -> int:
        with self._lock:
            entries = self._commands.get(device_id)
            if not entries:
                return 0
            kept = [item for item in entries if item.status != "queued"]
            if kept:
                self._commands[device_id] = kept
            else:
                del self._commands[device_id]
            return len(entries) - len(kept)

    def purge_created_before(self, *, cutoff: datetime) -> int:
        with self._lock:
            removed = 0
            for key, entries in list(self._commands.items()):
                kept = [item for item in entries if item.created_at >= cutoff]
                removed += len(entries) - len(kept)
                if kept:
                    self._commands[key] = kept
                else:
                    del self._commands[key]
            return removed


@dataclass(frozen=True)
class AcknowledgeResult:
    updated: bool
    status: str | None
    command_id: int | None


class CommandQueueService:
    """FIFO actuator command queue with at-most-once delivery per entry."""

    def __init__(self, *, settings: Settings, store: CommandStore):
        self._settings = settings
        self._store = store
        self._logger = logging.getLogger("farmlink.command_queue")

    @property
    def store_kind(self) -> str:
        return self._store.kind

    def enqueue(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        trigger: str = "manual",
    ) -> QueuedCommand:
        command = self._store.enqueue(
            device_id=device_id,
            action=action,
            target=normalize_target(target),
            trigger=trigger or "manual",
            created_at=datetime.now(timezone.utc),
        )
        self._logger.info(
            "queued command id=%s device_id=%s action=%s target=%s trigger=%s store=%s",
            command.id,
            device_id,
            command.action,
            command.target,
            command.trigger,
            self._store.kind,
        )
        return command

    def dequeue_oldest(self, device_id: str) -> QueuedCommand | None:
        now = datetime.now(timezone.utc)
        command = self._store.dequeue_oldest(
            device_id=device_id,
            now=now,
            not_before=self._not_before(now),
        )
        if command is not None:
            self._logger.info(
                "dequeued command id=%s device_id=%s action=%s target=%s attempt=%s",
                command.id,
                device_id,
                command.action,
                command.target,
                command.delivery_attempts,
            )
        return command

    def try_dequeue_oldest(self, device_id: str) -> QueuedCommand | None:
        """``dequeue_oldest`` for the ingestion path: store faults mean "no command"."""
        try:
            return self.dequeue_oldest(device_id)
        except Exception:
            self._logger.exception("command dequeue failed device_id=%s", device_id)
            return None

    def acknowledge(
        self,
        *,
        device_id: str,
        action: str,
        target: str,
        success: bool,
    ) -> AcknowledgeResult:
        now = datetime.now(timezone.utc)
        command = self._store.acknowledge(
            device_id=device_id,
            action=action,
            target=normalize_target(target),
            success=success,
            now=now,
            not_before=self._not_before(now),
            max_delivery_attempts=self._settings.command_max_delivery_attempts,
        )
        if command is None:
            self._logger.warning(
                "acknowledge matched no dequeued command device_id=%s action=%s target=%s",
                device_id,
                action,
                target,
            )
            return AcknowledgeResult(updated=False, status=None, command_id=None)

        self._logger.info(
            "acknowledged command id=%s device_id=%s success=%s status=%s",
            command.id,
            device_id,
            success,
            command.status,
        )
        return AcknowledgeResult(updated=True, status=command.status, command_id=command.id)

    def has_pending(self, device_id: str) -> bool:
        now = datetime.now(timezone.utc)
        return self._store.count_queued(not_before=self._not_before(now), device_id=device_id) > 0

    def count_pending(self) -> int:
        now = datetime.now(timezone.utc)
        return self._store.count_queued(not_before=self._not_before(now))

    def list_pending(self, device_id: str | None = None) -> list[QueuedCommand]:
        now = datetime.now(timezone.utc)
        return self._store.list_queued(not_before=self._not_before(now), device_id=device_id)

    def clear_pending(self, device_id: str) -> int:
        removed = self._store.clear_queued(device_id=device_id)
        self._logger.info("cleared queued commands device_id=%s removed=%s", device_id, removed)
        return removed

    def purge_expired(self, now: datetime | None = None) -> int:
        current = now or datetime.now(timezone.utc)
        removed = self._store.purge_created_before(cutoff=self._not_before(current))
        if removed:
            self._logger.info("purged expired commands removed=%s", removed)
        return removed

    def _not_before(self, now: datetime) -> datetime:
        return now - timedelta(hours=self._settings.command_retention_hours)


def normalize_target(target: str) -> str:
    cleaned = target.strip().lower()
    return TARGET_ALIASES.get(cleaned, cleaned)


def build_command_store(settings: Settings, session_factory: sessionmaker) -> CommandStore:
    if settings.command_store == "memory":
        logging.getLogger("farmlink.command_queue").warning(
            "using in-memory command store; queued commands are lost on restart "
            "and are not shared between processes"
        )
        return InMemoryCommandStore()
    return SqlCommandStore(session_factory=session_factory)

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread

from sqlalchemy.orm import sessionmaker

from farmlink.core.config import Settings
from farmlink.repositories.equipment import mark_stale_equipment_offline
from farmlink.services.command_queue import CommandQueueService


class HeartbeatSweeperService:
    """Marks silent equipment offline and purges expired queued commands."""

    def __init__(
        self,
        *,
        settings: Settings,
        session_factory: sessionmaker,
        command_queue: CommandQueueService | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._command_queue = command_queue
        self._logger = logging.getLogger("farmlink.heartbeat_sweeper")
        self._stop_event = Event()
        self._thread: Thread | None = None
        self._lock = Lock()
        self._running = False
        self._last_sweep_ts: datetime | None = None
        self._last_sweep_offline_count = 0
        self._last_purge_ts: datetime | None = None
        self._last_purge_count = 0
        self._last_error: str | None = None

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name="heartbeat-sweeper", daemon=True)
        self._thread.start()
        self._logger.info(
            "started heartbeat sweeper sweep_seconds=%s offline_minutes=%s purge_seconds=%s",
            self._settings.heartbeat_sweep_seconds,
            self._settings.heartbeat_offline_minutes,
            self._settings.command_purge_interval_seconds,
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        with self._lock:
            self._running = False

    def sweep_offline(self, now: datetime | None = None) -> list[int]:
        current = now or datetime.now(timezone.utc)
        cutoff = current - timedelta(minutes=self._settings.heartbeat_offline_minutes)
        with self._session_factory() as db:
            try:
                equipment_ids = mark_stale_equipment_offline(db, cutoff=cutoff, now=current)
                db.commit()
            except Exception:
                db.rollback()
                raise

        if equipment_ids:
            self._logger.info(
                "marked equipment offline count=%s ids=%s cutoff=%s",
                len(equipment_ids),
                ",".join(str(item) for item in equipment_ids),
                cutoff.isoformat(),
            )
        with self._lock:
            self._last_sweep_ts = current
            self._last_sweep_offline_count = len(equipment_ids)
        return equipment_ids

    def purge_commands_once(self, now: datetime | None = None) -> int:
        if self._command_queue is None:
            return 0
        current = now or datetime.now(timezone.utc)
        removed = self._command_queue.purge_expired(current)
        with self._lock:
            self._last_purge_ts = current
            self._last_purge_count = removed
        return removed

    def get_status_snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "running": self._running and not self._stop_event.is_set(),
                "last_sweep_ts": _to_iso(self._last_sweep_ts),
                "last_sweep_offline_count": self._last_sweep_offline_count,
                "last_purge_ts": _to_iso(self._last_purge_ts),
                "last_purge_count": self._last_purge_count,
                "last_error": self._last_error,
            }

    def _loop(self) -> None:
        next_sweep = datetime.now(timezone.utc)
        next_purge = datetime.now(timezone.utc)

        while not self._stop_event.is_set():
            now = datetime.now(timezone.utc)
            try:
                if now >= next_sweep:
                    self.sweep_offline(now)
                    next_sweep = now + timedelta(seconds=self._settings.heartbeat_sweep_seconds)
                if now >= next_purge:
                    self.purge_commands_once(now)
                    next_purge = now + timedelta(seconds=self._settings.command_purge_interval_seconds)
                with self._lock:
                    self._last_error = None
            except Exception as exc:
                self._logger.exception("heartbeat sweeper iteration failed")
                with self._lock:
                    self._last_error = str(exc)

            self._stop_event.wait(1.0)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None

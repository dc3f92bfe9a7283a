from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy.orm import Session

from farmlink.db.models import ActuationLog, SoilMoistureReading, WaterReading
from farmlink.repositories.readings import (
    get_latest_water_reading,
    list_soil_readings_since,
    list_zone_irrigation_logs_since,
    water_level_aggregates,
)
from farmlink.services.derived_metrics import round_half_up

RECENT_SESSION_LIMIT = 10


@dataclass(frozen=True)
class DailyMoistureStats:
    day: date
    reading_count: int
    avg_moisture: int
    min_moisture: float
    max_moisture: float


@dataclass(frozen=True)
class IrrigationSession:
    start_time: datetime
    end_time: datetime
    trigger: str
    start_moisture: float | None
    end_moisture: float | None
    duration_minutes: float
    moisture_increase: float | None


@dataclass(frozen=True)
class ZoneAnalytics:
    zone_id: str
    days: int
    start: datetime
    end: datetime
    total_readings: int
    avg_moisture: int
    min_moisture: float
    max_moisture: float
    irrigation_sessions: int
    total_irrigation_minutes: float
    avg_irrigation_minutes: float
    daily: list[DailyMoistureStats]
    recent_sessions: list[IrrigationSession]
    moisture_trend: float
    irrigation_frequency: float


@dataclass(frozen=True)
class TankStats:
    tank_id: str
    period_hours: int
    reading_count: int
    average_water_level: float | None
    min_water_level: float | None
    max_water_level: float | None
    latest_reading: WaterReading | None


def zone_analytics(db: Session, *, zone_id: str, days: int = 7, now: datetime | None = None) -> ZoneAnalytics:
    end = _to_utc(now or datetime.now(timezone.utc))
    start = end - timedelta(days=days)
    readings = list_soil_readings_since(db, zone_id, start)
    sessions = pair_irrigation_sessions(list_zone_irrigation_logs_since(db, zone_id, start))

    values = [reading.moisture_percentage for reading in readings]
    total_minutes = sum(item.duration_minutes for item in sessions)
    return ZoneAnalytics(
        zone_id=zone_id,
        days=days,
        start=start,
        end=end,
        total_readings=len(values),
        avg_moisture=round_half_up(sum(values) / len(values)) if values else 0,
        min_moisture=min(values) if values else 0.0,
        max_moisture=max(values) if values else 0.0,
        irrigation_sessions=len(sessions),
        total_irrigation_minutes=total_minutes,
        avg_irrigation_minutes=total_minutes / len(sessions) if sessions else 0.0,
        daily=daily_moisture_stats(readings),
        recent_sessions=sessions[-RECENT_SESSION_LIMIT:],
        moisture_trend=values[-1] - values[0] if len(values) >= 2 else 0.0,
        irrigation_frequency=len(sessions) / days,
    )


def daily_moisture_stats(readings: Iterable[SoilMoistureReading]) -> list[DailyMoistureStats]:
    """Per UTC calendar day; the average rounds half-up to a whole percent."""
    by_day: dict[date, list[float]] = {}
    for reading in readings:
        by_day.setdefault(_to_utc(reading.ts).date(), []).append(reading.moisture_percentage)
    return [
        DailyMoistureStats(
            day=day,
            reading_count=len(values),
            avg_moisture=round_half_up(sum(values) / len(values)),
            min_moisture=min(values),
            max_moisture=max(values),
        )
        for day, values in sorted(by_day.items())
    ]


def pair_irrigation_sessions(logs: Iterable[ActuationLog]) -> list[IrrigationSession]:
    """Pair each start with the next stop.

    A later start replaces an open one. Stops without an open start and a
    trailing open start do not form a session.
    """
    sessions: list[IrrigationSession] = []
    open_start: ActuationLog | None = None
    for entry in logs:
        if entry.action == "start":
            open_start = entry
        elif entry.action == "stop" and open_start is not None:
            started_at = _to_utc(open_start.ts)
            stopped_at = _to_utc(entry.ts)
            increase = None
            if entry.measured_value is not None and open_start.measured_value is not None:
                increase = entry.measured_value - open_start.measured_value
            sessions.append(
                IrrigationSession(
                    start_time=started_at,
                    end_time=stopped_at,
                    trigger=open_start.trigger,
                    start_moisture=open_start.measured_value,
                    end_moisture=entry.measured_value,
                    duration_minutes=(stopped_at - started_at).total_seconds() / 60.0,
                    moisture_increase=increase,
                )
            )
            open_start = None
    return sessions


def tank_stats(db: Session, *, tank_id: str, hours: int = 24, now: datetime | None = None) -> TankStats:
    since = _to_utc(now or datetime.now(timezone.utc)) - timedelta(hours=hours)
    count, average, minimum, maximum = water_level_aggregates(db, tank_id, since)
    return TankStats(
        tank_id=tank_id,
        period_hours=hours,
        reading_count=count,
        average_water_level=round(average, 2) if average is not None else None,
        min_water_level=minimum,
        max_water_level=maximum,
        latest_reading=get_latest_water_reading(db, tank_id) if count else None,
    )


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

"""Time-series history over stored readings.

Series are addressed by a ``MetricKind``. Environmental and soil series
match readings by the reporting sensor; water series match by the tank the
sensor is currently assigned to, so history survives a sensor swap.
Aggregated series are binned in Python by flooring each timestamp to a
multiple of the interval since the Unix epoch.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from farmlink.db.models import EnvironmentalReading, SoilMoistureReading, WaterReading
from farmlink.repositories.device_configs import get_tank_config_by_sensor

_INTERVAL_PATTERN = re.compile(r"^(\d+)\s*([smhdw])$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 7 * 86400}
_DEFAULT_WINDOW = timedelta(hours=24)


class MetricKind(str, Enum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    SOIL = "soil"
    WATER_LEVEL = "water_level"
    WATER_DISTANCE = "water_distance"

    @classmethod
    def parse(cls, value: str) -> "MetricKind | None":
        """Resolve a metric name or alias; ``None`` means every series."""
        normalized = (value or "all").strip().lower()
        if normalized == "all":
            return None
        resolved = _METRIC_ALIASES.get(normalized, normalized)
        try:
            return cls(resolved)
        except ValueError as exc:
            raise HistoryQueryError(
                "invalid metric; use temperature, humidity, soil, water_level, water_distance, or all"
            ) from exc


_METRIC_ALIASES = {
    "temp": "temperature",
    "temps": "temperature",
    "humid": "humidity",
    "soil_moisture": "soil",
    "moisture": "soil",
    "water": "water_level",
    "level": "water_level",
    "waterlevel": "water_level",
    "distance": "water_distance",
    "waterdistance": "water_distance",
}


class Aggregation(str, Enum):
    RAW = "raw"
    MIN = "min"
    MAX = "max"
    AVG = "avg"


class HistoryQueryError(ValueError):
    pass


@dataclass(frozen=True)
class SeriesSpec:
    model: Any
    column: str
    match_by: Literal["sensor", "tank"]


SERIES: dict[MetricKind, SeriesSpec] = {
    MetricKind.TEMPERATURE: SeriesSpec(EnvironmentalReading, "temperature_celsius", "sensor"),
    MetricKind.HUMIDITY: SeriesSpec(EnvironmentalReading, "humidity_percent", "sensor"),
    MetricKind.SOIL: SeriesSpec(SoilMoistureReading, "moisture_percentage", "sensor"),
    MetricKind.WATER_LEVEL: SeriesSpec(WaterReading, "water_level_cm", "tank"),
    MetricKind.WATER_DISTANCE: SeriesSpec(WaterReading, "distance_cm", "tank"),
}


@dataclass(frozen=True)
class HistoryPoint:
    ts: datetime
    value: float


@dataclass(frozen=True)
class HistoryResult:
    device_id: str
    metric: MetricKind | None
    start: datetime
    end: datetime
    aggregation: Aggregation
    interval: str
    series: dict[str, list[HistoryPoint]]


def parse_interval(value: str | None) -> tuple[int, str]:
    """Return ``(bin_seconds, canonical_label)``; unparseable input means one hour."""
    match = _INTERVAL_PATTERN.match(str(value or "1h").strip())
    if match is None or int(match.group(1)) <= 0:
        return 3600, "1h"
    size = int(match.group(1))
    unit = match.group(2).lower()
    return size * _UNIT_SECONDS[unit], f"{size}{unit}"


def parse_aggregation(value: str | None) -> Aggregation:
    try:
        return Aggregation((value or "raw").strip().lower())
    except ValueError as exc:
        raise HistoryQueryError("invalid aggregation; use raw, min, max, or avg") from exc


def get_history(
    db: Session,
    *,
    device_id: str,
    metric: str = "all",
    start: datetime | None = None,
    end: datetime | None = None,
    aggregation: str = "raw",
    interval: str | None = "1h",
    now: datetime | None = None,
) -> HistoryResult:
    current = _to_utc(now or datetime.now(timezone.utc))
    range_end = _to_utc(end) if end is not None else current
    range_start = _to_utc(start) if start is not None else current - _DEFAULT_WINDOW
    if range_start > range_end:
        raise HistoryQueryError("'from' must be before or equal to 'to'")

    kind = MetricKind.parse(metric)
    agg = parse_aggregation(aggregation)
    bin_seconds, interval_label = parse_interval(interval)

    kinds = [kind] if kind is not None else list(SERIES)
    tank_id = None
    if any(SERIES[item].match_by == "tank" for item in kinds):
        tank = get_tank_config_by_sensor(db, device_id)
        tank_id = tank.tank_id if tank is not None else None

    series: dict[str, list[HistoryPoint]] = {}
    for item in kinds:
        spec = SERIES[item]
        if spec.match_by == "tank" and tank_id is None:
            series[item.value] = []
            continue
        points = _fetch_points(
            db,
            spec,
            key=tank_id if spec.match_by == "tank" else device_id,
            start=range_start,
            end=range_end,
        )
        series[item.value] = points if agg is Aggregation.RAW else bin_points(points, agg, bin_seconds)

    return HistoryResult(
        device_id=device_id,
        metric=kind,
        start=range_start,
        end=range_end,
        aggregation=agg,
        interval=interval_label,
        series=series,
    )


def bin_points(points: list[HistoryPoint], aggregation: Aggregation, bin_seconds: int) -> list[HistoryPoint]:
    buckets: OrderedDict[int, list[float]] = OrderedDict()
    for point in points:
        epoch = int(point.ts.timestamp())
        bucket = epoch - (epoch % bin_seconds)
        buckets.setdefault(bucket, []).append(point.value)

    binned: list[HistoryPoint] = []
    for bucket, values in sorted(buckets.items()):
        if aggregation is Aggregation.MIN:
            value = min(values)
        elif aggregation is Aggregation.MAX:
            value = max(values)
        else:
            value = sum(values) / len(values)
        binned.append(HistoryPoint(ts=datetime.fromtimestamp(bucket, tz=timezone.utc), value=value))
    return binned


def _fetch_points(
    db: Session,
    spec: SeriesSpec,
    *,
    key: str,
    start: datetime,
    end: datetime,
) -> list[HistoryPoint]:
    model = spec.model
    column = getattr(model, spec.column)
    key_column = model.tank_id if spec.match_by == "tank" else model.sensor_id
    rows = db.execute(
        select(model.ts, column)
        .where(
            key_column == key,
            model.ts >= start,
            model.ts <= end,
            column.is_not(None),
        )
        .order_by(model.ts.asc(), model.id.asc())
    ).all()
    return [HistoryPoint(ts=_to_utc(ts), value=float(value)) for ts, value in rows]


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

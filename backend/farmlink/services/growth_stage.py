from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

TargetSource = Literal["static", "fallback", "crop_profile", "crop_profile_final"]

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class CropStage:
    name: str
    start_day: int
    end_day: int
    min_moisture: float
    max_moisture: float
    description: str = ""
    is_critical: bool = False

    @property
    def length_days(self) -> int:
        return self.end_day - self.start_day + 1

    def contains(self, day: int) -> bool:
        return self.start_day <= day <= self.end_day


@dataclass(frozen=True)
class CropProfileSnapshot:
    crop_type: str
    name: str
    duration_days: int
    stages: tuple[CropStage, ...]


@dataclass(frozen=True)
class StageResolution:
    stage: CropStage
    stage_index: int
    day_in_crop: int
    day_in_stage: int
    progress_percent: float
    stage_progress_percent: float
    days_remaining_in_stage: int
    past_maturity: bool


@dataclass(frozen=True)
class MoistureTargets:
    min_moisture: float
    max_moisture: float
    source: TargetSource
    stage_name: str | None = None
    day_in_stage: int | None = None


def snapshot_crop_profile(profile: Any) -> CropProfileSnapshot:
    """Detach an ORM crop profile (or any object shaped like one)."""
    stages = sorted(
        (
            CropStage(
                name=stage.name,
                start_day=int(stage.start_day),
                end_day=int(stage.end_day),
                min_moisture=float(stage.min_moisture),
                max_moisture=float(stage.max_moisture),
                description=getattr(stage, "description", "") or "",
                is_critical=bool(getattr(stage, "is_critical", False)),
            )
            for stage in profile.stages
        ),
        key=lambda item: item.start_day,
    )
    return CropProfileSnapshot(
        crop_type=profile.crop_type,
        name=profile.name,
        duration_days=int(profile.duration_days),
        stages=tuple(stages),
    )


def days_since_planting(planting_date: datetime, now: datetime) -> int:
    elapsed = (_to_utc(now) - _to_utc(planting_date)).total_seconds()
    return max(1, int(elapsed // _SECONDS_PER_DAY))


def resolve_stage(
    profile: CropProfileSnapshot,
    planting_date: datetime,
    now: datetime,
) -> StageResolution | None:
    """Active growth stage for ``now``.

    Past the last stage (or past ``duration_days``) the final stage is
    reported with 100 % progress. Returns ``None`` only for an empty stage
    table, which callers treat as "no profile".
    """
    stages = profile.stages
    if not stages:
        return None

    day_in_crop = days_since_planting(planting_date, now)
    past_maturity = False
    index = next((idx for idx, stage in enumerate(stages) if stage.contains(day_in_crop)), None)
    if index is None:
        if day_in_crop > stages[-1].end_day or day_in_crop > profile.duration_days:
            index = len(stages) - 1
            past_maturity = True
        else:
            index = _closest_started_stage(stages, day_in_crop)
    elif day_in_crop > profile.duration_days:
        past_maturity = True

    stage = stages[index]
    day_in_stage = max(1, min(day_in_crop, stage.end_day) - stage.start_day + 1)
    if past_maturity or profile.duration_days <= 0:
        progress = 100.0
    else:
        progress = min(100.0, round(day_in_crop / profile.duration_days * 100.0, 1))

    return StageResolution(
        stage=stage,
        stage_index=index,
        day_in_crop=day_in_crop,
        day_in_stage=day_in_stage,
        progress_percent=progress,
        stage_progress_percent=min(100.0, round(day_in_stage / stage.length_days * 100.0, 1)),
        days_remaining_in_stage=max(0, stage.end_day - day_in_crop),
        past_maturity=past_maturity,
    )


def resolve_moisture_targets(
    zone: Any,
    profile: CropProfileSnapshot | None,
    now: datetime,
) -> MoistureTargets:
    static_targets = MoistureTargets(
        min_moisture=float(zone.min_moisture),
        max_moisture=float(zone.max_moisture),
        source="static",
    )
    if getattr(zone, "use_static_thresholds", False):
        return static_targets

    resolution = None
    if profile is not None and zone.planting_date is not None:
        resolution = resolve_stage(profile, zone.planting_date, now)
    if resolution is None:
        return MoistureTargets(
            min_moisture=static_targets.min_moisture,
            max_moisture=static_targets.max_moisture,
            source="fallback",
        )

    return MoistureTargets(
        min_moisture=resolution.stage.min_moisture,
        max_moisture=resolution.stage.max_moisture,
        source="crop_profile_final" if resolution.past_maturity else "crop_profile",
        stage_name=resolution.stage.name,
        day_in_stage=resolution.day_in_stage,
    )


def validate_stage_table(stages: Iterable[Any], duration_days: int) -> None:
    ordered: Sequence[Any] = sorted(stages, key=lambda item: item.start_day)
    if not ordered:
        raise ValueError("crop profile requires at least one stage")

    expected_start = 1
    for stage in ordered:
        if stage.end_day < stage.start_day:
            raise ValueError(f"stage '{stage.name}' ends before it starts")
        if stage.start_day != expected_start:
            raise ValueError(
                f"stage '{stage.name}' starts on day {stage.start_day}, expected day {expected_start}"
            )
        if stage.min_moisture > stage.max_moisture:
            raise ValueError(f"stage '{stage.name}' has min_moisture above max_moisture")
        expected_start = stage.end_day + 1

    if ordered[-1].end_day != duration_days:
        raise ValueError(
            f"stage table ends on day {ordered[-1].end_day} but duration_days is {duration_days}"
        )


def _closest_started_stage(stages: Sequence[CropStage], day_in_crop: int) -> int:
    started = [idx for idx, stage in enumerate(stages) if stage.start_day <= day_in_crop]
    return started[-1] if started else 0


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

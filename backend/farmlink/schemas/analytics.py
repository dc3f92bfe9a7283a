from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict


class DailyMoistureStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: dt.date
    reading_count: int
    avg_moisture: int
    min_moisture: float
    max_moisture: float


class IrrigationSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start_time: dt.datetime
    end_time: dt.datetime
    trigger: str
    start_moisture: float | None
    end_moisture: float | None
    duration_minutes: float
    moisture_increase: float | None


class AnalyticsPeriod(BaseModel):
    days: int
    start: dt.datetime
    end: dt.datetime


class ZoneOverallStats(BaseModel):
    total_readings: int
    avg_moisture: int
    min_moisture: float
    max_moisture: float
    irrigation_sessions: int
    total_irrigation_minutes: float
    avg_irrigation_minutes: float


class ZoneTrends(BaseModel):
    moisture_trend: float
    irrigation_frequency: float


class ZoneAnalyticsResponse(BaseModel):
    success: bool = True
    zone_id: str
    period: AnalyticsPeriod
    overall: ZoneOverallStats
    daily: list[DailyMoistureStatsResponse]
    irrigation_sessions: list[IrrigationSessionResponse]
    trends: ZoneTrends


class TankStatsResponse(BaseModel):
    success: bool = True
    tank_id: str
    period_hours: int
    reading_count: int
    average_water_level: float | None
    min_water_level: float | None
    max_water_level: float | None
    latest_reading: dict[str, Any] | None = None

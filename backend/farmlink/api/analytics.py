from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from farmlink.db.session import get_db
from farmlink.repositories.device_configs import get_tank_config, get_zone_config
from farmlink.schemas.analytics import (
    AnalyticsPeriod,
    DailyMoistureStatsResponse,
    IrrigationSessionResponse,
    TankStatsResponse,
    ZoneAnalyticsResponse,
    ZoneOverallStats,
    ZoneTrends,
)
from farmlink.services.analytics import tank_stats, zone_analytics
from farmlink.services.sensor_ingest import water_reading_to_dict


router = APIRouter(prefix="/api", tags=["analytics"])


@router.get("/zones/{zone_id}/analytics", response_model=ZoneAnalyticsResponse)
def get_zone_analytics(
    zone_id: str,
    days: int = Query(default=7, ge=1, le=365),
    db: Session = Depends(get_db),
) -> ZoneAnalyticsResponse:
    if get_zone_config(db, zone_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"zone '{zone_id}' not found")

    result = zone_analytics(db, zone_id=zone_id, days=days)
    return ZoneAnalyticsResponse(
        zone_id=result.zone_id,
        period=AnalyticsPeriod(days=result.days, start=result.start, end=result.end),
        overall=ZoneOverallStats(
            total_readings=result.total_readings,
            avg_moisture=result.avg_moisture,
            min_moisture=result.min_moisture,
            max_moisture=result.max_moisture,
            irrigation_sessions=result.irrigation_sessions,
            total_irrigation_minutes=round(result.total_irrigation_minutes, 2),
            avg_irrigation_minutes=round(result.avg_irrigation_minutes, 2),
        ),
        daily=[DailyMoistureStatsResponse.model_validate(item) for item in result.daily],
        irrigation_sessions=[
            IrrigationSessionResponse.model_validate(item) for item in result.recent_sessions
        ],
        trends=ZoneTrends(
            moisture_trend=result.moisture_trend,
            irrigation_frequency=result.irrigation_frequency,
        ),
    )


@router.get("/tanks/{tank_id}/stats", response_model=TankStatsResponse)
def get_tank_stats(
    tank_id: str,
    hours: int = Query(default=24, ge=1, le=24 * 90),
    db: Session = Depends(get_db),
) -> TankStatsResponse:
    if get_tank_config(db, tank_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"tank '{tank_id}' not found")

    stats = tank_stats(db, tank_id=tank_id, hours=hours)
    return TankStatsResponse(
        tank_id=stats.tank_id,
        period_hours=stats.period_hours,
        reading_count=stats.reading_count,
        average_water_level=stats.average_water_level,
        min_water_level=stats.min_water_level,
        max_water_level=stats.max_water_level,
        latest_reading=water_reading_to_dict(stats.latest_reading) if stats.latest_reading else None,
    )

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class HistoryPointResponse(BaseModel):
    ts: datetime
    value: float


class HistoryQueryEcho(BaseModel):
    device_id: str
    metric: str
    start: datetime
    end: datetime
    aggregation: str
    interval: str


class HistoryResponse(BaseModel):
    success: bool = True
    query: HistoryQueryEcho
    readings: dict[str, list[HistoryPointResponse]]

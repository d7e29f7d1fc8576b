"""
app/schemas/analytics.py

Response schemas for the dashboard analytics and refresh endpoints.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class InsightFiltersResponse(BaseModel):
    partner: str | None = None
    country: str | None = None
    start: date
    end: date
    project_id: int | None = None


class DailyPointResponse(BaseModel):
    day: date
    rows: int = Field(..., ge=0)
    traffic: float
    revenue: float
    cost: float
    expected: float
    actual: float


class MetricKeysResponse(BaseModel):
    traffic_key: str | None = None
    revenue_key: str | None = None
    cost_key: str | None = None
    expected_key: str | None = None
    actual_key: str | None = None
    forecast_metric: str | None = None


class RowTotalsResponse(BaseModel):
    rows_scanned: int = Field(..., ge=0)
    rows_matched: int = Field(..., ge=0)


class DailySeriesResponse(BaseModel):
    filters: InsightFiltersResponse
    totals: RowTotalsResponse
    metrics: MetricKeysResponse
    daily: list[DailyPointResponse] = Field(default_factory=list)
    source: str


class ForecastPointResponse(BaseModel):
    day: date
    value: float = Field(..., ge=0)


class ForecastResponse(BaseModel):
    horizon_days: int = Field(..., ge=1)
    metric: str
    points: list[ForecastPointResponse] = Field(default_factory=list)


class AnomalyPointResponse(BaseModel):
    day: date
    value: float
    z_score: float


class AnomalyResponse(BaseModel):
    metric: str
    points: list[AnomalyPointResponse] = Field(default_factory=list)


class LeakageItemResponse(BaseModel):
    partner: str
    country: str
    expected: float
    actual: float
    diff: float
    diff_pct: float | None = None


class LeakageResponse(BaseModel):
    expected_key: str | None = None
    actual_key: str | None = None
    items: list[LeakageItemResponse] = Field(default_factory=list)


class InsightsResponse(BaseModel):
    filters: InsightFiltersResponse
    totals: RowTotalsResponse
    metrics: MetricKeysResponse
    daily: list[DailyPointResponse] = Field(default_factory=list)
    forecast: ForecastResponse
    anomalies: AnomalyResponse
    leakage: LeakageResponse
    summaries: list[str] = Field(default_factory=list)
    advisories: list[str] = Field(default_factory=list)
    source: str


class RefreshRequest(BaseModel):
    file_ids: list[int] = Field(..., min_length=1, max_length=500)


class RefreshAcceptedResponse(BaseModel):
    queued: list[int] = Field(default_factory=list)
    pending: list[int] = Field(default_factory=list)
    in_flight: list[int] = Field(default_factory=list)

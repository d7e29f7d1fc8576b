"""
app/schemas/scorecard.py

Response schema for the partner scorecard endpoint.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class TrendPointResponse(BaseModel):
    month: str
    revenue: float
    usage: float


class PartnerScorecardResponseItem(BaseModel):
    partner: str
    revenue: float
    usage: float
    rows: int = Field(..., ge=0)
    files: int = Field(..., ge=0)
    quality_score: float | None = None
    dispute_count: int = Field(..., ge=0)
    payment_delay_days: float | None = None
    score: float = Field(..., ge=0, le=100)
    risk_level: str
    trend: list[TrendPointResponse] = Field(default_factory=list)


class ScorecardSummaryResponse(BaseModel):
    partner_count: int = Field(..., ge=0)
    total_revenue: float
    total_usage: float
    avg_quality_score: float | None = None
    total_disputes: int = Field(..., ge=0)
    avg_payment_delay_days: float | None = None
    risk_breakdown: dict[str, int] = Field(default_factory=dict)


class ScorecardOptionsResponse(BaseModel):
    months: int
    limit: int
    offset: int
    partner_search: str | None = None
    min_score: float | None = None
    sort_by: str
    sort_dir: str
    project_id: int | None = None


class PartnerScorecardResponse(BaseModel):
    options: ScorecardOptionsResponse
    month_keys: list[str]
    metric_keys: dict[str, str | None]
    summary: ScorecardSummaryResponse
    partners: list[PartnerScorecardResponseItem] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    source: str
    row_limit: int

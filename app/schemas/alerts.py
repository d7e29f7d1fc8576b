"""
app/schemas/alerts.py

Response schemas for the alert center endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    fingerprint: str
    alert_type: str
    severity: str
    status: str
    title: str
    message: str
    source: str
    project_id: int | None = None
    project_name: str | None = None
    partner: str | None = None
    payload: dict[str, Any] | None = None
    first_detected_at: datetime
    last_detected_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None


class AlertListResponse(BaseModel):
    items: list[AlertResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)


class SeverityCounts(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0
    total: int = 0


class AlertSummaryResponse(BaseModel):
    open: SeverityCounts
    resolved: SeverityCounts


class ProjectOption(BaseModel):
    id: int
    name: str


class AlertFilterOptionsResponse(BaseModel):
    projects: list[ProjectOption] = Field(default_factory=list)
    partners: list[str] = Field(default_factory=list)
    alert_types: list[str] = Field(default_factory=list)
    severities: list[str] = Field(default_factory=list)
    statuses: list[str] = Field(default_factory=list)


class ResolveAlertRequest(BaseModel):
    resolved_by: str | None = Field(default=None, max_length=255)


class DetectionTotals(BaseModel):
    created: int = Field(..., ge=0)
    reopened: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    processed_rows: int = Field(..., ge=0)


class DetectionRunResponse(BaseModel):
    """
    ``skipped`` is true when another detection pass was already running.
    """

    skipped: bool = False
    source: str | None = None
    quality: DetectionTotals | None = None
    metrics: DetectionTotals | None = None
    totals: DetectionTotals | None = None

"""
app/api/routers/analytics_router.py

Dashboard analytics endpoints (daily series, forecast, anomalies, leakage,
combined insights) and the upload-triggered aggregate refresh.

Read endpoints either return a complete payload or fail with a generic 500;
partial results are never returned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies import get_insights_service, get_project_scope, get_refresh_queue
from app.schemas.analytics import (
    AnomalyResponse,
    DailySeriesResponse,
    ForecastResponse,
    InsightsResponse,
    LeakageResponse,
    RefreshAcceptedResponse,
    RefreshRequest,
)
from app.services.errors import AnalyticsComputationError
from app.services.etl_queue import AnalyticsRefreshQueue
from app.services.insights_service import (
    AnomalyResult,
    ForecastResult,
    InsightDataset,
    InsightFilters,
    InsightsService,
    LeakageResult,
)
from db.repositories.scope import ProjectScope
from forecast.insights import DEFAULT_LEAKAGE_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])

T = TypeVar("T")


def get_insight_filters(
    partner: str | None = Query(default=None, max_length=255),
    country: str | None = Query(default=None, max_length=255),
    start: date | None = Query(default=None, description="Inclusive first day (YYYY-MM-DD)"),
    end: date | None = Query(default=None, description="Inclusive last day (YYYY-MM-DD)"),
    project_id: int | None = Query(default=None, ge=1),
) -> InsightFilters:
    return InsightFilters.build(
        partner=partner,
        country=country,
        start=start,
        end=end,
        project_id=project_id,
    )


def _run(label: str, compute: Callable[[], T]) -> T:
    try:
        return compute()
    except (AnalyticsComputationError, SQLAlchemyError) as exc:
        logger.warning("Analytics %s failed: %s", label, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Analytics computation failed.",
        ) from exc


# ---------------------------------------------------------------------------
# Response assembly
# ---------------------------------------------------------------------------


def _dataset_fields(dataset: InsightDataset, forecast_metric: str | None = None) -> dict:
    return {
        "filters": {**dataset.filters.as_dict(), "start": dataset.start, "end": dataset.end},
        "totals": {"rows_scanned": dataset.rows_scanned, "rows_matched": dataset.rows_matched},
        "metrics": {**dataset.metric_keys, "forecast_metric": forecast_metric},
        "daily": [point.as_dict() for point in dataset.series],
        "source": dataset.source,
    }


def _forecast_payload(result: ForecastResult) -> dict:
    return {
        "horizon_days": result.horizon_days,
        "metric": result.metric,
        "points": [{"day": point.day, "value": point.value} for point in result.points],
    }


def _anomaly_payload(result: AnomalyResult) -> dict:
    return {
        "metric": result.metric,
        "points": [
            {"day": point.day, "value": point.value, "z_score": point.z_score}
            for point in result.points
        ],
    }


def _leakage_payload(result: LeakageResult) -> dict:
    return {
        "expected_key": result.expected_key,
        "actual_key": result.actual_key,
        "items": [
            {
                "partner": item.partner,
                "country": item.country,
                "expected": item.expected,
                "actual": item.actual,
                "diff": item.diff,
                "diff_pct": item.diff_pct,
            }
            for item in result.items
        ],
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/daily", response_model=DailySeriesResponse)
def daily_series(
    filters: InsightFilters = Depends(get_insight_filters),
    scope: ProjectScope = Depends(get_project_scope),
    service: InsightsService = Depends(get_insights_service),
) -> DailySeriesResponse:
    dataset = _run("daily series", lambda: service.daily_series(filters, scope))
    return DailySeriesResponse.model_validate(_dataset_fields(dataset))


@router.get("/forecast", response_model=ForecastResponse)
def forecast(
    horizon: int | None = Query(default=None, ge=1, le=90, description="Days to project"),
    filters: InsightFilters = Depends(get_insight_filters),
    scope: ProjectScope = Depends(get_project_scope),
    service: InsightsService = Depends(get_insights_service),
) -> ForecastResponse:
    result = _run("forecast", lambda: service.forecast(filters, scope, horizon=horizon))
    return ForecastResponse.model_validate(_forecast_payload(result))


@router.get("/anomalies", response_model=AnomalyResponse)
def anomalies(
    filters: InsightFilters = Depends(get_insight_filters),
    scope: ProjectScope = Depends(get_project_scope),
    service: InsightsService = Depends(get_insights_service),
) -> AnomalyResponse:
    result = _run("anomalies", lambda: service.anomalies(filters, scope))
    return AnomalyResponse.model_validate(_anomaly_payload(result))


@router.get("/leakage", response_model=LeakageResponse)
def leakage(
    limit: int = Query(default=DEFAULT_LEAKAGE_LIMIT, ge=1, le=50),
    filters: InsightFilters = Depends(get_insight_filters),
    scope: ProjectScope = Depends(get_project_scope),
    service: InsightsService = Depends(get_insights_service),
) -> LeakageResponse:
    result = _run("leakage", lambda: service.leakage(filters, scope, limit=limit))
    return LeakageResponse.model_validate(_leakage_payload(result))


@router.get("/insights", response_model=InsightsResponse)
def insights(
    filters: InsightFilters = Depends(get_insight_filters),
    scope: ProjectScope = Depends(get_project_scope),
    service: InsightsService = Depends(get_insights_service),
) -> InsightsResponse:
    report = _run("insights", lambda: service.insights(filters, scope))
    return InsightsResponse.model_validate(
        {
            **_dataset_fields(report.dataset, report.forecast.metric),
            "forecast": _forecast_payload(report.forecast),
            "anomalies": _anomaly_payload(report.anomalies),
            "leakage": _leakage_payload(report.leakage),
            "summaries": report.summaries,
            "advisories": report.advisories,
        }
    )


@router.post(
    "/refresh",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=RefreshAcceptedResponse,
)
def refresh_aggregates(
    body: RefreshRequest,
    queue: AnalyticsRefreshQueue = Depends(get_refresh_queue),
) -> RefreshAcceptedResponse:
    """
    Queue files for aggregate refresh. Ids already being refreshed are not
    queued again; everything else runs in the next batch.
    """
    if not any(file_id > 0 for file_id in body.file_ids):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="file_ids must contain at least one positive id.",
        )
    queued = queue.enqueue(body.file_ids)
    return RefreshAcceptedResponse(queued=queued, pending=queue.pending, in_flight=queue.in_flight)

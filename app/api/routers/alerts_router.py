"""
app/api/routers/alerts_router.py

Alert center endpoints: list, summary, filter options, detail, the operator
resolve/reopen transitions and an on-demand detection pass.

Every read and transition is limited to the caller's project scope; an alert
outside the scope is reported as not found.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies import get_alert_service, get_detection_runner, get_project_scope
from app.schemas.alerts import (
    AlertFilterOptionsResponse,
    AlertListResponse,
    AlertResponse,
    AlertSummaryResponse,
    DetectionRunResponse,
    DetectionTotals,
    ResolveAlertRequest,
)
from app.services.alert_service import AlertNotFoundError, AlertService, UpsertTally
from app.services.detection_service import DetectionSummary
from app.services.errors import AnalyticsComputationError
from db.repositories.errors import AlertPersistenceError
from db.repositories.scope import ProjectScope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["alerts"])

_COMPUTATION_FAILED = "Analytics computation failed."


def _not_found(exc: AlertNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _server_error() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=_COMPUTATION_FAILED)


def _tally_totals(tally: UpsertTally) -> DetectionTotals:
    return DetectionTotals(
        created=tally.created,
        reopened=tally.reopened,
        updated=tally.updated,
        processed_rows=tally.processed,
    )


@router.get("/alerts", response_model=AlertListResponse)
def list_alerts(
    status_filter: str | None = Query(default=None, alias="status", description="open or resolved"),
    severity: str | None = Query(default=None, description="low, medium or high"),
    project_id: int | None = Query(default=None, ge=1),
    partner: str | None = Query(default=None, max_length=255),
    alert_type: str | None = Query(default=None, max_length=64),
    q: str | None = Query(default=None, max_length=255, description="Free text over title, message, partner and project"),
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    scope: ProjectScope = Depends(get_project_scope),
    service: AlertService = Depends(get_alert_service),
) -> AlertListResponse:
    try:
        page = service.list_alerts(
            status=status_filter,
            severity=severity,
            project_id=project_id,
            partner=partner,
            alert_type=alert_type,
            query=q,
            limit=limit,
            offset=offset,
            project_ids=scope,
        )
    except SQLAlchemyError as exc:
        logger.warning("Alert listing failed: %s", exc)
        raise _server_error() from exc

    return AlertListResponse(
        items=[AlertResponse.model_validate(alert) for alert in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/alerts/summary", response_model=AlertSummaryResponse)
def alert_summary(
    scope: ProjectScope = Depends(get_project_scope),
    service: AlertService = Depends(get_alert_service),
) -> AlertSummaryResponse:
    try:
        counts = service.summary(scope)
    except SQLAlchemyError as exc:
        logger.warning("Alert summary failed: %s", exc)
        raise _server_error() from exc
    return AlertSummaryResponse.model_validate(counts)


@router.get("/alerts/filters", response_model=AlertFilterOptionsResponse)
def alert_filter_options(
    scope: ProjectScope = Depends(get_project_scope),
    service: AlertService = Depends(get_alert_service),
) -> AlertFilterOptionsResponse:
    try:
        options = service.filter_options(scope)
    except SQLAlchemyError as exc:
        logger.warning("Alert filter options failed: %s", exc)
        raise _server_error() from exc
    return AlertFilterOptionsResponse.model_validate(options)


@router.post("/alerts/detect", response_model=DetectionRunResponse)
def run_detection(
    scope: ProjectScope = Depends(get_project_scope),
    runner: Callable[[ProjectScope], DetectionSummary | None] = Depends(get_detection_runner),
) -> DetectionRunResponse:
    try:
        summary = runner(scope)
    except (AnalyticsComputationError, AlertPersistenceError, SQLAlchemyError) as exc:
        logger.warning("On-demand detection failed: %s", exc)
        raise _server_error() from exc

    if summary is None:
        return DetectionRunResponse(skipped=True)
    return DetectionRunResponse(
        source=summary.series_source,
        quality=_tally_totals(summary.quality),
        metrics=_tally_totals(summary.metrics),
        totals=DetectionTotals(**summary.totals),
    )


@router.get("/alerts/{alert_id}", response_model=AlertResponse)
def get_alert(
    alert_id: int,
    scope: ProjectScope = Depends(get_project_scope),
    service: AlertService = Depends(get_alert_service),
) -> AlertResponse:
    try:
        alert = service.get(alert_id, scope)
    except AlertNotFoundError as exc:
        raise _not_found(exc) from exc
    return AlertResponse.model_validate(alert)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
def resolve_alert(
    alert_id: int,
    body: ResolveAlertRequest | None = Body(default=None),
    scope: ProjectScope = Depends(get_project_scope),
    service: AlertService = Depends(get_alert_service),
) -> AlertResponse:
    resolved_by = body.resolved_by if body is not None else None
    try:
        alert = service.resolve(alert_id, resolved_by, project_ids=scope)
    except AlertNotFoundError as exc:
        raise _not_found(exc) from exc
    except SQLAlchemyError as exc:
        logger.warning("Resolving alert_id=%s failed: %s", alert_id, exc)
        raise _server_error() from exc
    return AlertResponse.model_validate(alert)


@router.post("/alerts/{alert_id}/reopen", response_model=AlertResponse)
def reopen_alert(
    alert_id: int,
    scope: ProjectScope = Depends(get_project_scope),
    service: AlertService = Depends(get_alert_service),
) -> AlertResponse:
    try:
        alert = service.reopen(alert_id, project_ids=scope)
    except AlertNotFoundError as exc:
        raise _not_found(exc) from exc
    except SQLAlchemyError as exc:
        logger.warning("Reopening alert_id=%s failed: %s", alert_id, exc)
        raise _server_error() from exc
    return AlertResponse.model_validate(alert)

"""
app/api/routers/scorecard_router.py

Partner scorecard endpoint.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies import get_project_scope, get_scorecard_service
from app.schemas.scorecard import PartnerScorecardResponse
from app.services.errors import AnalyticsComputationError
from app.services.scorecard_service import ScorecardService
from db.repositories.scope import ProjectScope
from risk.ranking import ScorecardOptions

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scorecard"])


@router.get("/partners/scorecard", response_model=PartnerScorecardResponse)
def partner_scorecard(
    months: int | None = Query(default=None, description="Trailing calendar months, clamped to [3, 24]"),
    limit: int | None = Query(default=None, description="Page size, clamped to [5, 100]"),
    offset: int | None = Query(default=None, ge=0),
    partner: str | None = Query(default=None, max_length=255, description="Partner substring"),
    min_score: float | None = Query(default=None),
    sort_by: str | None = Query(default=None),
    sort_dir: str | None = Query(default=None),
    project_id: int | None = Query(default=None, ge=1),
    scope: ProjectScope = Depends(get_project_scope),
    service: ScorecardService = Depends(get_scorecard_service),
) -> PartnerScorecardResponse:
    options = ScorecardOptions.build(
        months=months,
        limit=limit,
        offset=offset,
        partner_search=partner,
        min_score=min_score,
        sort_by=sort_by,
        sort_dir=sort_dir,
        project_id=project_id,
    )
    try:
        result = service.compute(options, scope)
    except (AnalyticsComputationError, SQLAlchemyError) as exc:
        logger.warning("Partner scorecard failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Analytics computation failed.",
        ) from exc

    return PartnerScorecardResponse.model_validate(
        {
            "options": asdict(result.options),
            "month_keys": result.month_keys,
            "metric_keys": result.metric_keys,
            "summary": asdict(result.summary),
            "partners": [asdict(item) for item in result.partners],
            "total": result.total,
            "source": result.source,
            "row_limit": result.row_limit,
        }
    )

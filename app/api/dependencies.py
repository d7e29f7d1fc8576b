"""
app/api/dependencies.py

Shared FastAPI dependencies: caller project scope, process-wide caches and
the refresh queue, and per-request service construction.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.caching import TTLCache
from app.config import get_cache_settings
from app.services.alert_service import AlertService
from app.services.detection_service import DetectionSummary
from app.services.etl_queue import AnalyticsRefreshQueue
from app.services.insights_service import InsightsService
from app.services.scorecard_service import ScorecardService
from db.repositories.scope import ProjectScope
from db.session import get_db

PROJECT_SCOPE_HEADER = "X-Allowed-Projects"


def parse_project_scope(raw: str | None) -> ProjectScope:
    """
    ``None`` (header absent) is unrestricted; a present but empty header
    grants no projects.
    """

    if raw is None:
        return None
    ids: list[int] = []
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        if not token.isdigit() or int(token) <= 0:
            raise ValueError(f"Invalid project id {token!r}.")
        ids.append(int(token))
    return sorted(set(ids))


def get_project_scope(
    allowed_projects: str | None = Header(default=None, alias=PROJECT_SCOPE_HEADER),
) -> ProjectScope:
    try:
        return parse_project_scope(allowed_projects)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@lru_cache(maxsize=1)
def get_scorecard_cache() -> TTLCache:
    settings = get_cache_settings()
    return TTLCache(settings.ttl_seconds, settings.max_entries)


@lru_cache(maxsize=1)
def get_insights_cache() -> TTLCache:
    settings = get_cache_settings()
    return TTLCache(settings.ttl_seconds, settings.max_entries)


@lru_cache(maxsize=1)
def get_refresh_queue() -> AnalyticsRefreshQueue:
    from app.scheduler.jobs import refresh_files_in_new_session

    return AnalyticsRefreshQueue(refresh_files_in_new_session)


def get_alert_service(db: Session = Depends(get_db)) -> AlertService:
    return AlertService(db)


def get_detection_runner() -> Callable[[ProjectScope], DetectionSummary | None]:
    from app.scheduler.jobs import run_alert_detection

    return run_alert_detection


def get_scorecard_service(db: Session = Depends(get_db)) -> ScorecardService:
    return ScorecardService(db, cache=get_scorecard_cache())


def get_insights_service(db: Session = Depends(get_db)) -> InsightsService:
    return InsightsService(db, cache=get_insights_cache())

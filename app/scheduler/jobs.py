"""
app/scheduler/jobs.py

APScheduler-based background ticks for the analytics engine.

Schedule (interval, UTC)
--------------------------
  analytics_etl_backfill: every ``ANALYTICS_ETL_INTERVAL_SECONDS`` (default 180)
  alert_detection:        every ``ALERT_DETECTION_INTERVAL_SECONDS`` (default 900)

Both jobs run with ``max_instances=1`` and ``coalesce=True``. The detection
job additionally holds a process-wide lock so a manual run triggered over
HTTP and a scheduled tick never overlap; the later one is skipped, not queued.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_detection_settings, get_etl_settings
from app.services.detection_service import DetectionSummary, DetectionService
from app.services.etl_service import AnalyticsETLService, ETLRunSummary
from db.repositories.scope import ProjectScope
from db.session import session_scope

logger = logging.getLogger(__name__)

_detection_lock = threading.Lock()


# ---------------------------------------------------------------------------
# Job: ETL backfill
# ---------------------------------------------------------------------------


def run_analytics_backfill(limit: int | None = None) -> ETLRunSummary:
    """
    Refresh a small batch of files whose aggregates are missing or stale.
    Each file commits on its own; a failing file does not stop the batch.
    """
    logger.info("Scheduler: analytics_etl_backfill starting")
    with session_scope() as db:
        summary = AnalyticsETLService(db).refresh_stale(limit)
    logger.info(
        "Scheduler: analytics_etl_backfill complete refreshed=%d failed=%d",
        len(summary.refreshed),
        len(summary.failed),
    )
    return summary


def refresh_files_in_new_session(file_ids: Iterable[Any]) -> ETLRunSummary:
    """Batch runner for the upload-triggered refresh queue."""
    with session_scope() as db:
        return AnalyticsETLService(db).refresh_files(file_ids)


# ---------------------------------------------------------------------------
# Job: Alert detection
# ---------------------------------------------------------------------------


def run_alert_detection(project_ids: ProjectScope = None) -> DetectionSummary | None:
    """
    Run one detection pass. Returns ``None`` when another pass is still
    running in this process.
    """
    if not _detection_lock.acquire(blocking=False):
        logger.info("Scheduler: alert_detection skipped, previous run still active")
        return None

    try:
        logger.info("Scheduler: alert_detection starting")
        with session_scope() as db:
            summary = DetectionService(db).run(project_ids)
        logger.info(
            "Scheduler: alert_detection complete source=%s created=%d reopened=%d updated=%d",
            summary.series_source,
            summary.totals["created"],
            summary.totals["reopened"],
            summary.totals["updated"],
        )
        return summary
    finally:
        _detection_lock.release()


def _scheduled_alert_detection() -> None:
    try:
        run_alert_detection()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: alert_detection failed: %s", exc)


def _scheduled_backfill() -> None:
    try:
        run_analytics_backfill()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: analytics_etl_backfill failed: %s", exc)


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler() -> BackgroundScheduler:
    """
    Build and register the enabled periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """
    scheduler = BackgroundScheduler(timezone="UTC")
    etl_settings = get_etl_settings()
    detection_settings = get_detection_settings()

    if etl_settings.worker_enabled:
        scheduler.add_job(
            _scheduled_backfill,
            trigger="interval",
            seconds=etl_settings.interval_seconds,
            id="analytics_etl_backfill",
            name="Analytics ETL backfill",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    else:
        logger.info("Scheduler: analytics_etl_backfill disabled")

    if detection_settings.enabled:
        scheduler.add_job(
            _scheduled_alert_detection,
            trigger="interval",
            seconds=detection_settings.interval_seconds,
            id="alert_detection",
            name="Alert detection",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    else:
        logger.info("Scheduler: alert_detection disabled")

    return scheduler

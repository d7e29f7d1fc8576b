"""
app/services/alert_service.py

Alert lifecycle: fingerprint-deduplicated upsert, operator resolve/reopen,
and the list/summary/filter read paths.

State machine
-------------
    (absent)  --detect-->  open        notification emitted
    open      --detect-->  open        fields refreshed, no notification
    resolved  --detect-->  open        reopened, resolution cleared, notification emitted
    open      --resolve--> resolved    resolved_at / resolved_by set
    resolved  --reopen-->  open        resolution cleared

Transactions
------------
``upsert`` never commits; detection passes commit once per run. ``resolve``
and ``reopen`` are operator actions and commit on their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.logging_utils import log_event
from app.services.notifications import (
    ALERT_NOTIFICATION_CHANNEL,
    ALERT_NOTIFICATION_TYPE,
    DatabaseNotificationSink,
    NotificationSink,
)
from db.base import utcnow
from db.models.alert import (
    SEVERITIES,
    SEVERITY_MEDIUM,
    STATUS_OPEN,
    STATUS_RESOLVED,
    STATUSES,
    Alert,
)
from db.repositories.alert_repository import AlertFilters, AlertRepository
from db.repositories.errors import AlertPersistenceError
from db.repositories.scope import ProjectScope
from detection.fingerprints import NOTIFICATION_FAILURE, build_fingerprint

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 200
DEFAULT_RESOLVER = "system"


class AlertNotFoundError(LookupError):
    def __init__(self, alert_id: int) -> None:
        super().__init__(f"Alert {alert_id} not found.")
        self.alert_id = alert_id


def clamp_severity(value: str | None) -> str:
    """Known severity or ``medium``."""
    lowered = (value or "").strip().lower()
    return lowered if lowered in SEVERITIES else SEVERITY_MEDIUM


def clamp_status(value: str | None) -> str:
    """``resolved`` when asked for it, ``open`` for anything else."""
    return STATUS_RESOLVED if (value or "").strip().lower() == STATUS_RESOLVED else STATUS_OPEN


@dataclass(frozen=True)
class AlertInput:
    fingerprint: str
    alert_type: str
    severity: str
    title: str
    message: str
    source: str = "system"
    project_id: int | None = None
    project_name: str | None = None
    partner: str | None = None
    payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class UpsertResult:
    id: int
    created: bool
    reopened: bool


@dataclass(frozen=True)
class AlertPage:
    items: list[Alert]
    total: int
    limit: int
    offset: int


@dataclass
class UpsertTally:
    """Running created/reopened/updated counts for a detection pass."""

    created: int = 0
    reopened: int = 0
    updated: int = 0
    processed: int = 0
    alert_ids: list[int] = field(default_factory=list)

    def record(self, result: UpsertResult) -> None:
        self.alert_ids.append(result.id)
        if result.created:
            self.created += 1
        elif result.reopened:
            self.reopened += 1
        else:
            self.updated += 1

    def merge(self, other: UpsertTally) -> UpsertTally:
        return UpsertTally(
            created=self.created + other.created,
            reopened=self.reopened + other.reopened,
            updated=self.updated + other.updated,
            processed=self.processed + other.processed,
            alert_ids=self.alert_ids + other.alert_ids,
        )


class AlertService:
    """
    Parameters
    ----------
    session:
        Active SQLAlchemy session; used for operator commits.
    repository / notifier:
        Overrides for the alert repository and notification sink.
    clock:
        Source of ``now`` for detection and resolution timestamps.
    """

    def __init__(
        self,
        session: Session,
        *,
        repository: AlertRepository | None = None,
        notifier: NotificationSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._repository = repository or AlertRepository(session)
        self._notifier = notifier or DatabaseNotificationSink(session)
        self._clock = clock

    # ------------------------------------------------------------------
    # Detection entry point
    # ------------------------------------------------------------------

    def upsert(self, alert: AlertInput) -> UpsertResult:
        """
        Create, refresh or reopen the alert identified by ``alert.fingerprint``.

        A lost insert race (another writer created the fingerprint between
        our lookup and insert) falls through to the update path.
        """
        fingerprint = (alert.fingerprint or "").strip()
        if not fingerprint:
            raise ValueError("Alert fingerprint is required.")

        now = self._clock()
        severity = clamp_severity(alert.severity)

        existing = self._repository.get_by_fingerprint(fingerprint, for_update=True)
        if existing is None:
            inserted = self._repository.insert_if_absent(
                {
                    "fingerprint": fingerprint,
                    "alert_type": alert.alert_type,
                    "severity": severity,
                    "status": STATUS_OPEN,
                    "title": alert.title,
                    "message": alert.message,
                    "source": alert.source,
                    "project_id": alert.project_id,
                    "project_name": alert.project_name,
                    "partner": alert.partner,
                    "payload": alert.payload,
                    "first_detected_at": now,
                    "last_detected_at": now,
                }
            )
            if inserted is not None:
                log_event(
                    logger,
                    logging.INFO,
                    "alerts.created",
                    alert_id=inserted.id,
                    fingerprint=fingerprint,
                    severity=severity,
                )
                self._notify(inserted)
                return UpsertResult(id=inserted.id, created=True, reopened=False)

            existing = self._repository.get_by_fingerprint(fingerprint, for_update=True)
            if existing is None:
                raise AlertPersistenceError(
                    f"Alert with fingerprint {fingerprint!r} vanished after insert conflict."
                )

        reopened = existing.status == STATUS_RESOLVED
        existing.alert_type = alert.alert_type
        existing.severity = severity
        existing.status = STATUS_OPEN
        existing.title = alert.title
        existing.message = alert.message
        existing.source = alert.source
        existing.project_id = alert.project_id
        existing.project_name = alert.project_name
        existing.partner = alert.partner
        existing.payload = alert.payload
        existing.last_detected_at = now
        existing.resolved_at = None
        existing.resolved_by = None
        self._repository.flush()

        if reopened:
            log_event(logger, logging.INFO, "alerts.reopened", alert_id=existing.id, fingerprint=fingerprint)
            self._notify(existing)
        return UpsertResult(id=existing.id, created=False, reopened=reopened)

    # ------------------------------------------------------------------
    # Operator transitions
    # ------------------------------------------------------------------

    def resolve(
        self,
        alert_id: int,
        resolved_by: str | None = None,
        *,
        project_ids: ProjectScope = None,
    ) -> Alert:
        alert = self.get(alert_id, project_ids)
        if alert.status == STATUS_RESOLVED:
            return alert
        try:
            alert.status = STATUS_RESOLVED
            alert.resolved_at = self._clock()
            alert.resolved_by = (resolved_by or "").strip() or DEFAULT_RESOLVER
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        log_event(logger, logging.INFO, "alerts.resolved", alert_id=alert_id, resolved_by=alert.resolved_by)
        return alert

    def reopen(self, alert_id: int, *, project_ids: ProjectScope = None) -> Alert:
        alert = self.get(alert_id, project_ids)
        try:
            alert.status = STATUS_OPEN
            alert.resolved_at = None
            alert.resolved_by = None
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        log_event(logger, logging.INFO, "alerts.manually_reopened", alert_id=alert_id)
        return alert

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, alert_id: int, project_ids: ProjectScope = None) -> Alert:
        alert = self._repository.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        if project_ids is not None and alert.project_id not in set(project_ids):
            raise AlertNotFoundError(alert_id)
        return alert

    def list_alerts(
        self,
        *,
        status: str | None = None,
        severity: str | None = None,
        project_id: int | None = None,
        partner: str | None = None,
        alert_type: str | None = None,
        query: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        project_ids: ProjectScope = None,
    ) -> AlertPage:
        """
        Filtered page ordered by severity (high first) then most recent detection.
        """
        bounded_limit = DEFAULT_LIST_LIMIT if limit is None else max(1, min(MAX_LIST_LIMIT, int(limit)))
        bounded_offset = max(0, int(offset or 0))
        filters = AlertFilters(
            status=clamp_status(status) if status else None,
            severity=clamp_severity(severity) if severity else None,
            project_id=project_id,
            partner=(partner or "").strip() or None,
            alert_type=(alert_type or "").strip() or None,
            query=(query or "").strip() or None,
            project_ids=project_ids,
            limit=bounded_limit,
            offset=bounded_offset,
        )
        items, total = self._repository.list_alerts(filters)
        return AlertPage(items=items, total=total, limit=bounded_limit, offset=bounded_offset)

    def summary(self, project_ids: ProjectScope = None) -> dict[str, dict[str, int]]:
        """Counts per status and severity, with a per-status total."""
        counts = {status: {**{s: 0 for s in SEVERITIES}, "total": 0} for status in STATUSES}
        for status, severity, total in self._repository.count_by_status_severity(project_ids):
            bucket = counts[clamp_status(status)]
            bucket[clamp_severity(severity)] += total
            bucket["total"] += total
        return counts

    def filter_options(self, project_ids: ProjectScope = None) -> dict[str, list[Any]]:
        return {
            "projects": [
                {"id": project_id, "name": name or f"Project {project_id}"}
                for project_id, name in self._repository.distinct_projects(project_ids)
            ],
            "partners": self._repository.distinct_partners(project_ids),
            "alert_types": self._repository.distinct_alert_types(project_ids),
            "severities": list(SEVERITIES),
            "statuses": list(STATUSES),
        }

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify(self, alert: Alert) -> None:
        try:
            self._notifier.send(
                type=ALERT_NOTIFICATION_TYPE,
                channel=ALERT_NOTIFICATION_CHANNEL,
                message=f"[{(alert.severity or SEVERITY_MEDIUM).upper()}] {alert.title}",
                metadata={
                    "alert_id": alert.id,
                    "alert_type": alert.alert_type,
                    "project_id": alert.project_id,
                    "partner": alert.partner,
                    "message": alert.message,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Alert notification failed alert_id=%s: %s", alert.id, exc)
            # A failing sink must not produce an endless chain of failure alerts.
            if alert.alert_type != NOTIFICATION_FAILURE:
                self._record_notification_failure(alert, exc)

    def _record_notification_failure(self, alert: Alert, exc: Exception) -> None:
        self.upsert(
            AlertInput(
                fingerprint=build_fingerprint(NOTIFICATION_FAILURE, alert=alert.id),
                alert_type=NOTIFICATION_FAILURE,
                severity=SEVERITY_MEDIUM,
                title=f"Notification delivery failed for alert #{alert.id}",
                message=f"Could not deliver notification for '{alert.title}': {exc}",
                source="notifications",
                project_id=alert.project_id,
                project_name=alert.project_name,
                partner=alert.partner,
                payload={
                    "alert_id": alert.id,
                    "alert_type": alert.alert_type,
                    "error": str(exc),
                },
            )
        )

"""
app/services/detection_service.py

One alert-detection pass: data-quality warnings for scored files, then the
revenue-drop / traffic-spike / z-score rules for every (project, partner)
daily series inside the lookback window.

Series come from the ETL aggregates. When those tables cannot be queried
(missing migration, permissions) the pass rebuilds equivalent series from
raw rows instead; if that also fails the error propagates.

All upserts of a pass share one transaction, committed at the end.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from app.config import DetectionSettings, get_detection_settings
from app.logging_utils import log_event
from app.mappers.field_resolver import FieldResolver
from app.mappers.values import parse_date, parse_number, to_text
from app.services.alert_service import AlertInput, AlertService, UpsertTally
from app.services.etl_service import upload_day
from db.base import utcnow
from db.models.analytics import UNKNOWN_PARTNER
from db.repositories.aggregate_repository import AggregateRepository
from db.repositories.file_repository import FileRowRepository, ScopedRow
from db.repositories.scope import ProjectScope
from detection.detector import DailyPoint, DetectorConfig, evaluate_partner_series
from detection.fingerprints import DATA_QUALITY_WARNING
from detection.quality import FileQuality, describe_quality_issue, quality_warning_severity

logger = logging.getLogger(__name__)

SOURCE_AGGREGATES = "aggregates"
SOURCE_ROW_SCAN = "row_scan"

ALERT_ENGINE_SOURCE = "alert_engine"
DATA_QUALITY_SOURCE = "data_quality"


@dataclass(frozen=True)
class PartnerSeries:
    project_id: int
    project_name: str | None
    partner: str
    points: list[DailyPoint]
    has_revenue: bool
    has_traffic: bool


@dataclass
class DetectionSummary:
    quality: UpsertTally = field(default_factory=UpsertTally)
    metrics: UpsertTally = field(default_factory=UpsertTally)
    series_source: str = SOURCE_AGGREGATES

    @property
    def totals(self) -> dict[str, int]:
        return {
            "created": self.quality.created + self.metrics.created,
            "reopened": self.quality.reopened + self.metrics.reopened,
            "updated": self.quality.updated + self.metrics.updated,
            "processed_rows": self.quality.processed + self.metrics.processed,
        }


def series_from_partner_days(
    rows: Iterable[Any],
    availability: dict[tuple[int, str], tuple[bool, bool]],
) -> tuple[list[PartnerSeries], int]:
    """
    Group aggregate rows into per-(project, partner) series.

    Returns the series plus the number of raw rows they summarise.
    """
    grouped: dict[tuple[int, str], list[Any]] = defaultdict(list)
    names: dict[int, str | None] = {}
    processed = 0
    for row in rows:
        grouped[(row.project_id, row.partner)].append(row)
        names.setdefault(row.project_id, row.project_name)
        processed += row.rows

    series = []
    for (project_id, partner), items in grouped.items():
        has_revenue, has_traffic = availability.get((project_id, partner), (False, False))
        series.append(
            PartnerSeries(
                project_id=project_id,
                project_name=names.get(project_id),
                partner=partner,
                points=[
                    DailyPoint(day=item.day, rows=item.rows, revenue=item.revenue, traffic=item.traffic)
                    for item in items
                ],
                has_revenue=has_revenue,
                has_traffic=has_traffic,
            )
        )
    return series, processed


def series_from_raw_rows(
    rows: Iterable[ScopedRow],
    resolver: FieldResolver,
) -> tuple[list[PartnerSeries], int]:
    """
    Rebuild per-partner daily series straight from raw rows.

    Fields are resolved once per project over that project's rows, so a
    project with no revenue-like column gets no revenue checks.
    """
    by_project: dict[int, list[ScopedRow]] = defaultdict(list)
    for row in rows:
        by_project[row.project_id].append(row)

    series: list[PartnerSeries] = []
    processed = 0
    for project_id, entries in by_project.items():
        processed += len(entries)
        fields = resolver.resolve([], [entry.data for entry in entries])
        project_name = entries[0].project_name

        days: dict[str, dict[date, dict[str, float]]] = defaultdict(dict)
        for entry in entries:
            data = entry.data
            partner = to_text(data.get(fields.partner)) if fields.partner else ""
            partner = partner or UNKNOWN_PARTNER
            day = (parse_date(data.get(fields.date)) if fields.date else None) or upload_day(entry.uploaded_at)
            point = days[partner].setdefault(day, {"rows": 0, "revenue": 0.0, "traffic": 0.0})
            point["rows"] += 1
            if fields.revenue:
                revenue = parse_number(data.get(fields.revenue))
                if revenue is not None:
                    point["revenue"] += revenue
            if fields.traffic:
                traffic = parse_number(data.get(fields.traffic))
                if traffic is not None:
                    point["traffic"] += traffic

        for partner, by_day in days.items():
            series.append(
                PartnerSeries(
                    project_id=project_id,
                    project_name=project_name,
                    partner=partner,
                    points=[
                        DailyPoint(
                            day=day,
                            rows=int(values["rows"]),
                            revenue=values["revenue"],
                            traffic=values["traffic"],
                        )
                        for day, values in sorted(by_day.items())
                    ],
                    has_revenue=fields.revenue is not None,
                    has_traffic=fields.traffic is not None,
                )
            )
    return series, processed


class DetectionService:
    """
    Parameters
    ----------
    session:
        Active SQLAlchemy session; the pass commits on success and rolls
        back on failure.
    alerts / aggregates / row_store:
        Collaborator overrides; default to the SQLAlchemy-backed ones.
    settings:
        Detection knobs; defaults to :func:`get_detection_settings`.
    """

    def __init__(
        self,
        session: Session,
        *,
        alerts: AlertService | None = None,
        aggregates: AggregateRepository | None = None,
        row_store: FileRowRepository | None = None,
        settings: DetectionSettings | None = None,
        resolver: FieldResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings or get_detection_settings()
        self._alerts = alerts or AlertService(session, clock=clock)
        self._aggregates = aggregates or AggregateRepository(session)
        self._row_store = row_store or FileRowRepository(session)
        self._resolver = resolver or FieldResolver()
        self._clock = clock

    @property
    def detector_config(self) -> DetectorConfig:
        return self._settings.detector_config()

    def run(self, project_ids: ProjectScope = None) -> DetectionSummary:
        summary = DetectionSummary()
        try:
            # Read series before any upsert so a fallback rollback loses nothing.
            series, processed, summary.series_source = self.load_partner_series(project_ids)
            summary.quality = self.detect_quality_warnings(project_ids)
            summary.metrics = self.detect_metric_shifts(series)
            summary.metrics.processed = processed
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        log_event(
            logger,
            logging.INFO,
            "detection.completed",
            source=summary.series_source,
            **summary.totals,
        )
        return summary

    # ------------------------------------------------------------------
    # Data quality
    # ------------------------------------------------------------------

    def detect_quality_warnings(self, project_ids: ProjectScope = None) -> UpsertTally:
        tally = UpsertTally()
        for row in self._row_store.list_quality_scores(project_ids):
            quality = FileQuality(
                file_id=row.file_id,
                file_name=row.file_name,
                project_id=row.project_id,
                project_name=row.project_name,
                score=row.score,
                trust_level=row.trust_level,
                invalid_rate=row.invalid_rate,
                schema_inconsistency_rate=row.schema_inconsistency_rate,
            )
            severity = quality_warning_severity(quality)
            if severity is None:
                continue
            tally.processed += 1
            tally.record(
                self._alerts.upsert(
                    AlertInput(
                        fingerprint=quality.fingerprint,
                        alert_type=DATA_QUALITY_WARNING,
                        severity=severity,
                        title=f"Data quality warning on {quality.file_name}",
                        message=describe_quality_issue(quality),
                        source=DATA_QUALITY_SOURCE,
                        project_id=quality.project_id,
                        project_name=quality.project_name,
                        payload={
                            "file_id": quality.file_id,
                            "file_name": quality.file_name,
                            "score": quality.score,
                            "trust_level": quality.trust_level,
                            "invalid_rate": quality.invalid_rate,
                            "schema_inconsistency_rate": quality.schema_inconsistency_rate,
                        },
                    )
                )
            )
        return tally

    # ------------------------------------------------------------------
    # Threshold and anomaly rules
    # ------------------------------------------------------------------

    def load_partner_series(self, project_ids: ProjectScope = None) -> tuple[list[PartnerSeries], int, str]:
        """
        Daily series per (project, partner) over the lookback window.

        Returns ``(series, processed_rows, source)``.
        """
        now = self._clock()
        since = (now - timedelta(days=self._settings.lookback_days)).date()
        try:
            rows = self._aggregates.partner_day_points(since, project_ids)
            availability = self._aggregates.partner_metric_availability(since, project_ids)
            series, processed = series_from_partner_days(rows, availability)
            return series, processed, SOURCE_AGGREGATES
        except (ProgrammingError, OperationalError) as exc:
            logger.warning("Aggregate tables unavailable, falling back to row scan: %s", exc)
            self._session.rollback()

        uploaded_since = now - timedelta(days=self._settings.lookback_days)
        scoped_rows = self._row_store.iter_scoped_rows(
            project_ids,
            uploaded_since=uploaded_since,
            limit=self._settings.row_limit,
        )
        series, processed = series_from_raw_rows(scoped_rows, self._resolver)
        return series, processed, SOURCE_ROW_SCAN

    def detect_metric_shifts(self, series: Iterable[PartnerSeries]) -> UpsertTally:
        tally = UpsertTally()
        config = self.detector_config
        for item in series:
            findings = evaluate_partner_series(
                item.partner,
                item.points,
                has_revenue=item.has_revenue,
                has_traffic=item.has_traffic,
                config=config,
            )
            for finding in findings:
                tally.record(
                    self._alerts.upsert(
                        AlertInput(
                            fingerprint=finding.fingerprint(item.project_id),
                            alert_type=finding.alert_type,
                            severity=finding.severity,
                            title=finding.title,
                            message=finding.message,
                            source=ALERT_ENGINE_SOURCE,
                            project_id=item.project_id,
                            project_name=item.project_name or f"Project {item.project_id}",
                            partner=item.partner,
                            payload={"project_id": item.project_id, **finding.payload},
                        )
                    )
                )
        return tally

"""
app/services/scorecard_service.py

Partner scorecard read path.

Per-partner totals come from the daily aggregates when they cover the
window. Otherwise (tables missing, or nothing aggregated yet) the service
scans raw rows, which also lets it resolve an optional payment-delay
column or a due/paid date pair.

Results are cached in an injected ``TTLCache`` keyed by the full option set
and access scope; a cached scorecard can trail the database by up to the
cache TTL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Callable

from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.caching import TTLCache
from app.config import ReadPathSettings, get_read_path_settings
from app.mappers.field_resolver import FieldResolver
from app.mappers.values import parse_date, parse_number, to_text
from app.services.errors import AnalyticsComputationError
from app.services.etl_service import upload_day
from db.base import utcnow
from db.models.analytics import UNKNOWN_PARTNER
from db.repositories.aggregate_repository import AggregateRepository
from db.repositories.alert_repository import AlertRepository
from db.repositories.file_repository import FileRowRepository
from db.repositories.scope import ProjectScope, narrow_scope
from risk.ranking import (
    PartnerDraft,
    PartnerScorecardItem,
    ScorecardOptions,
    ScorecardSummary,
    build_month_keys,
    filter_items,
    score_partners,
    sort_items,
    summarize,
)

logger = logging.getLogger(__name__)

SOURCE_AGGREGATES = "aggregates"
SOURCE_ROW_SCAN = "row_scan"

_AGGREGATE_METRIC_KEYS = {
    "revenue": "revenue_sum",
    "usage": "usage_sum",
    "payment_delay": None,
    "payment_due_date": None,
    "payment_paid_date": None,
}


@dataclass(frozen=True)
class ScorecardResult:
    options: ScorecardOptions
    month_keys: list[str]
    metric_keys: dict[str, str | None]
    summary: ScorecardSummary
    partners: list[PartnerScorecardItem]
    total: int
    source: str
    row_limit: int


def _window(month_keys: list[str], today: date) -> tuple[date, date]:
    """``[first day of oldest month, first day of next month)``."""
    start = date.fromisoformat(f"{month_keys[0]}-01")
    if today.month == 12:
        end = date(today.year + 1, 1, 1)
    else:
        end = date(today.year, today.month + 1, 1)
    return start, end


def _scope_key(scope: ProjectScope) -> tuple[int, ...] | None:
    return None if scope is None else tuple(sorted({int(pid) for pid in scope}))


def payment_delay_days(
    row: dict[str, Any],
    *,
    delay_key: str | None,
    due_key: str | None,
    paid_key: str | None,
) -> float | None:
    """
    Explicit delay value when present, else ``paid - due`` in days floored
    at zero, else ``None``.
    """
    if delay_key:
        delay = parse_number(row.get(delay_key))
        if delay is not None:
            return delay
    if due_key and paid_key:
        due = parse_date(row.get(due_key))
        paid = parse_date(row.get(paid_key))
        if due is not None and paid is not None:
            return float(max(0, (paid - due).days))
    return None


class ScorecardService:
    """
    Parameters
    ----------
    session:
        Active SQLAlchemy session; this service only reads.
    cache:
        Optional TTL cache shared across requests.
    """

    def __init__(
        self,
        session: Session,
        *,
        aggregates: AggregateRepository | None = None,
        alerts: AlertRepository | None = None,
        row_store: FileRowRepository | None = None,
        cache: TTLCache | None = None,
        settings: ReadPathSettings | None = None,
        resolver: FieldResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._aggregates = aggregates or AggregateRepository(session)
        self._alerts = alerts or AlertRepository(session)
        self._row_store = row_store or FileRowRepository(session)
        self._cache = cache
        self._settings = settings or get_read_path_settings()
        self._resolver = resolver or FieldResolver()
        self._clock = clock

    def compute(self, options: ScorecardOptions, project_ids: ProjectScope = None) -> ScorecardResult:
        scope = narrow_scope(project_ids, options.project_id)
        month_keys = build_month_keys(options.months, self._clock().date())
        if self._cache is None:
            return self._compute(options, scope, month_keys)
        key = ("partner_scorecard", options, _scope_key(scope), month_keys[0])
        return self._cache.get_or_compute(key, lambda: self._compute(options, scope, month_keys))

    def _compute(
        self,
        options: ScorecardOptions,
        scope: ProjectScope,
        month_keys: list[str],
    ) -> ScorecardResult:
        start, end = _window(month_keys, self._clock().date())
        try:
            disputes = self._alerts.open_dispute_counts(
                datetime.combine(start, time.min, tzinfo=timezone.utc), scope
            )
            drafts = self._drafts_from_aggregates(start, end, scope)
            metric_keys = dict(_AGGREGATE_METRIC_KEYS)
            source = SOURCE_AGGREGATES
            if not drafts:
                drafts, metric_keys = self._drafts_from_rows(start, end, scope, month_keys)
                source = SOURCE_ROW_SCAN
        except SQLAlchemyError as exc:
            raise AnalyticsComputationError("Partner scorecard computation failed.") from exc

        for partner, count in disputes.items():
            draft = drafts.get(partner)
            if draft is None:
                draft = drafts[partner] = PartnerDraft(partner=partner)
            draft.dispute_count = count

        items = score_partners(drafts.values(), month_keys)
        ordered = sort_items(filter_items(items, options), options.sort_by, options.sort_dir)
        page = ordered[options.offset : options.offset + options.limit]
        return ScorecardResult(
            options=options,
            month_keys=month_keys,
            metric_keys=metric_keys,
            summary=summarize(ordered),
            partners=page,
            total=len(ordered),
            source=source,
            row_limit=self._settings.scorecard_row_limit,
        )

    def _drafts_from_aggregates(
        self,
        start: date,
        end: date,
        scope: ProjectScope,
    ) -> dict[str, PartnerDraft]:
        try:
            monthly = self._aggregates.partner_month_totals(start, end, scope)
            if not monthly:
                return {}
            files = self._aggregates.partner_file_counts(start, end, scope)
            quality = self._aggregates.partner_quality_scores(start, end, scope)
        except (ProgrammingError, OperationalError) as exc:
            logger.warning("Scorecard aggregates unavailable, scanning rows: %s", exc)
            self._session.rollback()
            return {}

        drafts: dict[str, PartnerDraft] = {}
        for row in monthly:
            draft = drafts.get(row.partner)
            if draft is None:
                draft = drafts[row.partner] = PartnerDraft(
                    partner=row.partner,
                    files=files.get(row.partner, 0),
                    quality_score=quality.get(row.partner),
                )
            draft.add_month(row.month, row.revenue, row.usage, row.rows)
        return drafts

    def _drafts_from_rows(
        self,
        start: date,
        end: date,
        scope: ProjectScope,
        month_keys: list[str],
    ) -> tuple[dict[str, PartnerDraft], dict[str, str | None]]:
        rows = list(
            self._row_store.iter_scoped_rows(
                scope,
                uploaded_since=datetime.combine(start, time.min, tzinfo=timezone.utc),
                limit=self._settings.scorecard_row_limit,
            )
        )
        fields = self._resolver.resolve([], [row.data for row in rows])
        quality_by_file = {
            q.file_id: q.score
            for q in self._row_store.list_quality_scores(scope)
            if q.score is not None
        }
        months = set(month_keys)

        drafts: dict[str, PartnerDraft] = {}
        file_sets: dict[str, set[int]] = {}
        quality_samples: dict[str, list[float]] = {}
        delay_samples: dict[str, list[float]] = {}

        for row in rows:
            data = row.data
            day = (parse_date(data.get(fields.date)) if fields.date else None) or upload_day(row.uploaded_at)
            if day < start or day >= end:
                continue
            month = f"{day.year:04d}-{day.month:02d}"
            if month not in months:
                continue

            partner = (to_text(data.get(fields.partner)) if fields.partner else "") or UNKNOWN_PARTNER
            draft = drafts.get(partner)
            if draft is None:
                draft = drafts[partner] = PartnerDraft(partner=partner)

            revenue = parse_number(data.get(fields.revenue)) if fields.revenue else None
            usage = parse_number(data.get(fields.usage)) if fields.usage else None
            draft.add_month(month, revenue or 0.0, usage or 0.0, 1)
            file_sets.setdefault(partner, set()).add(row.file_id)

            delay = payment_delay_days(
                data,
                delay_key=fields.payment_delay,
                due_key=fields.due_date,
                paid_key=fields.paid_date,
            )
            if delay is not None:
                delay_samples.setdefault(partner, []).append(delay)
            if row.file_id in quality_by_file:
                quality_samples.setdefault(partner, []).append(quality_by_file[row.file_id])

        for partner, draft in drafts.items():
            draft.files = len(file_sets.get(partner, ()))
            scores = quality_samples.get(partner)
            draft.quality_score = sum(scores) / len(scores) if scores else None
            delays = delay_samples.get(partner)
            draft.payment_delay_days = sum(delays) / len(delays) if delays else None

        metric_keys = {
            "revenue": fields.revenue,
            "usage": fields.usage,
            "payment_delay": fields.payment_delay,
            "payment_due_date": fields.due_date,
            "payment_paid_date": fields.paid_date,
        }
        return drafts, metric_keys

"""
app/services/etl_service.py

Analytics ETL: turn one uploaded file's rows into per-file metrics and a
replacement set of daily (partner, country) aggregates.

Flow per file
-------------
1. Load file metadata, ordered columns and a lazy row stream from the row store.
2. Resolve semantic fields on the first ``sample_rows`` rows.
3. Stream every row (sample first, then the rest) into day/partner/country
   buckets. Missing or unparseable cells are skipped, never counted as zero.
4. Replace the file's aggregates and upsert its metrics in one transaction.

Recomputing a file with unchanged rows yields identical aggregate rows; the
only field that changes between runs is ``FileMetrics.computed_at``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from itertools import chain, islice
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.config import ETLSettings, get_etl_settings
from app.logging_utils import log_event
from app.mappers.field_resolver import FieldResolver, ResolvedFields
from app.mappers.values import parse_date, parse_number, to_text
from db.base import utcnow
from db.models.analytics import UNKNOWN_COUNTRY, UNKNOWN_PARTNER
from db.repositories.aggregate_repository import AggregateRepository
from db.repositories.file_repository import FileMeta, FileRowRepository

logger = logging.getLogger(__name__)

MIN_BACKFILL_LIMIT = 1
MAX_BACKFILL_LIMIT = 20

_LABEL_MAX_LENGTH = 255
_SUM_PRECISION = 4

# Bucket measure -> ResolvedFields attribute feeding it.
_BUCKET_MEASURES = (
    ("traffic_sum", "traffic"),
    ("revenue_sum", "revenue"),
    ("cost_sum", "cost"),
    ("expected_sum", "expected"),
    ("actual_sum", "actual"),
    ("usage_sum", "usage"),
)


@dataclass(frozen=True)
class FileAggregation:
    """Result of aggregating one file, ready for persistence."""

    metrics: dict[str, Any]
    aggregates: list[dict[str, Any]]
    fields: ResolvedFields


@dataclass(frozen=True)
class FileRefreshResult:
    file_id: int
    total_rows: int
    bucket_count: int
    fields: ResolvedFields


@dataclass
class ETLRunSummary:
    refreshed: list[FileRefreshResult] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def refreshed_ids(self) -> list[int]:
        return [result.file_id for result in self.refreshed]


def normalize_file_ids(file_ids: Iterable[Any]) -> list[int]:
    """
    Positive integer ids, de-duplicated, in first-seen order.

    Non-numeric and non-positive entries are dropped.
    """
    seen: set[int] = set()
    ordered: list[int] = []
    for raw in file_ids:
        if isinstance(raw, bool):
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if value != value or value <= 0 or not value.is_integer():
            continue
        file_id = int(value)
        if file_id not in seen:
            seen.add(file_id)
            ordered.append(file_id)
    return ordered


def _label(value: Any, fallback: str) -> str:
    text = " ".join(to_text(value).split())
    return text[:_LABEL_MAX_LENGTH] if text else fallback


def upload_day(uploaded_at: datetime) -> date:
    if uploaded_at.tzinfo is not None:
        uploaded_at = uploaded_at.astimezone(timezone.utc)
    return uploaded_at.date()


def build_file_aggregates(
    meta: FileMeta,
    columns: Sequence[str],
    rows: Iterable[Mapping[str, Any]],
    *,
    resolver: FieldResolver | None = None,
    computed_at: datetime | None = None,
) -> FileAggregation:
    """
    Aggregate a file's rows into metrics and sorted daily buckets.

    ``rows`` is consumed exactly once; it may be a lazy iterator.
    """

    resolver = resolver or FieldResolver()
    stream = iter(rows)
    sample = list(islice(stream, resolver.sample_size))
    fields = resolver.resolve(columns, sample)

    fallback_day = upload_day(meta.uploaded_at)
    buckets: dict[tuple[date, str, str], dict[str, Any]] = {}
    partners: set[str] = set()
    total_rows = 0
    net_revenue_sum = 0.0
    usage_sum = 0.0

    for row in chain(sample, stream):
        if not isinstance(row, Mapping):
            continue
        total_rows += 1

        partner = _label(row.get(fields.partner) if fields.partner else None, UNKNOWN_PARTNER)
        country = _label(row.get(fields.country) if fields.country else None, UNKNOWN_COUNTRY)
        day = (parse_date(row.get(fields.date)) if fields.date else None) or fallback_day
        partners.add(partner)

        key = (day, partner, country)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = {
                "file_id": meta.file_id,
                "project_id": meta.project_id,
                "uploaded_at": meta.uploaded_at,
                "day": day,
                "partner": partner,
                "country": country,
                "rows_count": 0,
                **{measure: 0.0 for measure, _ in _BUCKET_MEASURES},
            }
            buckets[key] = bucket
        bucket["rows_count"] += 1

        for measure, attribute in _BUCKET_MEASURES:
            column = getattr(fields, attribute)
            if column is None:
                continue
            value = parse_number(row.get(column))
            if value is not None:
                bucket[measure] += value

        if fields.net_revenue is not None:
            net_revenue = parse_number(row.get(fields.net_revenue))
            if net_revenue is not None:
                net_revenue_sum += net_revenue
        if fields.usage is not None:
            usage = parse_number(row.get(fields.usage))
            if usage is not None:
                usage_sum += usage

    aggregates = []
    for key in sorted(buckets):
        bucket = buckets[key]
        for measure, _ in _BUCKET_MEASURES:
            bucket[measure] = round(bucket[measure], _SUM_PRECISION)
        aggregates.append(bucket)

    metrics = {
        "file_id": meta.file_id,
        "project_id": meta.project_id,
        "uploaded_at": meta.uploaded_at,
        "total_rows": total_rows,
        "net_revenue_sum": round(net_revenue_sum, _SUM_PRECISION),
        "usage_sum": round(usage_sum, _SUM_PRECISION),
        "partner_count": len(partners),
        "net_revenue_key": fields.net_revenue,
        "usage_key": fields.usage,
        "partner_key": fields.partner,
        "country_key": fields.country,
        "date_key": fields.date,
        "revenue_key": fields.revenue,
        "traffic_key": fields.traffic,
        "cost_key": fields.cost,
        "expected_key": fields.expected,
        "actual_key": fields.actual,
        "computed_at": computed_at or utcnow(),
    }
    return FileAggregation(metrics=metrics, aggregates=aggregates, fields=fields)


class AnalyticsETLService:
    """
    Recomputes file aggregates and owns the commit/rollback of each file.

    Parameters
    ----------
    session:
        Active SQLAlchemy session. Each file is committed on its own.
    row_store / aggregates:
        Repository overrides; default to the SQLAlchemy implementations.
    settings:
        ETL sizing knobs; defaults to :func:`get_etl_settings`.
    """

    def __init__(
        self,
        session: Session,
        *,
        row_store: FileRowRepository | None = None,
        aggregates: AggregateRepository | None = None,
        resolver: FieldResolver | None = None,
        settings: ETLSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings or get_etl_settings()
        self._row_store = row_store or FileRowRepository(session)
        self._aggregates = aggregates or AggregateRepository(session)
        self._resolver = resolver or FieldResolver(sample_size=self._settings.sample_rows)
        self._clock = clock

    def refresh_file(self, file_id: int) -> FileRefreshResult:
        """
        Recompute and persist one file.

        Raises whatever the row store or repository raised after rolling the
        session back; prior aggregates for the file stay intact.
        """
        try:
            meta = self._row_store.load_file_meta(file_id)
            columns = self._row_store.load_columns(file_id)
            aggregation = build_file_aggregates(
                meta,
                columns,
                self._row_store.iter_rows(file_id),
                resolver=self._resolver,
                computed_at=self._clock(),
            )
            self._aggregates.replace_file_aggregates(
                aggregation.metrics,
                aggregation.aggregates,
                chunk_size=self._settings.insert_chunk_size,
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        result = FileRefreshResult(
            file_id=file_id,
            total_rows=aggregation.metrics["total_rows"],
            bucket_count=len(aggregation.aggregates),
            fields=aggregation.fields,
        )
        log_event(
            logger,
            logging.INFO,
            "etl.file_refreshed",
            file_id=file_id,
            rows=result.total_rows,
            buckets=result.bucket_count,
            advisories=aggregation.fields.advisories(),
        )
        return result

    def refresh_files(self, file_ids: Iterable[Any]) -> ETLRunSummary:
        """
        Refresh each valid id in turn; one file's failure does not stop the rest.
        """
        summary = ETLRunSummary()
        for file_id in normalize_file_ids(file_ids):
            try:
                summary.refreshed.append(self.refresh_file(file_id))
            except Exception as exc:  # noqa: BLE001
                summary.failed.append(file_id)
                log_event(
                    logger,
                    logging.WARNING,
                    "etl.file_failed",
                    file_id=file_id,
                    error=str(exc),
                )
        return summary

    def refresh_stale(self, limit: int | None = None) -> ETLRunSummary:
        """
        Reprocess files whose metrics are missing or older than their upload.
        """
        bounded = self._settings.backfill_limit if limit is None else int(limit)
        bounded = max(MIN_BACKFILL_LIMIT, min(MAX_BACKFILL_LIMIT, bounded))
        file_ids = self._row_store.find_stale_file_ids(bounded)
        if not file_ids:
            return ETLRunSummary()
        logger.info("Analytics backfill picked %d stale file(s): %s", len(file_ids), file_ids)
        return self.refresh_files(file_ids)

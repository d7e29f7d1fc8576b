"""
app/services/insights_service.py

Dashboard insights read path: filtered daily series, short-horizon forecast,
anomaly markers, expected-vs-actual leakage and summary lines.

The daily series and leakage pairs come from the ETL aggregates. When the
aggregate tables cannot be queried, or hold nothing for the filter, the
service scans a bounded number of raw rows and resolves fields on the fly.
The assembled dataset is cached per filter set and scope; derivations on top
of it are cheap and recomputed per call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.caching import TTLCache
from app.config import ReadPathSettings, get_read_path_settings
from app.mappers.field_resolver import FieldResolver, ResolvedFields
from app.mappers.values import parse_date, parse_number, to_text
from app.services.errors import AnalyticsComputationError
from app.services.etl_service import upload_day
from db.base import utcnow
from db.models.analytics import UNKNOWN_COUNTRY, UNKNOWN_PARTNER
from db.repositories.aggregate_repository import AggregateFilter, AggregateRepository
from db.repositories.file_repository import FileRowRepository, ScopedRow
from db.repositories.scope import ProjectScope, narrow_scope
from forecast.insights import (
    DEFAULT_LEAKAGE_LIMIT,
    AnomalyPoint,
    DailyBucket,
    ForecastPoint,
    LeakageItem,
    LeakagePair,
    build_forecast,
    build_summaries,
    choose_forecast_metric,
    detect_series_anomalies,
    rank_leakage,
)
from forecast.regression import LinearTrendForecast

logger = logging.getLogger(__name__)

SOURCE_AGGREGATES = "aggregates"
SOURCE_ROW_SCAN = "row_scan"

MAX_LEAKAGE_LIMIT = 50

# Aggregate column standing in for each resolved concept on the aggregate path.
_AGGREGATE_FIELD_COLUMNS = {
    "net_revenue": ("net_revenue_key", "revenue_sum"),
    "usage": ("usage_key", "usage_sum"),
    "partner": ("partner_key", "partner"),
    "country": ("country_key", "country"),
    "date": ("date_key", "day"),
    "revenue": ("revenue_key", "revenue_sum"),
    "traffic": ("traffic_key", "traffic_sum"),
    "cost": ("cost_key", "cost_sum"),
    "expected": ("expected_key", "expected_sum"),
    "actual": ("actual_key", "actual_sum"),
}


def _clean(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


@dataclass(frozen=True)
class InsightFilters:
    partner: str | None = None
    country: str | None = None
    start: date | None = None
    end: date | None = None
    project_id: int | None = None

    @classmethod
    def build(
        cls,
        *,
        partner: str | None = None,
        country: str | None = None,
        start: date | None = None,
        end: date | None = None,
        project_id: int | None = None,
    ) -> InsightFilters:
        if start is not None and end is not None and start > end:
            start, end = end, start
        return cls(
            partner=_clean(partner),
            country=_clean(country),
            start=start,
            end=end,
            project_id=project_id,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "partner": self.partner,
            "country": self.country,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "project_id": self.project_id,
        }


@dataclass(frozen=True)
class InsightDataset:
    filters: InsightFilters
    start: date
    end: date
    series: list[DailyBucket]
    leakage_pairs: list[LeakagePair]
    partner_rows: dict[str, int]
    fields: ResolvedFields
    rows_scanned: int
    rows_matched: int
    source: str

    @property
    def metric_keys(self) -> dict[str, str | None]:
        return {
            "traffic_key": self.fields.traffic,
            "revenue_key": self.fields.revenue,
            "cost_key": self.fields.cost,
            "expected_key": self.fields.expected,
            "actual_key": self.fields.actual,
        }


@dataclass(frozen=True)
class ForecastResult:
    metric: str
    horizon_days: int
    points: list[ForecastPoint]


@dataclass(frozen=True)
class AnomalyResult:
    metric: str
    points: list[AnomalyPoint]


@dataclass(frozen=True)
class LeakageResult:
    expected_key: str | None
    actual_key: str | None
    items: list[LeakageItem]


@dataclass(frozen=True)
class InsightsReport:
    dataset: InsightDataset
    forecast: ForecastResult
    anomalies: AnomalyResult
    leakage: LeakageResult
    summaries: list[str]
    advisories: list[str] = field(default_factory=list)


def fields_from_key_flags(flags: dict[str, bool]) -> ResolvedFields:
    """Map per-file key flags onto the aggregate columns that carry them."""
    values = {
        attribute: column if flags.get(flag_key) else None
        for attribute, (flag_key, column) in _AGGREGATE_FIELD_COLUMNS.items()
    }
    return ResolvedFields(**values)


def _matches(value: str, wanted: str | None) -> bool:
    return wanted is None or wanted.casefold() in value.casefold()


def dataset_from_rows(
    rows: Iterable[ScopedRow],
    resolver: FieldResolver,
    *,
    filters: InsightFilters,
    start: date,
    end: date,
) -> tuple[list[DailyBucket], list[LeakagePair], dict[str, int], ResolvedFields, int, int]:
    """
    Daily buckets, leakage pairs and partner row counts from raw rows.

    Returns ``(series, pairs, partner_rows, fields, scanned, matched)``.
    """
    entries = list(rows)
    fields = resolver.resolve([], [entry.data for entry in entries])

    buckets: dict[date, DailyBucket] = {}
    pairs: dict[tuple[str, str], list[float]] = {}
    partner_rows: dict[str, int] = {}
    matched = 0

    for entry in entries:
        data = entry.data
        partner = (to_text(data.get(fields.partner)) if fields.partner else "") or UNKNOWN_PARTNER
        country = (to_text(data.get(fields.country)) if fields.country else "") or UNKNOWN_COUNTRY
        if not _matches(partner, filters.partner) or not _matches(country, filters.country):
            continue
        day = (parse_date(data.get(fields.date)) if fields.date else None) or upload_day(entry.uploaded_at)
        if day < start or day > end:
            continue

        matched += 1
        partner_rows[partner] = partner_rows.get(partner, 0) + 1
        bucket = buckets.get(day)
        if bucket is None:
            bucket = buckets[day] = DailyBucket(day=day)
        bucket.rows += 1
        for attribute in ("traffic", "revenue", "cost", "expected", "actual"):
            column = getattr(fields, attribute)
            if not column:
                continue
            number = parse_number(data.get(column))
            if number is not None:
                setattr(bucket, attribute, getattr(bucket, attribute) + number)

        if fields.has_leakage_pair:
            expected = parse_number(data.get(fields.expected)) or 0.0
            actual = parse_number(data.get(fields.actual)) or 0.0
            totals = pairs.setdefault((partner, country), [0.0, 0.0])
            totals[0] += expected
            totals[1] += actual

    series = [buckets[day] for day in sorted(buckets)]
    leakage_pairs = [
        LeakagePair(partner=partner, country=country, expected=expected, actual=actual)
        for (partner, country), (expected, actual) in pairs.items()
    ]
    return series, leakage_pairs, partner_rows, fields, len(entries), matched


class InsightsService:
    """
    Parameters
    ----------
    session:
        Active SQLAlchemy session; this service only reads.
    cache:
        Optional TTL cache shared across requests. Entries may trail the
        database by up to its TTL.
    """

    def __init__(
        self,
        session: Session,
        *,
        aggregates: AggregateRepository | None = None,
        row_store: FileRowRepository | None = None,
        cache: TTLCache | None = None,
        settings: ReadPathSettings | None = None,
        resolver: FieldResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._aggregates = aggregates or AggregateRepository(session)
        self._row_store = row_store or FileRowRepository(session)
        self._cache = cache
        self._settings = settings or get_read_path_settings()
        self._resolver = resolver or FieldResolver()
        self._clock = clock

    # ------------------------------------------------------------------
    # Public read paths
    # ------------------------------------------------------------------

    def daily_series(self, filters: InsightFilters, project_ids: ProjectScope = None) -> InsightDataset:
        scope = narrow_scope(project_ids, filters.project_id)
        today = self._clock().date()
        start = filters.start or today - timedelta(days=self._settings.insights_window_days)
        end = filters.end or today
        if self._cache is None:
            return self._load(filters, scope, start, end)
        scope_key = None if scope is None else tuple(sorted({int(pid) for pid in scope}))
        key = ("insights_dataset", filters, scope_key, start, end)
        return self._cache.get_or_compute(key, lambda: self._load(filters, scope, start, end))

    def forecast(
        self,
        filters: InsightFilters,
        project_ids: ProjectScope = None,
        *,
        horizon: int | None = None,
    ) -> ForecastResult:
        return self._forecast(self.daily_series(filters, project_ids), horizon)

    def anomalies(self, filters: InsightFilters, project_ids: ProjectScope = None) -> AnomalyResult:
        return self._anomalies(self.daily_series(filters, project_ids))

    def leakage(
        self,
        filters: InsightFilters,
        project_ids: ProjectScope = None,
        *,
        limit: int = DEFAULT_LEAKAGE_LIMIT,
    ) -> LeakageResult:
        return self._leakage(self.daily_series(filters, project_ids), limit)

    def insights(self, filters: InsightFilters, project_ids: ProjectScope = None) -> InsightsReport:
        dataset = self.daily_series(filters, project_ids)
        forecast = self._forecast(dataset, None)
        anomalies = self._anomalies(dataset)
        leakage = self._leakage(dataset, DEFAULT_LEAKAGE_LIMIT)
        summaries = build_summaries(
            rows_scanned=dataset.rows_scanned,
            rows_matched=dataset.rows_matched,
            partner_rows=dataset.partner_rows,
            series=dataset.series,
            metric=forecast.metric,
            forecast=forecast.points,
            anomalies=anomalies.points,
            leakage=leakage.items,
            has_leakage_pair=dataset.fields.has_leakage_pair,
        )
        return InsightsReport(
            dataset=dataset,
            forecast=forecast,
            anomalies=anomalies,
            leakage=leakage,
            summaries=summaries,
            advisories=dataset.fields.advisories(),
        )

    # ------------------------------------------------------------------
    # Derivations
    # ------------------------------------------------------------------

    def _forecast(self, dataset: InsightDataset, horizon: int | None) -> ForecastResult:
        requested = self._settings.forecast_horizon_days if horizon is None else horizon
        bounded = max(1, min(LinearTrendForecast.MAX_HORIZON, int(requested)))
        metric = choose_forecast_metric(dataset.series)
        return ForecastResult(
            metric=metric,
            horizon_days=bounded,
            points=build_forecast(dataset.series, metric, bounded),
        )

    def _anomalies(self, dataset: InsightDataset) -> AnomalyResult:
        metric = choose_forecast_metric(dataset.series)
        return AnomalyResult(metric=metric, points=detect_series_anomalies(dataset.series, metric))

    def _leakage(self, dataset: InsightDataset, limit: int) -> LeakageResult:
        fields = dataset.fields
        items = []
        if fields.has_leakage_pair:
            bounded = max(1, min(MAX_LEAKAGE_LIMIT, int(limit)))
            items = rank_leakage(dataset.leakage_pairs, limit=bounded)
        return LeakageResult(expected_key=fields.expected, actual_key=fields.actual, items=items)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(
        self,
        filters: InsightFilters,
        scope: ProjectScope,
        start: date,
        end: date,
    ) -> InsightDataset:
        try:
            dataset = self._load_from_aggregates(filters, scope, start, end)
            if dataset is None:
                dataset = self._load_from_rows(filters, scope, start, end)
        except SQLAlchemyError as exc:
            raise AnalyticsComputationError("Insights computation failed.") from exc
        logger.debug(
            "Insights dataset source=%s days=%d matched=%d",
            dataset.source,
            len(dataset.series),
            dataset.rows_matched,
        )
        return dataset

    def _load_from_aggregates(
        self,
        filters: InsightFilters,
        scope: ProjectScope,
        start: date,
        end: date,
    ) -> InsightDataset | None:
        agg_filter = AggregateFilter(
            project_ids=scope,
            partner=filters.partner,
            country=filters.country,
            since=start,
            until=end,
        )
        try:
            days = self._aggregates.daily_totals(agg_filter)
            if not days:
                return None
            fields = fields_from_key_flags(self._aggregates.resolved_key_flags(agg_filter))
            pairs = [
                LeakagePair(
                    partner=item.partner,
                    country=item.country,
                    expected=item.expected,
                    actual=item.actual,
                )
                for item in self._aggregates.leakage_totals(agg_filter)
            ]
            partner_rows = self._aggregates.partner_row_counts(agg_filter)
        except (ProgrammingError, OperationalError) as exc:
            logger.warning("Insights aggregates unavailable, scanning rows: %s", exc)
            self._session.rollback()
            return None

        series = [
            DailyBucket(
                day=item.day,
                rows=item.rows,
                traffic=item.traffic,
                revenue=item.revenue,
                cost=item.cost,
                expected=item.expected,
                actual=item.actual,
            )
            for item in days
        ]
        total_rows = sum(item.rows for item in series)
        return InsightDataset(
            filters=filters,
            start=start,
            end=end,
            series=series,
            leakage_pairs=pairs,
            partner_rows=partner_rows,
            fields=fields,
            rows_scanned=total_rows,
            rows_matched=total_rows,
            source=SOURCE_AGGREGATES,
        )

    def _load_from_rows(
        self,
        filters: InsightFilters,
        scope: ProjectScope,
        start: date,
        end: date,
    ) -> InsightDataset:
        rows = self._row_store.iter_scoped_rows(scope, limit=self._settings.insights_row_limit)
        series, pairs, partner_rows, fields, scanned, matched = dataset_from_rows(
            rows,
            self._resolver,
            filters=filters,
            start=start,
            end=end,
        )
        return InsightDataset(
            filters=filters,
            start=start,
            end=end,
            series=series,
            leakage_pairs=pairs,
            partner_rows=partner_rows,
            fields=fields,
            rows_scanned=scanned,
            rows_matched=matched,
            source=SOURCE_ROW_SCAN,
        )

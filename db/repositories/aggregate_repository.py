"""
db/repositories/aggregate_repository.py

Persistence and read queries for ETL aggregates.

Writes replace a file's aggregate set atomically: delete, bulk insert in
chunks, then upsert the file's metrics row, all inside one transaction (or a
savepoint when the caller already holds one). The caller controls the outer
commit; this repository never commits on its own.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import delete, distinct, func, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.analytics import DailyPartnerAggregate, FileMetrics
from db.models.quality import DataQualityScore
from db.models.source_file import Project
from db.repositories.errors import AggregatePersistenceError
from db.repositories.scope import ProjectScope, scope_condition

_DEFAULT_CHUNK_SIZE = 400

_METRIC_KEY_COLUMNS = (
    "net_revenue_key",
    "usage_key",
    "partner_key",
    "country_key",
    "date_key",
    "revenue_key",
    "traffic_key",
    "cost_key",
    "expected_key",
    "actual_key",
)


@dataclass(frozen=True)
class AggregateFilter:
    """Row filter for dashboard reads; ``until`` is inclusive."""

    project_ids: ProjectScope = None
    partner: str | None = None
    country: str | None = None
    since: date | None = None
    until: date | None = None


@dataclass(frozen=True)
class PartnerDayRow:
    project_id: int
    project_name: str | None
    partner: str
    day: date
    rows: int
    revenue: float
    traffic: float


@dataclass(frozen=True)
class DayTotals:
    day: date
    rows: int
    traffic: float
    revenue: float
    cost: float
    expected: float
    actual: float


@dataclass(frozen=True)
class LeakageTotals:
    partner: str
    country: str
    expected: float
    actual: float


@dataclass(frozen=True)
class PartnerMonthRow:
    partner: str
    month: str
    revenue: float
    usage: float
    rows: int


class AggregateRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def replace_file_aggregates(
        self,
        metrics: dict[str, Any],
        aggregates: Sequence[dict[str, Any]],
        *,
        chunk_size: int = _DEFAULT_CHUNK_SIZE,
    ) -> int:
        """
        Replace every aggregate row of ``metrics["file_id"]`` and upsert its
        metrics row.

        Returns
        -------
        int
            Number of aggregate rows inserted.

        Raises
        ------
        AggregatePersistenceError
            On any database failure; nothing from this call is left behind.
        """
        file_id = metrics["file_id"]
        size = max(1, chunk_size)

        try:
            with self._transaction_context():
                self._session.execute(
                    delete(DailyPartnerAggregate).where(DailyPartnerAggregate.file_id == file_id)
                )
                for start in range(0, len(aggregates), size):
                    self._session.execute(
                        insert(DailyPartnerAggregate),
                        list(aggregates[start : start + size]),
                    )

                stmt = pg_insert(FileMetrics).values(**metrics)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[FileMetrics.file_id],
                    set_={
                        column: stmt.excluded[column]
                        for column in metrics
                        if column != "file_id"
                    },
                )
                self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise AggregatePersistenceError(
                f"Failed to replace aggregates for file {file_id}: {exc}"
            ) from exc

        return len(aggregates)

    # ------------------------------------------------------------------
    # Read: detection
    # ------------------------------------------------------------------

    def partner_day_points(self, since: date, project_ids: ProjectScope = None) -> list[PartnerDayRow]:
        """
        Daily totals per (project, partner) from ``since`` onward, oldest first.
        """

        agg = DailyPartnerAggregate
        stmt = (
            select(
                agg.project_id,
                Project.name,
                agg.partner,
                agg.day,
                func.sum(agg.rows_count),
                func.sum(agg.revenue_sum),
                func.sum(agg.traffic_sum),
            )
            .join(Project, Project.id == agg.project_id, isouter=True)
            .where(agg.day >= since)
            .group_by(agg.project_id, Project.name, agg.partner, agg.day)
            .order_by(agg.project_id, agg.partner, agg.day)
        )
        condition = scope_condition(agg.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)

        return [
            PartnerDayRow(
                project_id=project_id,
                project_name=project_name,
                partner=partner,
                day=day,
                rows=int(rows or 0),
                revenue=float(revenue or 0.0),
                traffic=float(traffic or 0.0),
            )
            for project_id, project_name, partner, day, rows, revenue, traffic in self._session.execute(stmt)
        ]

    def partner_metric_availability(
        self,
        since: date,
        project_ids: ProjectScope = None,
    ) -> dict[tuple[int, str], tuple[bool, bool]]:
        """
        ``(has_revenue, has_traffic)`` per (project, partner): true when any
        contributing file resolved that metric.
        """

        agg = DailyPartnerAggregate
        stmt = (
            select(
                agg.project_id,
                agg.partner,
                func.bool_or(FileMetrics.revenue_key.is_not(None)),
                func.bool_or(FileMetrics.traffic_key.is_not(None)),
            )
            .join(FileMetrics, FileMetrics.file_id == agg.file_id)
            .where(agg.day >= since)
            .group_by(agg.project_id, agg.partner)
        )
        condition = scope_condition(agg.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)

        return {
            (project_id, partner): (bool(has_revenue), bool(has_traffic))
            for project_id, partner, has_revenue, has_traffic in self._session.execute(stmt)
        }

    # ------------------------------------------------------------------
    # Read: insights
    # ------------------------------------------------------------------

    def daily_totals(self, filters: AggregateFilter) -> list[DayTotals]:
        agg = DailyPartnerAggregate
        stmt = (
            select(
                agg.day,
                func.sum(agg.rows_count),
                func.sum(agg.traffic_sum),
                func.sum(agg.revenue_sum),
                func.sum(agg.cost_sum),
                func.sum(agg.expected_sum),
                func.sum(agg.actual_sum),
            )
            .group_by(agg.day)
            .order_by(agg.day)
        )
        stmt = self._apply_filter(stmt, filters)
        return [
            DayTotals(
                day=day,
                rows=int(rows or 0),
                traffic=float(traffic or 0.0),
                revenue=float(revenue or 0.0),
                cost=float(cost or 0.0),
                expected=float(expected or 0.0),
                actual=float(actual or 0.0),
            )
            for day, rows, traffic, revenue, cost, expected, actual in self._session.execute(stmt)
        ]

    def leakage_totals(self, filters: AggregateFilter) -> list[LeakageTotals]:
        agg = DailyPartnerAggregate
        stmt = (
            select(
                agg.partner,
                agg.country,
                func.sum(agg.expected_sum),
                func.sum(agg.actual_sum),
            )
            .group_by(agg.partner, agg.country)
        )
        stmt = self._apply_filter(stmt, filters)
        return [
            LeakageTotals(
                partner=partner,
                country=country,
                expected=float(expected or 0.0),
                actual=float(actual or 0.0),
            )
            for partner, country, expected, actual in self._session.execute(stmt)
        ]

    def partner_row_counts(self, filters: AggregateFilter) -> dict[str, int]:
        agg = DailyPartnerAggregate
        stmt = select(agg.partner, func.sum(agg.rows_count)).group_by(agg.partner)
        stmt = self._apply_filter(stmt, filters)
        return {partner: int(rows or 0) for partner, rows in self._session.execute(stmt)}

    def resolved_key_flags(self, filters: AggregateFilter) -> dict[str, bool]:
        """
        For each metric key column, whether any file in the filtered window resolved it.
        """

        agg = DailyPartnerAggregate
        file_ids = self._apply_filter(select(distinct(agg.file_id)), filters).scalar_subquery()
        stmt = select(
            *[
                func.coalesce(func.bool_or(getattr(FileMetrics, column).is_not(None)), False)
                for column in _METRIC_KEY_COLUMNS
            ]
        ).where(FileMetrics.file_id.in_(file_ids))
        row = self._session.execute(stmt).one()
        return {column: bool(flag) for column, flag in zip(_METRIC_KEY_COLUMNS, row)}

    # ------------------------------------------------------------------
    # Read: scorecard
    # ------------------------------------------------------------------

    def partner_month_totals(
        self,
        start: date,
        end_exclusive: date,
        project_ids: ProjectScope = None,
    ) -> list[PartnerMonthRow]:
        agg = DailyPartnerAggregate
        month = func.to_char(agg.day, "YYYY-MM")
        stmt = (
            select(
                agg.partner,
                month,
                func.sum(agg.revenue_sum),
                func.sum(agg.usage_sum),
                func.sum(agg.rows_count),
            )
            .where(agg.day >= start, agg.day < end_exclusive)
            .group_by(agg.partner, month)
        )
        condition = scope_condition(agg.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)

        return [
            PartnerMonthRow(
                partner=partner,
                month=month_key,
                revenue=float(revenue or 0.0),
                usage=float(usage or 0.0),
                rows=int(rows or 0),
            )
            for partner, month_key, revenue, usage, rows in self._session.execute(stmt)
        ]

    def partner_file_counts(
        self,
        start: date,
        end_exclusive: date,
        project_ids: ProjectScope = None,
    ) -> dict[str, int]:
        agg = DailyPartnerAggregate
        stmt = (
            select(agg.partner, func.count(distinct(agg.file_id)))
            .where(agg.day >= start, agg.day < end_exclusive)
            .group_by(agg.partner)
        )
        condition = scope_condition(agg.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        return {partner: int(files or 0) for partner, files in self._session.execute(stmt)}

    def partner_quality_scores(
        self,
        start: date,
        end_exclusive: date,
        project_ids: ProjectScope = None,
    ) -> dict[str, float]:
        """
        Average file quality score per partner over distinct (partner, file) pairs.
        """

        agg = DailyPartnerAggregate
        pairs = (
            select(agg.partner.label("partner"), agg.file_id.label("file_id"))
            .where(agg.day >= start, agg.day < end_exclusive)
            .distinct()
        )
        condition = scope_condition(agg.project_id, project_ids)
        if condition is not None:
            pairs = pairs.where(condition)
        pairs_sq = pairs.subquery()

        stmt = (
            select(pairs_sq.c.partner, func.avg(DataQualityScore.score))
            .join(DataQualityScore, DataQualityScore.file_id == pairs_sq.c.file_id)
            .where(DataQualityScore.score.is_not(None))
            .group_by(pairs_sq.c.partner)
        )
        return {
            partner: float(score)
            for partner, score in self._session.execute(stmt)
            if score is not None
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply_filter(self, stmt: Any, filters: AggregateFilter) -> Any:
        agg = DailyPartnerAggregate
        condition = scope_condition(agg.project_id, filters.project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        # Case-insensitive substring, same as the raw-row scan.
        if filters.partner:
            stmt = stmt.where(func.lower(agg.partner).contains(filters.partner.lower(), autoescape=True))
        if filters.country:
            stmt = stmt.where(func.lower(agg.country).contains(filters.country.lower(), autoescape=True))
        if filters.since is not None:
            stmt = stmt.where(agg.day >= filters.since)
        if filters.until is not None:
            stmt = stmt.where(agg.day <= filters.until)
        return stmt

    def _transaction_context(self) -> Any:
        if self._session.in_transaction():
            return self._session.begin_nested()
        return self._session.begin()

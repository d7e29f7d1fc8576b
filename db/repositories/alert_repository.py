"""
db/repositories/alert_repository.py

Persistence for the alert ledger.

Inserts go through ``INSERT ... ON CONFLICT (fingerprint) DO NOTHING`` so two
detections racing on the same condition cannot both create a row; the loser
gets ``None`` back and falls through to the update path. The caller controls
commit/rollback.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import case, distinct, func, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from db.models.alert import SEVERITY_RANK, STATUS_RESOLVED, Alert
from db.repositories.scope import ProjectScope, scope_condition


@dataclass(frozen=True)
class AlertFilters:
    """
    Alert list filters, already normalised; ``None`` fields do not filter.
    """

    status: str | None = None
    severity: str | None = None
    project_id: int | None = None
    partner: str | None = None
    alert_type: str | None = None
    query: str | None = None
    project_ids: ProjectScope = None
    limit: int = 100
    offset: int = 0


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class AlertRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def insert_if_absent(self, values: dict[str, Any]) -> Alert | None:
        """
        Insert a new alert unless its fingerprint already exists.

        Returns the new ORM instance, or ``None`` when another writer holds
        the fingerprint.
        """
        stmt = (
            insert(Alert)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[Alert.fingerprint])
            .returning(Alert.id)
        )
        alert_id = self._session.execute(stmt).scalar_one_or_none()
        if alert_id is None:
            return None
        return self._session.get(Alert, alert_id)

    def flush(self) -> None:
        self._session.flush()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, alert_id: int) -> Alert | None:
        return self._session.get(Alert, alert_id)

    def get_by_fingerprint(self, fingerprint: str, *, for_update: bool = False) -> Alert | None:
        stmt = select(Alert).where(Alert.fingerprint == fingerprint)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.scalars(stmt).first()

    def list_alerts(self, filters: AlertFilters) -> tuple[list[Alert], int]:
        """
        Page of alerts ordered by severity rank then recency, plus the total
        matching count.
        """
        conditions = self._conditions(filters)

        count_stmt = select(func.count()).select_from(Alert)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
        total = int(self._session.execute(count_stmt).scalar_one())

        severity_rank = case(
            *[(Alert.severity == severity, rank) for severity, rank in SEVERITY_RANK.items()],
            else_=0,
        )
        stmt = (
            select(Alert)
            .order_by(severity_rank.desc(), Alert.last_detected_at.desc(), Alert.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        if conditions:
            stmt = stmt.where(*conditions)
        return list(self._session.scalars(stmt).all()), total

    def count_by_status_severity(self, project_ids: ProjectScope = None) -> list[tuple[str, str, int]]:
        stmt = select(Alert.status, Alert.severity, func.count()).group_by(Alert.status, Alert.severity)
        condition = scope_condition(Alert.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        return [(status, severity, int(total)) for status, severity, total in self._session.execute(stmt)]

    def distinct_projects(self, project_ids: ProjectScope = None) -> list[tuple[int, str | None]]:
        stmt = (
            select(Alert.project_id, func.max(Alert.project_name))
            .where(Alert.project_id.is_not(None))
            .group_by(Alert.project_id)
            .order_by(Alert.project_id)
        )
        condition = scope_condition(Alert.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        return [(project_id, name) for project_id, name in self._session.execute(stmt)]

    def distinct_partners(self, project_ids: ProjectScope = None) -> list[str]:
        stmt = (
            select(distinct(Alert.partner))
            .where(Alert.partner.is_not(None), func.trim(Alert.partner) != "")
            .order_by(Alert.partner)
        )
        condition = scope_condition(Alert.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        return list(self._session.scalars(stmt).all())

    def distinct_alert_types(self, project_ids: ProjectScope = None) -> list[str]:
        stmt = select(distinct(Alert.alert_type)).order_by(Alert.alert_type)
        condition = scope_condition(Alert.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        return list(self._session.scalars(stmt).all())

    def open_dispute_counts(self, since: datetime, project_ids: ProjectScope = None) -> dict[str, int]:
        """
        Non-resolved alerts per partner last detected on or after ``since``.
        """
        stmt = (
            select(Alert.partner, func.count())
            .where(
                Alert.partner.is_not(None),
                func.trim(Alert.partner) != "",
                Alert.status != STATUS_RESOLVED,
                Alert.last_detected_at >= since,
            )
            .group_by(Alert.partner)
        )
        condition = scope_condition(Alert.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        return {partner: int(total) for partner, total in self._session.execute(stmt)}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _conditions(self, filters: AlertFilters) -> list[Any]:
        conditions: list[Any] = []
        scope = scope_condition(Alert.project_id, filters.project_ids)
        if scope is not None:
            conditions.append(scope)
        if filters.status:
            conditions.append(Alert.status == filters.status)
        if filters.severity:
            conditions.append(Alert.severity == filters.severity)
        if filters.project_id is not None:
            conditions.append(Alert.project_id == filters.project_id)
        if filters.partner:
            conditions.append(Alert.partner.ilike(_like_pattern(filters.partner), escape="\\"))
        if filters.alert_type:
            conditions.append(Alert.alert_type == filters.alert_type)
        if filters.query:
            pattern = _like_pattern(filters.query)
            conditions.append(
                or_(
                    Alert.title.ilike(pattern, escape="\\"),
                    Alert.message.ilike(pattern, escape="\\"),
                    Alert.partner.ilike(pattern, escape="\\"),
                    Alert.project_name.ilike(pattern, escape="\\"),
                )
            )
        return conditions

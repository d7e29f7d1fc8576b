"""
Project access scoping shared by every read query.

``None`` means unrestricted; an empty collection means the caller may see
nothing, which must produce an empty result rather than an unfiltered one.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Any

from sqlalchemy import false
from sqlalchemy.sql import ColumnElement

ProjectScope = Collection[int] | None


def scope_condition(column: Any, project_ids: ProjectScope) -> ColumnElement[bool] | None:
    if project_ids is None:
        return None
    ids = sorted({int(pid) for pid in project_ids})
    if not ids:
        return false()
    return column.in_(ids)


def narrow_scope(project_ids: ProjectScope, project_id: int | None) -> ProjectScope:
    """
    Intersect an access scope with an explicit project filter.
    """

    if project_id is None:
        return project_ids
    if project_ids is None or project_id in set(project_ids):
        return [project_id]
    return []

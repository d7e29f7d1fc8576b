"""
db/repositories/file_repository.py

Read access to uploaded files and their decoded rows.

Rows are streamed with ``yield_per`` so a large file never has to be
materialised in memory at once. This repository never writes.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from db.models.analytics import FileMetrics
from db.models.quality import DataQualityScore
from db.models.source_file import FileColumn, FileRow, Project, SourceFile
from db.repositories.errors import SourceFileNotFoundError
from db.repositories.scope import ProjectScope, scope_condition

_DEFAULT_FETCH_SIZE = 1000


@dataclass(frozen=True)
class FileMeta:
    file_id: int
    project_id: int
    project_name: str | None
    name: str
    uploaded_at: datetime


@dataclass(frozen=True)
class ScopedRow:
    """A decoded row together with the file context a cross-file scan needs."""

    file_id: int
    project_id: int
    project_name: str | None
    uploaded_at: datetime
    data: dict[str, Any]


@dataclass(frozen=True)
class QualityRow:
    file_id: int
    file_name: str
    project_id: int
    project_name: str | None
    score: float | None
    trust_level: str | None
    invalid_rate: float | None
    schema_inconsistency_rate: float | None


class FileRowRepository:
    """
    Row-store adapter: file metadata, ordered columns and a lazy row stream.
    """

    def __init__(self, session: Session, *, fetch_size: int = _DEFAULT_FETCH_SIZE) -> None:
        self._session = session
        self._fetch_size = max(1, fetch_size)

    def load_file_meta(self, file_id: int) -> FileMeta:
        stmt = (
            select(SourceFile, Project.name)
            .join(Project, Project.id == SourceFile.project_id, isouter=True)
            .where(SourceFile.id == file_id)
        )
        row = self._session.execute(stmt).first()
        if row is None:
            raise SourceFileNotFoundError(file_id)
        source, project_name = row
        return FileMeta(
            file_id=source.id,
            project_id=source.project_id,
            project_name=project_name,
            name=source.name,
            uploaded_at=source.uploaded_at,
        )

    def load_columns(self, file_id: int) -> list[str]:
        stmt = (
            select(FileColumn.name)
            .where(FileColumn.file_id == file_id)
            .order_by(FileColumn.position)
        )
        return list(self._session.scalars(stmt).all())

    def iter_rows(self, file_id: int) -> Iterator[dict[str, Any]]:
        stmt = (
            select(FileRow.data)
            .where(FileRow.file_id == file_id)
            .order_by(FileRow.row_index)
            .execution_options(yield_per=self._fetch_size)
        )
        for data in self._session.scalars(stmt):
            if isinstance(data, dict):
                yield data

    def find_stale_file_ids(self, limit: int) -> list[int]:
        """
        Files whose metrics are missing or older than the upload, newest first.
        """

        stmt = (
            select(SourceFile.id)
            .join(FileMetrics, FileMetrics.file_id == SourceFile.id, isouter=True)
            .where(
                or_(
                    FileMetrics.file_id.is_(None),
                    FileMetrics.computed_at < SourceFile.uploaded_at,
                )
            )
            .order_by(SourceFile.uploaded_at.desc(), SourceFile.id.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def iter_scoped_rows(
        self,
        project_ids: ProjectScope,
        *,
        uploaded_since: datetime | None = None,
        limit: int,
    ) -> Iterator[ScopedRow]:
        """
        Newest-first raw rows across files, for the row-scan fallback paths.
        """

        stmt = (
            select(
                FileRow.file_id,
                SourceFile.project_id,
                Project.name,
                SourceFile.uploaded_at,
                FileRow.data,
            )
            .join(SourceFile, SourceFile.id == FileRow.file_id)
            .join(Project, Project.id == SourceFile.project_id, isouter=True)
            .order_by(SourceFile.uploaded_at.desc(), FileRow.file_id.desc(), FileRow.row_index)
            .limit(max(1, limit))
            .execution_options(yield_per=self._fetch_size)
        )
        condition = scope_condition(SourceFile.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)
        if uploaded_since is not None:
            stmt = stmt.where(SourceFile.uploaded_at >= uploaded_since)

        for file_id, project_id, project_name, uploaded_at, data in self._session.execute(stmt):
            if isinstance(data, dict):
                yield ScopedRow(
                    file_id=file_id,
                    project_id=project_id,
                    project_name=project_name,
                    uploaded_at=uploaded_at,
                    data=data,
                )

    def list_quality_scores(self, project_ids: ProjectScope = None) -> list[QualityRow]:
        stmt = (
            select(
                DataQualityScore,
                SourceFile.name,
                SourceFile.project_id,
                Project.name,
            )
            .join(SourceFile, SourceFile.id == DataQualityScore.file_id)
            .join(Project, Project.id == SourceFile.project_id, isouter=True)
            .order_by(DataQualityScore.file_id)
        )
        condition = scope_condition(SourceFile.project_id, project_ids)
        if condition is not None:
            stmt = stmt.where(condition)

        return [
            QualityRow(
                file_id=quality.file_id,
                file_name=file_name,
                project_id=project_id,
                project_name=project_name,
                score=quality.score,
                trust_level=quality.trust_level,
                invalid_rate=quality.invalid_rate,
                schema_inconsistency_rate=quality.schema_inconsistency_rate,
            )
            for quality, file_name, project_id, project_name in self._session.execute(stmt)
        ]

"""
Repository-layer exceptions for analytics and alert persistence.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """Base exception for repository failures."""


class SourceFileNotFoundError(RepositoryError, LookupError):
    """Raised when a referenced file does not exist in the row store."""

    def __init__(self, file_id: int) -> None:
        super().__init__(f"File {file_id} not found.")
        self.file_id = file_id


class AggregatePersistenceError(RepositoryError):
    """Raised when replacing a file's aggregates fails; the write is rolled back."""


class AlertPersistenceError(RepositoryError):
    """Raised when an alert row cannot be inserted or re-read."""

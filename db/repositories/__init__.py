"""
Repository layer exports.
"""

from db.repositories.aggregate_repository import (
    AggregateFilter,
    AggregateRepository,
    DayTotals,
    LeakageTotals,
    PartnerDayRow,
    PartnerMonthRow,
)
from db.repositories.alert_repository import AlertFilters, AlertRepository
from db.repositories.errors import (
    AggregatePersistenceError,
    AlertPersistenceError,
    RepositoryError,
    SourceFileNotFoundError,
)
from db.repositories.file_repository import FileMeta, FileRowRepository, QualityRow, ScopedRow
from db.repositories.notification_repository import NotificationRepository
from db.repositories.scope import ProjectScope, narrow_scope, scope_condition

__all__ = [
    "AggregateFilter",
    "AggregatePersistenceError",
    "AggregateRepository",
    "AlertFilters",
    "AlertPersistenceError",
    "AlertRepository",
    "DayTotals",
    "FileMeta",
    "FileRowRepository",
    "LeakageTotals",
    "NotificationRepository",
    "PartnerDayRow",
    "PartnerMonthRow",
    "ProjectScope",
    "QualityRow",
    "RepositoryError",
    "ScopedRow",
    "SourceFileNotFoundError",
    "narrow_scope",
    "scope_condition",
]

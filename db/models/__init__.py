"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.alert import Alert
from db.models.analytics import DailyPartnerAggregate, FileMetrics
from db.models.notification import Notification
from db.models.quality import DataQualityScore
from db.models.source_file import FileColumn, FileRow, Project, SourceFile

__all__ = [
    "Alert",
    "DailyPartnerAggregate",
    "DataQualityScore",
    "FileColumn",
    "FileMetrics",
    "FileRow",
    "Notification",
    "Project",
    "SourceFile",
]

"""
db/models/analytics.py

Aggregates written by the analytics ETL.

``FileMetrics`` is 1:1 with a file and is upserted on every recompute.
``DailyPartnerAggregate`` rows are replaced wholesale for a file inside the
same transaction, so readers see either the previous set or the new one.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base

UNKNOWN_PARTNER = "Unknown Partner"
UNKNOWN_COUNTRY = "Unknown Country"

# Sums are stored as NUMERIC but surfaced as floats; detection math is float-based.
_SUM = Numeric(20, 4, asdecimal=False)


class FileMetrics(Base):
    """
    Per-file totals plus the column each concept was resolved to.

    A ``None`` key means the concept was not detected in that file; readers
    use this to skip detections that depend on the missing metric.
    """

    __tablename__ = "analytics_file_metrics"

    file_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("files.id", ondelete="CASCADE"),
        primary_key=True,
    )
    project_id: Mapped[int] = mapped_column(Integer, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_revenue_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)
    usage_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)
    partner_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    net_revenue_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    usage_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    partner_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    revenue_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    traffic_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cost_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expected_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actual_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_analytics_file_metrics_project_uploaded", "project_id", "uploaded_at"),
    )


class DailyPartnerAggregate(Base):
    """
    Additive counters for one (file, day, partner, country) bucket.
    """

    __tablename__ = "analytics_file_daily_partner"

    file_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("files.id", ondelete="CASCADE"),
        primary_key=True,
    )
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    partner: Mapped[str] = mapped_column(String(255), primary_key=True)
    country: Mapped[str] = mapped_column(String(255), primary_key=True)

    project_id: Mapped[int] = mapped_column(Integer, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rows_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    traffic_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)
    revenue_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)
    cost_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)
    expected_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)
    actual_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)
    usage_sum: Mapped[float] = mapped_column(_SUM, nullable=False, default=0.0)

    __table_args__ = (
        Index("ix_analytics_daily_project_day", "project_id", "day"),
        Index("ix_analytics_daily_project_partner_day", "project_id", "partner", "day"),
    )

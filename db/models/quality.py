"""
db/models/quality.py

Per-file data quality score written by the sibling quality subsystem.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class DataQualityScore(Base):
    __tablename__ = "data_quality_scores"

    file_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("files.id", ondelete="CASCADE"),
        primary_key=True,
    )
    score: Mapped[float | None] = mapped_column(Float, nullable=True, comment="0-100")
    trust_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    missing_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    invalid_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    schema_inconsistency_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

"""create analytics aggregate tables

Revision ID: 20260301_0002
Revises: 20260301_0001
Create Date: 2026-03-01 09:20:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20260301_0002"
down_revision = "20260301_0001"
branch_labels = None
depends_on = None

_KEY_COLUMNS = (
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


def _sum_column(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=20, scale=4), nullable=False)


def upgrade() -> None:
    op.create_table(
        "analytics_file_metrics",
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_rows", sa.Integer(), nullable=False),
        _sum_column("net_revenue_sum"),
        _sum_column("usage_sum"),
        sa.Column("partner_count", sa.Integer(), nullable=False),
        *[sa.Column(name, sa.String(length=255), nullable=True) for name in _KEY_COLUMNS],
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["file_id"],
            ["files.id"],
            name="fk_analytics_file_metrics_file_id_files",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("file_id", name="pk_analytics_file_metrics"),
    )
    op.create_index(
        "ix_analytics_file_metrics_project_uploaded",
        "analytics_file_metrics",
        ["project_id", "uploaded_at"],
        unique=False,
    )

    op.create_table(
        "analytics_file_daily_partner",
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("partner", sa.String(length=255), nullable=False),
        sa.Column("country", sa.String(length=255), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rows_count", sa.Integer(), nullable=False),
        _sum_column("traffic_sum"),
        _sum_column("revenue_sum"),
        _sum_column("cost_sum"),
        _sum_column("expected_sum"),
        _sum_column("actual_sum"),
        _sum_column("usage_sum"),
        sa.ForeignKeyConstraint(
            ["file_id"],
            ["files.id"],
            name="fk_analytics_file_daily_partner_file_id_files",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint(
            "file_id",
            "day",
            "partner",
            "country",
            name="pk_analytics_file_daily_partner",
        ),
    )
    op.create_index(
        "ix_analytics_daily_project_day",
        "analytics_file_daily_partner",
        ["project_id", "day"],
        unique=False,
    )
    op.create_index(
        "ix_analytics_daily_project_partner_day",
        "analytics_file_daily_partner",
        ["project_id", "partner", "day"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_analytics_daily_project_partner_day", table_name="analytics_file_daily_partner")
    op.drop_index("ix_analytics_daily_project_day", table_name="analytics_file_daily_partner")
    op.drop_table("analytics_file_daily_partner")
    op.drop_index("ix_analytics_file_metrics_project_uploaded", table_name="analytics_file_metrics")
    op.drop_table("analytics_file_metrics")

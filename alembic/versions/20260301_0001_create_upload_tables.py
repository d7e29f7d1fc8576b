"""create upload-side tables read by the analytics engine

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_projects"),
    )

    op.create_table(
        "files",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["project_id"],
            ["projects.id"],
            name="fk_files_project_id_projects",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_files"),
    )
    op.create_index("ix_files_project_uploaded", "files", ["project_id", "uploaded_at"], unique=False)

    op.create_table(
        "file_columns",
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(
            ["file_id"],
            ["files.id"],
            name="fk_file_columns_file_id_files",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("file_id", "position", name="pk_file_columns"),
    )

    op.create_table(
        "file_rows",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.ForeignKeyConstraint(
            ["file_id"],
            ["files.id"],
            name="fk_file_rows_file_id_files",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_file_rows"),
    )
    op.create_index("ix_file_rows_file_row", "file_rows", ["file_id", "row_index"], unique=False)

    op.create_table(
        "data_quality_scores",
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=True, comment="0-100"),
        sa.Column("trust_level", sa.String(length=16), nullable=True),
        sa.Column("missing_rate", sa.Float(), nullable=True),
        sa.Column("invalid_rate", sa.Float(), nullable=True),
        sa.Column("schema_inconsistency_rate", sa.Float(), nullable=True),
        sa.Column("computed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["file_id"],
            ["files.id"],
            name="fk_data_quality_scores_file_id_files",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("file_id", name="pk_data_quality_scores"),
    )


def downgrade() -> None:
    op.drop_table("data_quality_scores")
    op.drop_index("ix_file_rows_file_row", table_name="file_rows")
    op.drop_table("file_rows")
    op.drop_table("file_columns")
    op.drop_index("ix_files_project_uploaded", table_name="files")
    op.drop_table("files")
    op.drop_table("projects")

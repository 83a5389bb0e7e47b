"""Add reports and scheduled_reports tables.

Revision ID: 2026_10_05_0001
Revises: 2026_10_01_0000
Create Date: 2026-10-05

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_05_0001"
down_revision: str | None = "2026_10_01_0000"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create reports and scheduled_reports tables."""
    op.create_table(
        "reports",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("report_type", sa.String(20), nullable=False),
        sa.Column("format", sa.String(10), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "generated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("report_type IN ('overview', 'usage', 'codes')", name="ck_reports_type"),
        sa.CheckConstraint("format IN ('json', 'csv')", name="ck_reports_format"),
    )
    op.create_index("idx_reports_generated_at", "reports", ["generated_at"])

    op.create_table(
        "scheduled_reports",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("report_type", sa.String(20), nullable=False),
        sa.Column("format", sa.String(10), nullable=False),
        sa.Column("date_range", sa.String(10), nullable=False, server_default="7d"),
        sa.Column("email_address", sa.String(255), nullable=False),
        sa.Column("frequency", sa.String(10), nullable=False),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "frequency IN ('daily', 'weekly', 'monthly')",
            name="ck_scheduled_reports_frequency",
        ),
    )
    op.create_index(
        "idx_scheduled_reports_due",
        "scheduled_reports",
        ["next_run_at"],
        postgresql_where=sa.text("active IS true"),
    )


def downgrade() -> None:
    """Drop reports and scheduled_reports tables."""
    op.drop_index("idx_scheduled_reports_due", table_name="scheduled_reports")
    op.drop_table("scheduled_reports")
    op.drop_index("idx_reports_generated_at", table_name="reports")
    op.drop_table("reports")

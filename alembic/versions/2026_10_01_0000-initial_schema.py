"""Initial schema: access_codes and usage_logs.

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_01_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create access_codes and usage_logs tables."""

    # ========================================================================
    # access_codes
    # ========================================================================
    op.create_table(
        "access_codes",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("code", sa.String(16), nullable=False, unique=True),
        sa.Column("prefix", sa.String(8), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("created_by", sa.String(255), nullable=False, server_default="admin"),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_by", sa.String(255), nullable=True),
        sa.Column("auto_expire_on_use", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("current_uses >= 0", name="ck_access_codes_uses_non_negative"),
        sa.CheckConstraint(
            "max_uses IS NULL OR (max_uses >= 1 AND max_uses <= 1000)",
            name="ck_access_codes_max_uses_range",
        ),
        sa.CheckConstraint("duration_minutes > 0", name="ck_access_codes_duration_positive"),
        sa.CheckConstraint(
            "status IN ('active', 'used', 'exhausted', 'expired', 'revoked')",
            name="ck_access_codes_status",
        ),
    )
    op.create_index(
        "idx_access_codes_status_expires", "access_codes", ["status", "expires_at"]
    )
    op.create_index("idx_access_codes_created_at", "access_codes", ["created_at"])

    # ========================================================================
    # usage_logs
    # ========================================================================
    op.create_table(
        "usage_logs",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=True),
        sa.Column("outcome", sa.String(32), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("metadata", JSONB(), nullable=True),
        sa.CheckConstraint(
            "action IN ('generated', 'used', 'expired', 'revoked')",
            name="ck_usage_logs_action",
        ),
        sa.CheckConstraint(
            "duration_ms IS NULL OR duration_ms >= 0",
            name="ck_usage_logs_duration_non_negative",
        ),
    )
    op.create_index("idx_usage_logs_timestamp", "usage_logs", ["timestamp"])
    op.create_index("idx_usage_logs_code", "usage_logs", ["code"])
    op.create_index("idx_usage_logs_action_timestamp", "usage_logs", ["action", "timestamp"])
    op.create_index("idx_usage_logs_ip_address", "usage_logs", ["ip_address"])


def downgrade() -> None:
    """Drop access_codes and usage_logs tables."""
    op.drop_index("idx_usage_logs_ip_address", table_name="usage_logs")
    op.drop_index("idx_usage_logs_action_timestamp", table_name="usage_logs")
    op.drop_index("idx_usage_logs_code", table_name="usage_logs")
    op.drop_index("idx_usage_logs_timestamp", table_name="usage_logs")
    op.drop_table("usage_logs")

    op.drop_index("idx_access_codes_created_at", table_name="access_codes")
    op.drop_index("idx_access_codes_status_expires", table_name="access_codes")
    op.drop_table("access_codes")

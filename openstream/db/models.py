"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class AccessCode(Base):
    """
    ORM model for access_codes table.

    One row per issued access code. `status` only ever leaves 'active';
    every transition is a conditional UPDATE guarded on the current status.
    """

    __tablename__ = "access_codes"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Code identity
    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    prefix: Mapped[str | None] = mapped_column(String(8), nullable=True)

    # Lifetime
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="admin")

    # Redemption tracking
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    used_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auto_expire_on_use: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("current_uses >= 0", name="ck_access_codes_uses_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR (max_uses >= 1 AND max_uses <= 1000)",
            name="ck_access_codes_max_uses_range",
        ),
        CheckConstraint("duration_minutes > 0", name="ck_access_codes_duration_positive"),
        CheckConstraint(
            "status IN ('active', 'used', 'exhausted', 'expired', 'revoked')",
            name="ck_access_codes_status",
        ),
        Index("idx_access_codes_status_expires", "status", "expires_at"),
        Index("idx_access_codes_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<AccessCode(code={self.code}, status={self.status}, "
            f"uses={self.current_uses}/{self.max_uses})>"
        )


class UsageLog(Base):
    """
    ORM model for usage_logs table.

    Append-only activity log. One row per lifecycle transition plus one row
    per validation attempt (action='used' with `success`/`outcome` set).
    """

    __tablename__ = "usage_logs"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Event
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Client
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Attempt outcome
    success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # "metadata" is reserved on declarative classes
    log_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "action IN ('generated', 'used', 'expired', 'revoked')",
            name="ck_usage_logs_action",
        ),
        CheckConstraint(
            "duration_ms IS NULL OR duration_ms >= 0", name="ck_usage_logs_duration_non_negative"
        ),
        Index("idx_usage_logs_timestamp", "timestamp"),
        Index("idx_usage_logs_code", "code"),
        Index("idx_usage_logs_action_timestamp", "action", "timestamp"),
        Index("idx_usage_logs_ip_address", "ip_address"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UsageLog(code={self.code}, action={self.action}, at={self.timestamp})>"


class Report(Base):
    """
    ORM model for reports table.

    Generated analytics reports kept for later download.
    """

    __tablename__ = "reports"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    report_type: Mapped[str] = mapped_column(String(20), nullable=False)
    format: Mapped[str] = mapped_column(String(10), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "report_type IN ('overview', 'usage', 'codes')", name="ck_reports_type"
        ),
        CheckConstraint("format IN ('json', 'csv')", name="ck_reports_format"),
        Index("idx_reports_generated_at", "generated_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Report(id={self.id}, type={self.report_type}, format={self.format})>"


class ScheduledReport(Base):
    """
    ORM model for scheduled_reports table.

    Recurring report definitions picked up by the report scheduler.
    """

    __tablename__ = "scheduled_reports"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    report_type: Mapped[str] = mapped_column(String(20), nullable=False)
    format: Mapped[str] = mapped_column(String(10), nullable=False)
    date_range: Mapped[str] = mapped_column(String(10), nullable=False, default="7d")
    email_address: Mapped[str] = mapped_column(String(255), nullable=False)
    frequency: Mapped[str] = mapped_column(String(10), nullable=False)
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "frequency IN ('daily', 'weekly', 'monthly')", name="ck_scheduled_reports_frequency"
        ),
        Index(
            "idx_scheduled_reports_due",
            "next_run_at",
            postgresql_where=(active.is_(True)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ScheduledReport(id={self.id}, type={self.report_type}, "
            f"frequency={self.frequency}, next_run_at={self.next_run_at})>"
        )

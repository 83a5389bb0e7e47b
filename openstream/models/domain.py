"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from openstream.models.api import (
    CodeStatus,
    ExportFormat,
    GroupBy,
    LogAction,
    ReportType,
    ScheduleFrequency,
    SortField,
    SortOrder,
    ValidationOutcome,
)


@dataclass(frozen=True)
class AccessCodeData:
    """Immutable access code snapshot."""

    code: str
    created_at: datetime
    expires_at: datetime
    duration_minutes: int
    status: CodeStatus
    auto_expire_on_use: bool = True
    max_uses: int | None = None
    current_uses: int = 0
    prefix: str | None = None
    created_by: str = "admin"
    used_at: datetime | None = None
    used_by: str | None = None
    revoked_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate access code constraints."""
        if not self.code:
            raise ValueError("code cannot be empty")
        if self.current_uses < 0:
            raise ValueError(f"current_uses cannot be negative: {self.current_uses}")
        if self.max_uses is not None and self.max_uses < 1:
            raise ValueError(f"max_uses must be positive: {self.max_uses}")
        if self.prefix and not self.code.startswith(self.prefix):
            raise ValueError(f"code {self.code} does not start with prefix {self.prefix}")


def code_state(code: AccessCodeData, now: datetime) -> CodeStatus:
    """
    Effective lifecycle state of a code at `now`.

    A stored ACTIVE code may already be expired by time or spent by uses
    before the database row catches up; this resolves those cases.
    """
    if code.status != CodeStatus.ACTIVE:
        return code.status
    if now >= code.expires_at:
        return CodeStatus.EXPIRED
    if code.auto_expire_on_use and code.current_uses >= 1:
        return CodeStatus.USED
    if code.max_uses is not None and code.current_uses >= code.max_uses:
        return CodeStatus.EXHAUSTED
    return CodeStatus.ACTIVE


def is_code_valid(code: AccessCodeData, now: datetime) -> bool:
    """Whether a validation attempt at `now` would succeed."""
    return code_state(code, now) == CodeStatus.ACTIVE


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a successful redemption."""

    code: str
    status: CodeStatus
    current_uses: int
    max_uses: int | None


@dataclass(frozen=True)
class RevocationResult:
    """Outcome of a revoke request."""

    code: str
    status: CodeStatus
    changed: bool


@dataclass(frozen=True)
class LogEntry:
    """Immutable activity log entry."""

    id: UUID
    code: str
    action: LogAction
    timestamp: datetime
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool | None = None
    outcome: ValidationOutcome | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)


@dataclass(frozen=True)
class DateRange:
    """Inclusive timestamp window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        """Validate window ordering."""
        if self.start > self.end:
            raise ValueError(f"start {self.start} is after end {self.end}")

    def contains(self, moment: datetime) -> bool:
        """Whether `moment` falls inside the window."""
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class LogFilters:
    """
    Activity log filter set.

    Dimensions combine with AND; values within one list combine with OR.
    Empty tuples and None both mean "no constraint".
    """

    date_range: DateRange | None = None
    actions: tuple[LogAction, ...] = ()
    search_term: str | None = None
    users: tuple[str, ...] = ()
    codes: tuple[str, ...] = ()
    ip_addresses: tuple[str, ...] = ()
    success: bool | None = None

    @property
    def is_empty(self) -> bool:
        """Whether no constraint is set."""
        return (
            self.date_range is None
            and not self.actions
            and not self.search_term
            and not self.users
            and not self.codes
            and not self.ip_addresses
            and self.success is None
        )

    def describe(self) -> dict[str, Any]:
        """JSON-safe echo of the active constraints."""
        described: dict[str, Any] = {}
        if self.date_range is not None:
            described["dateRange"] = {
                "start": self.date_range.start.isoformat(),
                "end": self.date_range.end.isoformat(),
            }
        if self.actions:
            described["actions"] = [a.value for a in self.actions]
        if self.search_term:
            described["searchTerm"] = self.search_term
        if self.users:
            described["users"] = list(self.users)
        if self.codes:
            described["codes"] = list(self.codes)
        if self.ip_addresses:
            described["ipAddresses"] = list(self.ip_addresses)
        if self.success is not None:
            described["success"] = self.success
        return described


@dataclass(frozen=True)
class Pagination:
    """One-based offset pagination."""

    page: int = 1
    limit: int = 50

    def __post_init__(self) -> None:
        """Validate pagination bounds."""
        if self.page < 1:
            raise ValueError(f"page must be >= 1: {self.page}")
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1: {self.limit}")

    @property
    def offset(self) -> int:
        """Number of rows skipped before this page."""
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class SortSpec:
    """Sort key and direction; id breaks ties."""

    field: SortField = SortField.TIMESTAMP
    order: SortOrder = SortOrder.DESC


@dataclass(frozen=True)
class PageInfo:
    """Pagination summary of a query result."""

    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        """ceil(total / limit)."""
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_next_page(self) -> bool:
        """Whether a later page exists."""
        return self.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        """Whether an earlier page exists."""
        return self.page > 1


@dataclass(frozen=True)
class LogAggregations:
    """Counts and rates over a filtered log set."""

    total_by_action: dict[str, int]
    total_by_date: dict[str, int]
    total_by_user: dict[str, int]
    total_by_code: dict[str, int]
    total_by_hour: dict[str, int]
    success_rate: float
    average_duration: float
    peak_hour: int | None
    groups: dict[str, int] | None = None


@dataclass(frozen=True)
class LogPage:
    """One page of a log query."""

    entries: list[LogEntry]
    page_info: PageInfo
    aggregations: LogAggregations | None = None
    group_by: GroupBy | None = None


@dataclass(frozen=True)
class LogStats:
    """Summary statistics for a time window."""

    total_logs: int
    logs_by_action: dict[str, int]
    logs_by_hour: dict[str, int]
    unique_users: int
    unique_ips: int
    average_logs_per_day: float


@dataclass(frozen=True)
class LogSummary:
    """
    Counts shared by aggregations, window stats and the dashboard overview.

    by_hour keys are zero padded UTC hours ("00".."23").
    """

    total: int
    by_action: dict[str, int]
    by_hour: dict[str, int]
    validation_attempts: int
    successful_attempts: int
    unique_ips: int
    average_duration: float

    @property
    def success_rate(self) -> float:
        """Percentage of successful validation attempts; 0.0 with no attempts."""
        if not self.validation_attempts:
            return 0.0
        return round(self.successful_attempts / self.validation_attempts * 100, 1)

    @property
    def peak_hour(self) -> int | None:
        """Busiest hour; ties resolve to the lowest hour."""
        if not self.by_hour:
            return None
        top = max(self.by_hour.values())
        return min(int(hour) for hour, count in self.by_hour.items() if count == top)

    def action_count(self, action: LogAction) -> int:
        return self.by_action.get(action.value, 0)


@dataclass(frozen=True)
class UsageStatistics:
    """Access code population statistics."""

    total_codes: int
    active_codes: int
    used_codes: int
    expired_codes: int
    codes_with_usage_limit: int
    average_uses_per_code: float


@dataclass(frozen=True)
class LogFieldUpdate:
    """Allowed mutation of one activity log row."""

    log_id: UUID
    details: str | None = None
    success: bool | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)
    fields_set: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        """Validate the update carries something to change."""
        allowed = {"details", "success", "duration_ms", "metadata"}
        unknown = self.fields_set - allowed
        if unknown:
            raise ValueError(f"Unsupported update fields: {sorted(unknown)}")
        if not self.fields_set:
            raise ValueError(f"Update for {self.log_id} has no fields")


@dataclass(frozen=True)
class ReportData:
    """Generated report snapshot."""

    id: UUID
    name: str
    report_type: ReportType
    format: ExportFormat
    content: str
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    size_bytes: int

    @property
    def filename(self) -> str:
        """Download filename, e.g. overview-report-2026-10-19.json"""
        return f"{self.report_type.value}-report-{self.generated_at.date().isoformat()}.{self.format.value}"


@dataclass(frozen=True)
class ScheduledReportData:
    """Recurring report definition."""

    id: UUID
    report_type: ReportType
    format: ExportFormat
    date_range: str
    email_address: str
    frequency: ScheduleFrequency
    next_run_at: datetime
    created_at: datetime
    last_run_at: datetime | None = None
    active: bool = True

"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Responses use the camelCase keys the dashboard consumes; activity log rows
keep their snake_case column names.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class LogAction(str, Enum):
    """Usage log action enumeration."""

    GENERATED = "generated"
    USED = "used"
    EXPIRED = "expired"
    REVOKED = "revoked"


class CodeStatus(str, Enum):
    """Access code lifecycle state."""

    ACTIVE = "active"
    USED = "used"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ValidationOutcome(str, Enum):
    """Structured outcome of a validation attempt."""

    SUCCESS = "success"
    INVALID = "invalid"
    REVOKED = "revoked"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


class SortField(str, Enum):
    """Sortable activity log columns."""

    TIMESTAMP = "timestamp"
    CODE = "code"
    ACTION = "action"
    IP_ADDRESS = "ip_address"
    DURATION_MS = "duration_ms"


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class GroupBy(str, Enum):
    """Aggregation grouping key."""

    DATE = "date"
    ACTION = "action"
    USER = "user"
    CODE = "code"


class ExportFormat(str, Enum):
    """Activity log export formats."""

    CSV = "csv"
    JSON = "json"


class TimeRange(str, Enum):
    """Analytics lookback windows."""

    LAST_24H = "24h"
    LAST_7D = "7d"
    LAST_30D = "30d"
    LAST_90D = "90d"


class ReportType(str, Enum):
    """Report kinds."""

    OVERVIEW = "overview"
    USAGE = "usage"
    CODES = "codes"


class ScheduleFrequency(str, Enum):
    """Scheduled report cadence."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Access Code Models
# ============================================================================


class GenerateCodeRequest(BaseModel):
    """POST /api/access-codes {action: "generate"} request body."""

    action: Literal["generate"]
    duration: int | None = Field(None, description="Lifetime in minutes (default 10)")
    prefix: str | None = Field(None, max_length=32)
    auto_expire: bool = Field(True, alias="autoExpire")
    max_uses: int | None = Field(None, alias="maxUses")

    model_config = ConfigDict(populate_by_name=True)


class ValidateCodeRequest(BaseModel):
    """POST /api/access-codes {action: "validate"} request body."""

    action: Literal["validate"]
    code: str | None = Field(None, max_length=64)


class RevokeCodeRequest(BaseModel):
    """POST /api/access-codes {action: "revoke"} request body."""

    action: Literal["revoke"]
    code: str | None = Field(None, max_length=64)


AccessCodeActionRequest = Annotated[
    GenerateCodeRequest | ValidateCodeRequest | RevokeCodeRequest,
    Field(discriminator="action"),
]


class GenerateCodeResponse(CamelModel):
    """Response after generating an access code."""

    code: str
    expires_at: datetime
    expiration_minutes: int
    prefix: str | None = None
    auto_expire: bool
    max_uses: int | None = None


class ValidateCodeResponse(BaseModel):
    """Response of a validation attempt."""

    valid: bool
    message: str | None = None
    error: str | None = None


class RevokeCodeResponse(BaseModel):
    """Response after revoking an access code."""

    message: str
    code: str
    status: CodeStatus


class AccessCodeItem(BaseModel):
    """Access code as listed in the admin overview."""

    model_config = ConfigDict(populate_by_name=True)

    code: str
    expires_at: datetime = Field(..., alias="expiresAt")
    created_at: datetime = Field(..., alias="createdAt")
    used_at: datetime | None = Field(None, alias="usedAt")
    used_by: str | None = Field(None, alias="usedBy")
    prefix: str | None = None
    status: CodeStatus
    auto_expire_on_use: bool = True
    max_uses: int | None = None
    current_uses: int = 0


class UsageLogItem(BaseModel):
    """Activity log row."""

    model_config = ConfigDict(from_attributes=True)

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
    metadata: dict[str, Any] | None = None


class AdminOverviewResponse(CamelModel):
    """GET /api/access-codes?action=admin response."""

    active_codes: list[AccessCodeItem]
    total_codes: int
    usage_logs: list[UsageLogItem]


# ============================================================================
# Activity Log Models
# ============================================================================


class DateRangeModel(BaseModel):
    """Inclusive timestamp window."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self) -> "DateRangeModel":
        """Ensure start precedes end."""
        if self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self


class ActivityLogFilterModel(BaseModel):
    """Explicit filter structure accepted in request bodies."""

    model_config = ConfigDict(populate_by_name=True)

    date_range: DateRangeModel | None = Field(None, alias="dateRange")
    actions: list[Literal["generated", "used", "expired", "revoked", "all"]] | None = None
    search_term: str | None = Field(None, alias="searchTerm", max_length=200)
    users: list[str] | None = None
    codes: list[str] | None = None
    ip_addresses: list[str] | None = Field(None, alias="ipAddresses")
    success: bool | None = None


class PaginationInfo(CamelModel):
    """Pagination block of a list response."""

    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class LogAggregationsModel(CamelModel):
    """Aggregations over a filtered log set."""

    total_by_action: dict[str, int]
    total_by_date: dict[str, int]
    total_by_user: dict[str, int]
    total_by_code: dict[str, int]
    total_by_hour: dict[str, int]
    success_rate: float
    average_duration: float
    peak_hour: int | None
    groups: dict[str, int] | None = None


class QueryMetadata(CamelModel):
    """Echo of the effective query."""

    query_time: int
    filters: dict[str, Any]
    sort_by: SortField
    sort_order: SortOrder


class ActivityLogListResponse(BaseModel):
    """GET /api/activity-logs response."""

    success: bool = True
    data: list[UsageLogItem]
    pagination: PaginationInfo
    aggregations: LogAggregationsModel | None = None
    metadata: QueryMetadata


class SearchOptions(BaseModel):
    """Options for free-text search."""

    model_config = ConfigDict(populate_by_name=True)

    fields: list[Literal["code", "details", "ip_address", "user_agent"]] | None = None
    case_sensitive: bool = Field(False, alias="caseSensitive")
    exact_match: bool = Field(False, alias="exactMatch")
    limit: int | None = Field(None, ge=1, le=1000)


class SearchLogsRequest(BaseModel):
    """POST /api/activity-logs {action: "search"}."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["search"]
    search_term: str = Field(..., alias="searchTerm", min_length=1, max_length=200)
    options: SearchOptions = Field(default_factory=SearchOptions)


class ExportLogsRequest(BaseModel):
    """POST /api/activity-logs {action: "export"}."""

    action: Literal["export"]
    filters: ActivityLogFilterModel = Field(default_factory=ActivityLogFilterModel)
    format: ExportFormat = ExportFormat.CSV


class StatsRequest(BaseModel):
    """POST /api/activity-logs {action: "stats"}."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["stats"]
    date_range: DateRangeModel | None = Field(None, alias="dateRange")


class BulkDeleteRequest(BaseModel):
    """POST /api/activity-logs {action: "bulk_delete"}."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["bulk_delete"]
    log_ids: list[UUID] | None = Field(None, alias="logIds")


class LogUpdateFields(BaseModel):
    """Mutable activity log fields."""

    model_config = ConfigDict(extra="forbid")

    details: str | None = None
    success: bool | None = None
    duration_ms: int | None = Field(None, ge=0)
    metadata: dict[str, Any] | None = None


class LogUpdate(BaseModel):
    """One bulk update entry."""

    id: UUID
    updates: LogUpdateFields


class BulkUpdateRequest(BaseModel):
    """POST /api/activity-logs {action: "bulk_update"}."""

    action: Literal["bulk_update"]
    updates: list[LogUpdate] | None = None


ActivityLogActionRequest = Annotated[
    SearchLogsRequest | ExportLogsRequest | StatsRequest | BulkDeleteRequest | BulkUpdateRequest,
    Field(discriminator="action"),
]


class ExportFileRequest(BaseModel):
    """POST /api/activity-logs/export request body."""

    model_config = ConfigDict(populate_by_name=True)

    format: str = "csv"
    filters: ActivityLogFilterModel = Field(default_factory=ActivityLogFilterModel)
    include_metadata: bool = Field(False, alias="includeMetadata")
    max_rows: int = Field(10000, alias="maxRows", ge=1)
    filename: str | None = Field(None, max_length=200)

    @field_validator("filename")
    @classmethod
    def validate_filename(cls, v: str | None) -> str | None:
        """Reject header-breaking characters in the download name."""
        if v is not None and any(ch in '"/\\' or ord(ch) < 32 or ord(ch) == 127 for ch in v):
            raise ValueError("filename contains invalid characters")
        return v


class LogStatsModel(CamelModel):
    """Activity log statistics."""

    total_logs: int
    logs_by_action: dict[str, int]
    logs_by_hour: dict[str, int]
    unique_users: int
    unique_ips: int = Field(..., alias="uniqueIPs")
    average_logs_per_day: float


class LogStatsResponse(BaseModel):
    """POST /api/activity-logs {action: "stats"} response."""

    success: bool = True
    data: LogStatsModel


class SearchLogsResponse(BaseModel):
    """POST /api/activity-logs {action: "search"} response."""

    success: bool = True
    data: list[UsageLogItem]
    total: int


class ExportDataResponse(BaseModel):
    """POST /api/activity-logs {action: "export"} response; data is the rendered file."""

    success: bool = True
    data: str
    format: ExportFormat
    timestamp: datetime


class BulkDeleteResponse(CamelModel):
    """Bulk delete result."""

    success: bool = True
    deleted_count: int
    message: str


class BulkUpdateResponse(CamelModel):
    """Bulk update result."""

    success: bool = True
    updated_count: int
    message: str


class ExportPreviewResponse(CamelModel):
    """GET /api/activity-logs/export?preview=true response."""

    success: bool = True
    preview: bool = True
    data: list[UsageLogItem]
    total_records: int
    format: ExportFormat
    estimated_file_size: str


# ============================================================================
# Analytics / Reports Models
# ============================================================================


class TrendValue(BaseModel):
    """Current value and percent change against the previous period."""

    value: float
    change: float


class OverviewTrends(CamelModel):
    """Trend block of the analytics overview."""

    codes_generated: TrendValue
    codes_used: TrendValue
    success_rate: TrendValue
    active_users: TrendValue


class AnalyticsOverviewResponse(CamelModel):
    """GET /api/analytics/overview response."""

    total_codes: int
    active_codes: int
    used_codes: int
    expired_codes: int
    success_rate: float
    peak_hour: str | None
    total_users: int
    trends: OverviewTrends


class GenerateReportRequest(BaseModel):
    """POST /api/analytics/reports/generate request body."""

    model_config = ConfigDict(populate_by_name=True)

    type: ReportType = ReportType.OVERVIEW
    format: ExportFormat = ExportFormat.JSON
    date_range: str = Field("7d", alias="dateRange")
    custom_start: datetime | None = Field(None, alias="customStart")
    custom_end: datetime | None = Field(None, alias="customEnd")
    include_details: bool = Field(False, alias="includeDetails")


class ReportSummaryResponse(CamelModel):
    """Generated report metadata."""

    id: UUID
    name: str
    type: ReportType
    format: ExportFormat
    generated_at: datetime
    size_bytes: int
    download_url: str


class ScheduleReportRequest(BaseModel):
    """POST /api/analytics/reports/schedule request body."""

    model_config = ConfigDict(populate_by_name=True)

    type: ReportType = ReportType.OVERVIEW
    format: ExportFormat = ExportFormat.JSON
    date_range: str = Field("7d", alias="dateRange")
    email_address: str | None = Field(None, alias="emailAddress", max_length=255)
    schedule_frequency: str = Field("weekly", alias="scheduleFrequency")


class ScheduledReportItem(CamelModel):
    """Scheduled report listing entry."""

    id: UUID
    type: ReportType
    format: ExportFormat
    email_address: str
    frequency: ScheduleFrequency
    next_run: datetime
    created_at: datetime


class ScheduledReportListResponse(CamelModel):
    """GET /api/analytics/reports/schedule response."""

    scheduled_reports: list[ScheduledReportItem]


class ScheduleReportResponse(CamelModel):
    """POST /api/analytics/reports/schedule response."""

    message: str
    scheduled_report: ScheduledReportItem


class MessageResponse(BaseModel):
    """Plain success acknowledgement."""

    success: bool = True
    message: str


class HourlyUsagePoint(BaseModel):
    """Per-hour lifecycle counts."""

    hour: str
    generated: int
    used: int
    expired: int


class DailyTrendPoint(BaseModel):
    """Per-day activity summary."""

    date: str
    codes: int
    users: int
    success_rate: float


class CodeTypeSlice(BaseModel):
    """Active code count for one prefix bucket."""

    name: str
    value: int


class UserActivityPoint(BaseModel):
    """Distinct visitors per hour of day."""

    time: str
    active_users: int


class SuccessRatePoint(BaseModel):
    """Daily validation success rate."""

    date: str
    rate: float
    total_attempts: int


class ChartsResponse(CamelModel):
    """GET /api/analytics/charts response."""

    hourly_usage: list[HourlyUsagePoint]
    daily_trends: list[DailyTrendPoint]
    code_type_distribution: list[CodeTypeSlice]
    user_activity: list[UserActivityPoint]
    success_rate_history: list[SuccessRatePoint]


class RealtimeMetricsResponse(CamelModel):
    """GET /api/analytics/metrics response."""

    active_users: int
    active_codes: int
    requests_per_minute: int
    success_rate: float
    avg_response_time: float
    uptime: str
    last_update: datetime


class UserProfile(BaseModel):
    """Visitor profile keyed by IP address."""

    id: str
    ip_address: str
    user_agent: str
    browser: str
    device_type: Literal["desktop", "mobile", "tablet"]
    first_seen: datetime
    last_seen: datetime
    total_sessions: int
    total_codes_used: int
    success_rate: int
    is_active: bool


class UserStats(CamelModel):
    """Visitor summary."""

    total_users: int
    active_users: int
    new_users_today: int
    avg_session_duration: int


class UsersResponse(BaseModel):
    """GET /api/admin/users response."""

    success: bool = True
    users: list[UserProfile]
    stats: UserStats

"""
Activity Log Query Semantics - Pure functions over LogEntry collections.

These define what filtering, sorting, pagination and aggregation mean.
The SQL builders and GROUP BY queries in services.activity_logs mirror
them; reports and charts run them directly over fetched windows.
"""

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from openstream.exceptions import InvalidInputError
from openstream.models.api import (
    ActivityLogFilterModel,
    GroupBy,
    LogAction,
    SortOrder,
    ValidationOutcome,
)
from openstream.models.domain import (
    DateRange,
    LogAggregations,
    LogEntry,
    LogFilters,
    LogStats,
    LogSummary,
    PageInfo,
    Pagination,
    SortSpec,
)

DEFAULT_SEARCH_FIELDS: tuple[str, ...] = ("code", "details", "ip_address", "user_agent")


# ============================================================================
# Filter construction
# ============================================================================


def parse_actions(values: Iterable[str]) -> tuple[LogAction, ...]:
    """Parse action names; the literal 'all' clears the filter."""
    cleaned = [v.strip().lower() for v in values if v and v.strip()]
    if not cleaned or "all" in cleaned:
        return ()
    valid = {a.value for a in LogAction}
    unknown = sorted(set(cleaned) - valid)
    if unknown:
        raise InvalidInputError(f"Invalid action filter: {', '.join(unknown)}")
    return tuple(dict.fromkeys(LogAction(v) for v in cleaned))


def split_csv(raw: str | None) -> tuple[str, ...]:
    """Split a comma separated query parameter, dropping blanks."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def filters_from_model(model: ActivityLogFilterModel) -> LogFilters:
    """Build LogFilters from a request body filter structure."""
    date_range = None
    if model.date_range is not None:
        date_range = DateRange(start=model.date_range.start, end=model.date_range.end)
    return LogFilters(
        date_range=date_range,
        actions=parse_actions(model.actions or ()),
        search_term=(model.search_term or "").strip() or None,
        users=tuple(model.users or ()),
        codes=tuple(c.upper() for c in model.codes or ()),
        ip_addresses=tuple(model.ip_addresses or ()),
        success=model.success,
    )


# ============================================================================
# Matching
# ============================================================================


def _field_value(entry: LogEntry, name: str) -> str | None:
    value = getattr(entry, name)
    if value is None:
        return None
    return value.value if isinstance(value, LogAction) else str(value)


def contains_term(entry: LogEntry, term: str, fields: Sequence[str] = DEFAULT_SEARCH_FIELDS) -> bool:
    """Case-insensitive substring match of `term` in any of `fields`."""
    needle = term.lower()
    for name in fields:
        value = _field_value(entry, name)
        if value is not None and needle in value.lower():
            return True
    return False


def matches(entry: LogEntry, filters: LogFilters) -> bool:
    """AND across filter dimensions, OR within each list."""
    if filters.date_range is not None and not filters.date_range.contains(entry.timestamp):
        return False
    if filters.actions and entry.action not in filters.actions:
        return False
    if filters.search_term and not contains_term(entry, filters.search_term):
        return False
    if filters.users and entry.ip_address not in filters.users:
        return False
    if filters.codes and entry.code.upper() not in filters.codes:
        return False
    if filters.ip_addresses and entry.ip_address not in filters.ip_addresses:
        return False
    if filters.success is not None and entry.success is not filters.success:
        return False
    return True


def filter_logs(entries: Iterable[LogEntry], filters: LogFilters) -> list[LogEntry]:
    """Entries satisfying every filter, in input order."""
    return [e for e in entries if matches(e, filters)]


def search_logs(
    entries: Iterable[LogEntry],
    term: str,
    fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
    case_sensitive: bool = False,
    exact_match: bool = False,
    limit: int = 100,
) -> list[LogEntry]:
    """Free-text search, newest first, capped at `limit`."""

    def hit(entry: LogEntry) -> bool:
        for name in fields:
            value = _field_value(entry, name)
            if value is None:
                continue
            if exact_match:
                if value == term:
                    return True
            elif case_sensitive:
                if term in value:
                    return True
            elif term.lower() in value.lower():
                return True
        return False

    found = [e for e in entries if hit(e)]
    return sort_logs(found, SortSpec())[:limit]


# ============================================================================
# Sorting & pagination
# ============================================================================


def sort_logs(entries: Iterable[LogEntry], sort: SortSpec) -> list[LogEntry]:
    """
    Stable sort on the requested field with id as tie-break.

    NULLs sort last ascending and first descending, like PostgreSQL.
    """

    def key(entry: LogEntry) -> tuple[Any, ...]:
        value = getattr(entry, sort.field.value)
        if isinstance(value, LogAction):
            value = value.value
        return (value is None, value, str(entry.id))

    return sorted(entries, key=key, reverse=sort.order == SortOrder.DESC)


def paginate(entries: Sequence[LogEntry], pagination: Pagination) -> tuple[list[LogEntry], PageInfo]:
    """Slice one page; an out-of-range page is empty but keeps the totals."""
    start = pagination.offset
    page = list(entries[start : start + pagination.limit])
    return page, PageInfo(total=len(entries), page=pagination.page, limit=pagination.limit)


# ============================================================================
# Aggregation
# ============================================================================


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def date_key(entry: LogEntry) -> str:
    """UTC calendar date, YYYY-MM-DD."""
    return _utc(entry.timestamp).date().isoformat()


def hour_key(entry: LogEntry) -> str:
    """UTC hour of day, zero padded."""
    return f"{_utc(entry.timestamp).hour:02d}"


def user_key(entry: LogEntry) -> str:
    """Visitors are identified by IP address."""
    return entry.ip_address or "unknown"


def is_validation_attempt(entry: LogEntry) -> bool:
    """A `used` row carrying an attempt outcome."""
    return entry.action == LogAction.USED and (
        entry.outcome is not None or entry.success is not None
    )


def is_successful_attempt(entry: LogEntry) -> bool:
    """Successful redemption; rows without an outcome fall back to `success`."""
    if entry.outcome is not None:
        return entry.outcome == ValidationOutcome.SUCCESS
    return entry.success is True


def success_rate(entries: Iterable[LogEntry]) -> float:
    """Percentage of successful validation attempts; 0.0 with no attempts."""
    return summarize_logs(list(entries)).success_rate


def average_duration(entries: Iterable[LogEntry]) -> float:
    """Mean duration_ms over rows that record one."""
    durations = [e.duration_ms for e in entries if e.duration_ms is not None]
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


def peak_hour(entries: Iterable[LogEntry]) -> int | None:
    """Most frequent UTC hour of day; ties resolve to the lowest hour."""
    return summarize_logs(list(entries)).peak_hour


def summarize_logs(entries: Sequence[LogEntry]) -> LogSummary:
    """
    Headline counts over an already-filtered set.

    ActivityLogService.summary computes the same figures with GROUP BY.
    """
    attempts = [e for e in entries if is_validation_attempt(e)]
    return LogSummary(
        total=len(entries),
        by_action=dict(Counter(e.action.value for e in entries)),
        by_hour=dict(sorted(Counter(hour_key(e) for e in entries).items())),
        validation_attempts=len(attempts),
        successful_attempts=sum(1 for e in attempts if is_successful_attempt(e)),
        unique_ips=len({e.ip_address for e in entries if e.ip_address}),
        average_duration=average_duration(entries),
    )


def aggregations_from_counts(
    summary: LogSummary,
    by_date: dict[str, int],
    by_user: dict[str, int],
    by_code: dict[str, int],
    group_by: GroupBy | None = None,
) -> LogAggregations:
    """Assemble LogAggregations; `groups` repeats the requested breakdown."""
    breakdowns = {
        GroupBy.DATE: by_date,
        GroupBy.ACTION: summary.by_action,
        GroupBy.USER: by_user,
        GroupBy.CODE: by_code,
    }
    return LogAggregations(
        total_by_action=dict(summary.by_action),
        total_by_date=dict(sorted(by_date.items())),
        total_by_user=dict(by_user),
        total_by_code=dict(by_code),
        total_by_hour=dict(sorted(summary.by_hour.items())),
        success_rate=summary.success_rate,
        average_duration=summary.average_duration,
        peak_hour=summary.peak_hour,
        groups=dict(breakdowns[group_by]) if group_by is not None else None,
    )


def stats_from_summary(summary: LogSummary, date_range: DateRange | None = None) -> LogStats:
    """Window statistics; the per-day average spans at least one day."""
    span_days = 1
    if date_range is not None:
        seconds = (date_range.end - date_range.start).total_seconds()
        span_days = max(math.ceil(seconds / 86400), 1)

    return LogStats(
        total_logs=summary.total,
        logs_by_action=dict(summary.by_action),
        logs_by_hour=dict(sorted(summary.by_hour.items())),
        unique_users=summary.unique_ips,
        unique_ips=summary.unique_ips,
        average_logs_per_day=round(summary.total / span_days, 2),
    )


def aggregate_logs(entries: Sequence[LogEntry], group_by: GroupBy | None = None) -> LogAggregations:
    """Counts and rates over an already-filtered set."""
    return aggregations_from_counts(
        summarize_logs(entries),
        by_date=dict(Counter(date_key(e) for e in entries)),
        by_user=dict(Counter(user_key(e) for e in entries)),
        by_code=dict(Counter(e.code for e in entries)),
        group_by=group_by,
    )


def compute_stats(entries: Sequence[LogEntry], date_range: DateRange | None = None) -> LogStats:
    """Window statistics over an already-filtered set."""
    return stats_from_summary(summarize_logs(entries), date_range)


def query_logs(
    entries: Iterable[LogEntry],
    filters: LogFilters,
    sort: SortSpec,
    pagination: Pagination,
) -> tuple[list[LogEntry], PageInfo]:
    """filter, then sort, then paginate."""
    return paginate(sort_logs(filter_logs(entries, filters), sort), pagination)

"""
Analytics Service - Dashboard overview, chart series, realtime metrics and
visitor profiles derived from the activity log.

The build_* functions are pure; AnalyticsService fetches rows and feeds them.
"""

import time
from collections import defaultdict
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from openstream.config import settings
from openstream.models.api import (
    AnalyticsOverviewResponse,
    ChartsResponse,
    CodeTypeSlice,
    DailyTrendPoint,
    HourlyUsagePoint,
    LogAction,
    OverviewTrends,
    RealtimeMetricsResponse,
    SuccessRatePoint,
    TimeRange,
    TrendValue,
    UserActivityPoint,
    UserProfile,
    UsersResponse,
    UserStats,
)
from openstream.models.domain import (
    AccessCodeData,
    DateRange,
    LogEntry,
    LogFilters,
    LogSummary,
)
from openstream.observability.logging import get_logger
from openstream.services.access_codes import AccessCodeService
from openstream.services.activity_logs import ActivityLogService
from openstream.services.log_query import (
    average_duration,
    is_successful_attempt,
    is_validation_attempt,
    success_rate,
)

logger = get_logger(__name__)

# Process start, for the uptime figure
SERVICE_STARTED_AT = time.monotonic()

RANGE_WINDOWS = {
    TimeRange.LAST_24H: timedelta(hours=24),
    TimeRange.LAST_7D: timedelta(days=7),
    TimeRange.LAST_30D: timedelta(days=30),
    TimeRange.LAST_90D: timedelta(days=90),
}

RANGE_DAYS = {
    TimeRange.LAST_24H: 1,
    TimeRange.LAST_7D: 7,
    TimeRange.LAST_30D: 30,
    TimeRange.LAST_90D: 90,
}

KNOWN_PREFIXES = ("VIP", "TEST", "DEMO")


def parse_range(value: str | None) -> TimeRange:
    """Range key; anything unrecognised falls back to 7d."""
    try:
        return TimeRange(value or TimeRange.LAST_7D.value)
    except ValueError:
        return TimeRange.LAST_7D


def percent_change(current: float, previous: float) -> float:
    """Relative change in percent; 0 when there is no baseline."""
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def _successful_uses(entries: Sequence[LogEntry]) -> int:
    return sum(
        1 for e in entries if e.action == LogAction.USED and is_successful_attempt(e)
    )


def _unique_ips(entries: Sequence[LogEntry]) -> int:
    return len({e.ip_address for e in entries if e.ip_address})


def _day_label(day: datetime) -> str:
    """Short month/day label, e.g. 'Oct 9'."""
    return f"{day.strftime('%b')} {day.day}"


# ============================================================================
# Overview
# ============================================================================


def build_overview(
    overall: LogSummary,
    recent: LogSummary,
    previous: LogSummary,
    active_codes: int,
    total_codes: int,
) -> AnalyticsOverviewResponse:
    """
    Headline numbers plus trends.

    `recent` is the last 24 hours and `previous` the six days before it.
    """

    def trend(current: float, baseline: float) -> TrendValue:
        return TrendValue(value=current, change=percent_change(current, baseline))

    hour = overall.peak_hour
    return AnalyticsOverviewResponse(
        total_codes=total_codes,
        active_codes=active_codes,
        used_codes=overall.successful_attempts,
        expired_codes=overall.action_count(LogAction.EXPIRED),
        success_rate=overall.success_rate,
        peak_hour=f"{hour:02d}:00" if hour is not None else None,
        total_users=overall.unique_ips,
        trends=OverviewTrends(
            codes_generated=trend(
                recent.action_count(LogAction.GENERATED),
                previous.action_count(LogAction.GENERATED),
            ),
            codes_used=trend(recent.successful_attempts, previous.successful_attempts),
            success_rate=trend(recent.success_rate, previous.success_rate),
            active_users=trend(recent.unique_ips, previous.unique_ips),
        ),
    )


# ============================================================================
# Charts
# ============================================================================


def code_type_distribution(codes: Sequence[AccessCodeData]) -> list[CodeTypeSlice]:
    """Active codes bucketed by prefix; empty buckets are dropped."""
    buckets = {"Standard": 0, "VIP": 0, "TEST": 0, "DEMO": 0, "Other": 0}
    for code in codes:
        if not code.prefix:
            buckets["Standard"] += 1
        elif code.prefix in KNOWN_PREFIXES:
            buckets[code.prefix] += 1
        else:
            buckets["Other"] += 1
    return [CodeTypeSlice(name=name, value=value) for name, value in buckets.items() if value > 0]


def build_charts(
    entries: Sequence[LogEntry],
    active_codes: Sequence[AccessCodeData],
    time_range: TimeRange,
    now: datetime,
) -> ChartsResponse:
    """Chart series over the entries inside the range window."""
    start = now - RANGE_WINDOWS[time_range]
    window = [e for e in entries if _utc(e.timestamp) >= start]

    by_hour: dict[int, list[LogEntry]] = defaultdict(list)
    by_day: dict[str, list[LogEntry]] = defaultdict(list)
    for entry in window:
        stamp = _utc(entry.timestamp)
        by_hour[stamp.hour].append(entry)
        by_day[stamp.date().isoformat()].append(entry)

    hourly_usage = [
        HourlyUsagePoint(
            hour=f"{hour:02d}:00",
            generated=sum(1 for e in by_hour[hour] if e.action == LogAction.GENERATED),
            used=_successful_uses(by_hour[hour]),
            expired=sum(1 for e in by_hour[hour] if e.action == LogAction.EXPIRED),
        )
        for hour in range(24)
    ]

    user_activity = [
        UserActivityPoint(time=f"{hour:02d}:00", active_users=_unique_ips(by_hour[hour]))
        for hour in range(24)
    ]

    days = RANGE_DAYS[time_range]
    daily_trends = []
    for offset in range(days - 1, -1, -1):
        day = now - timedelta(days=offset)
        rows = by_day[day.date().isoformat()]
        daily_trends.append(
            DailyTrendPoint(
                date=_day_label(day),
                codes=sum(1 for e in rows if e.action == LogAction.GENERATED),
                users=_unique_ips(rows),
                success_rate=success_rate(rows),
            )
        )

    history = []
    for offset in range(min(days, 30) - 1, -1, -1):
        day = now - timedelta(days=offset)
        rows = by_day[day.date().isoformat()]
        history.append(
            SuccessRatePoint(
                date=_day_label(day),
                rate=success_rate(rows),
                total_attempts=sum(1 for e in rows if is_validation_attempt(e)),
            )
        )

    return ChartsResponse(
        hourly_usage=hourly_usage,
        daily_trends=daily_trends,
        code_type_distribution=code_type_distribution(active_codes),
        user_activity=user_activity,
        success_rate_history=history,
    )


# ============================================================================
# Realtime metrics
# ============================================================================


def format_uptime(seconds: float) -> str:
    """'{hours}h {minutes}m'"""
    total_minutes = int(seconds // 60)
    return f"{total_minutes // 60}h {total_minutes % 60}m"


def build_realtime_metrics(
    entries: Sequence[LogEntry],
    active_codes: int,
    now: datetime,
    uptime_seconds: float,
) -> RealtimeMetricsResponse:
    """Activity over the last hour; success rate is 100 with no attempts."""
    hour_ago = now - timedelta(hours=1)
    recent = [e for e in entries if _utc(e.timestamp) >= hour_ago]
    attempts = [e for e in recent if is_validation_attempt(e)]

    return RealtimeMetricsResponse(
        active_users=_unique_ips(recent),
        active_codes=active_codes,
        requests_per_minute=round(len(recent) / 60),
        success_rate=success_rate(attempts) if attempts else 100.0,
        avg_response_time=average_duration(recent),
        uptime=format_uptime(uptime_seconds),
        last_update=now,
    )


# ============================================================================
# Visitors
# ============================================================================


def parse_user_agent(user_agent: str | None) -> tuple[str, str]:
    """(browser, device_type) from a user agent string."""
    ua = (user_agent or "").lower()

    if "edg" in ua:
        browser = "Edge"
    elif "opr" in ua or "opera" in ua:
        browser = "Opera"
    elif "chrome" in ua or "crios" in ua:
        browser = "Chrome"
    elif "firefox" in ua or "fxios" in ua:
        browser = "Firefox"
    elif "safari" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"

    if "tablet" in ua or "ipad" in ua:
        device_type = "tablet"
    elif "mobile" in ua:
        device_type = "mobile"
    else:
        device_type = "desktop"

    return browser, device_type


def build_users(
    entries: Sequence[LogEntry],
    now: datetime,
    max_users: int | None = 100,
) -> UsersResponse:
    """One profile per IP address, most recently seen first."""
    grouped: dict[str, list[LogEntry]] = defaultdict(list)
    for entry in entries:
        if entry.ip_address:
            grouped[entry.ip_address].append(entry)

    day_ago = now - timedelta(hours=24)
    today = now.date()
    profiles: list[UserProfile] = []

    for ip, rows in grouped.items():
        rows.sort(key=lambda e: _utc(e.timestamp))
        first_agent = next((e.user_agent for e in rows if e.user_agent), None)
        browser, device_type = parse_user_agent(first_agent)
        attempts = [e for e in rows if is_validation_attempt(e)]
        successes = sum(1 for e in attempts if is_successful_attempt(e))
        last_seen = _utc(rows[-1].timestamp)

        profiles.append(
            UserProfile(
                id=ip,
                ip_address=ip,
                user_agent=first_agent or "Unknown",
                browser=browser,
                device_type=device_type,
                first_seen=_utc(rows[0].timestamp),
                last_seen=last_seen,
                total_sessions=len({_utc(e.timestamp).date() for e in rows}),
                total_codes_used=successes,
                success_rate=round(successes / len(attempts) * 100) if attempts else 0,
                is_active=last_seen >= day_ago,
            )
        )

    profiles.sort(key=lambda p: p.last_seen, reverse=True)

    total_sessions = sum(p.total_sessions for p in profiles)
    stats = UserStats(
        total_users=len(profiles),
        active_users=sum(1 for p in profiles if p.is_active),
        new_users_today=sum(1 for p in profiles if p.first_seen.date() == today),
        # Sessions are counted as 15 minutes each
        avg_session_duration=round(total_sessions / len(profiles) * 15) if profiles else 0,
    )
    return UsersResponse(users=profiles[:max_users], stats=stats)


class AnalyticsService:
    """Fetches the rows each analytics view needs."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize analytics service with database session."""
        self.session = session
        self.codes = AccessCodeService(session)
        self.logs = ActivityLogService(session)

    async def _window(self, since: datetime, now: datetime) -> list[LogEntry]:
        return await self.logs.fetch(
            LogFilters(date_range=DateRange(start=since, end=now)),
            limit=settings.aggregation_max_rows,
        )

    async def overview(self, now: datetime | None = None) -> AnalyticsOverviewResponse:
        """Dashboard headline numbers, counted in the database."""
        now = now or datetime.now(UTC)
        yesterday = now - timedelta(hours=24)
        overall = await self.logs.summary(LogFilters())
        recent = await self.logs.summary(
            LogFilters(date_range=DateRange(start=yesterday, end=now))
        )
        # Half-open [now - 7d, now - 24h); timestamps are microsecond precision
        previous = await self.logs.summary(
            LogFilters(
                date_range=DateRange(
                    start=now - timedelta(days=7),
                    end=yesterday - timedelta(microseconds=1),
                )
            )
        )
        active = await self.codes.list_active()
        total = await self.codes.count_total()
        return build_overview(overall, recent, previous, len(active), total)

    async def charts(self, time_range: TimeRange, now: datetime | None = None) -> ChartsResponse:
        """Chart series for a lookback window."""
        now = now or datetime.now(UTC)
        entries = await self._window(now - RANGE_WINDOWS[time_range], now)
        active = await self.codes.list_active()
        return build_charts(entries, active, time_range, now)

    async def realtime_metrics(self, now: datetime | None = None) -> RealtimeMetricsResponse:
        """Last-hour activity snapshot."""
        now = now or datetime.now(UTC)
        entries = await self._window(now - timedelta(hours=1), now)
        active = await self.codes.list_active()
        return build_realtime_metrics(
            entries, len(active), now, time.monotonic() - SERVICE_STARTED_AT
        )

    async def users(self, time_range: TimeRange, now: datetime | None = None) -> UsersResponse:
        """Visitor profiles for a lookback window."""
        now = now or datetime.now(UTC)
        entries = await self._window(now - RANGE_WINDOWS[time_range], now)
        response = build_users(entries, now)
        logger.debug("visitor_profiles_built", users=response.stats.total_users)
        return response

    async def export_users(
        self, time_range: TimeRange, now: datetime | None = None
    ) -> UsersResponse:
        """Every visitor profile in the window, for download."""
        now = now or datetime.now(UTC)
        entries = await self._window(now - RANGE_WINDOWS[time_range], now)
        response = build_users(entries, now, max_users=None)
        logger.info("visitor_profiles_exported", users=len(response.users))
        return response

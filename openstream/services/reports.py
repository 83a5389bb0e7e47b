"""
Report Service - Generated and scheduled analytics reports.

Reports are rendered once and stored with their content so downloads are
stable. Scheduled reports are persisted definitions that run_due() turns
into stored reports; the report scheduler calls it on an interval.
"""

import calendar
import csv
import io
import json
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from openstream.config import settings
from openstream.db.models import Report, ScheduledReport
from openstream.exceptions import InvalidInputError, ResourceNotFoundError
from openstream.models.api import (
    ExportFormat,
    LogAction,
    ReportType,
    ScheduleFrequency,
)
from openstream.models.domain import (
    AccessCodeData,
    DateRange,
    LogEntry,
    LogFilters,
    ReportData,
    ScheduledReportData,
    UsageStatistics,
)
from openstream.observability.logging import get_logger
from openstream.observability.metrics import metrics
from openstream.services.access_codes import AccessCodeService
from openstream.services.activity_logs import ActivityLogService
from openstream.services.analytics import RANGE_WINDOWS, parse_range
from openstream.services.export import entry_to_json, iso_utc
from openstream.services.log_query import (
    date_key,
    hour_key,
    is_successful_attempt,
    peak_hour,
    success_rate,
)

logger = get_logger(__name__)

REPORT_TITLES = {
    ReportType.OVERVIEW: "System Overview Report",
    ReportType.USAGE: "Usage Analytics Report",
    ReportType.CODES: "Access Codes Report",
}

RECENT_ACTIVITY_LIMIT = 100
TOP_CODES_LIMIT = 10


# ============================================================================
# Periods & schedules
# ============================================================================


def resolve_period(
    date_range: str | None,
    custom_start: datetime | None,
    custom_end: datetime | None,
    now: datetime,
) -> DateRange:
    """
    Report window from a range key or an explicit custom range.

    Raises:
        InvalidInputError: custom range missing an end or reversed
    """
    if date_range == "custom" or custom_start is not None or custom_end is not None:
        if custom_start is None or custom_end is None:
            raise InvalidInputError("Custom date range requires customStart and customEnd")
        if custom_start > custom_end:
            raise InvalidInputError("customStart must not be after customEnd")
        return DateRange(start=custom_start, end=custom_end)

    return DateRange(start=now - RANGE_WINDOWS[parse_range(date_range)], end=now)


def parse_frequency(value: str | None) -> ScheduleFrequency:
    """Schedule cadence; unknown values fall back to weekly."""
    try:
        return ScheduleFrequency((value or "").lower())
    except ValueError:
        return ScheduleFrequency.WEEKLY


def add_month(moment: datetime) -> datetime:
    """Same day next month, clamped to the last day of a shorter month."""
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_run(frequency: ScheduleFrequency, after: datetime) -> datetime:
    """Next execution time for a cadence."""
    if frequency == ScheduleFrequency.DAILY:
        return after + timedelta(days=1)
    if frequency == ScheduleFrequency.MONTHLY:
        return add_month(after)
    return after + timedelta(days=7)


# ============================================================================
# Content builders
# ============================================================================


def _period(period: DateRange) -> dict[str, str]:
    return {"start": iso_utc(period.start), "end": iso_utc(period.end)}


def _period_days(period: DateRange) -> int:
    return max((period.end - period.start).days, 1)


def _successful_uses(entries: Sequence[LogEntry]) -> int:
    return sum(1 for e in entries if e.action == LogAction.USED and is_successful_attempt(e))


def build_overview_content(
    entries: Sequence[LogEntry],
    active_codes: Sequence[AccessCodeData],
    total_codes: int,
    period: DateRange,
    now: datetime,
    include_details: bool = False,
) -> dict[str, Any]:
    """System overview: code counts, usage and headline metrics."""
    generated = sum(1 for e in entries if e.action == LogAction.GENERATED)
    hour = peak_hour(entries)
    content: dict[str, Any] = {
        "title": REPORT_TITLES[ReportType.OVERVIEW],
        "generatedAt": iso_utc(now),
        "period": _period(period),
        "summary": {
            "totalCodes": total_codes,
            "activeCodes": len(active_codes),
            "codesGenerated": generated,
            "codesUsed": _successful_uses(entries),
            "codesExpired": sum(1 for e in entries if e.action == LogAction.EXPIRED),
            "uniqueUsers": len({e.ip_address for e in entries if e.ip_address}),
        },
        "metrics": {
            "successRate": success_rate(entries),
            "avgCodesPerDay": round(generated / _period_days(period), 2),
            "peakHour": f"{hour:02d}:00" if hour is not None else None,
        },
    }

    if include_details:
        content["details"] = {
            "activeCodes": [
                {
                    "code": code.code,
                    "expiresAt": iso_utc(code.expires_at),
                    "currentUses": code.current_uses,
                    "maxUses": code.max_uses,
                }
                for code in active_codes
            ],
            "recentActivity": [entry_to_json(e) for e in entries[:RECENT_ACTIVITY_LIMIT]],
        }
    return content


def build_usage_content(
    entries: Sequence[LogEntry], period: DateRange, now: datetime
) -> dict[str, Any]:
    """Event distribution by hour, day and action."""
    return {
        "title": REPORT_TITLES[ReportType.USAGE],
        "generatedAt": iso_utc(now),
        "period": _period(period),
        "analytics": {
            "totalEvents": len(entries),
            "hourlyDistribution": dict(sorted(Counter(hour_key(e) for e in entries).items())),
            "dailyDistribution": dict(sorted(Counter(date_key(e) for e in entries).items())),
            "actionBreakdown": dict(Counter(e.action.value for e in entries)),
        },
    }


def build_codes_content(
    statistics: UsageStatistics,
    top_codes: Sequence[AccessCodeData],
    period: DateRange,
    now: datetime,
) -> dict[str, Any]:
    """Code population statistics and the most used codes."""
    return {
        "title": REPORT_TITLES[ReportType.CODES],
        "generatedAt": iso_utc(now),
        "period": _period(period),
        "statistics": {
            "totalCodes": statistics.total_codes,
            "activeCodes": statistics.active_codes,
            "usedCodes": statistics.used_codes,
            "expiredCodes": statistics.expired_codes,
            "codesWithUsageLimit": statistics.codes_with_usage_limit,
            "averageUsesPerCode": statistics.average_uses_per_code,
        },
        "topCodes": [
            {
                "code": code.code,
                "currentUses": code.current_uses,
                "maxUses": code.max_uses,
                "status": code.status.value,
            }
            for code in top_codes
        ],
    }


def flatten(content: Any, prefix: str = "") -> list[tuple[str, Any]]:
    """Dotted-key (metric, value) pairs; list items are keyed by index."""
    if isinstance(content, dict):
        items = content.items()
    elif isinstance(content, list):
        items = ((str(i), v) for i, v in enumerate(content))
    else:
        return [(prefix, content)]

    pairs: list[tuple[str, Any]] = []
    for key, value in items:
        name = f"{prefix}.{key}" if prefix else str(key)
        pairs.extend(flatten(value, name))
    return pairs


def render_report(content: dict[str, Any], export_format: ExportFormat) -> str:
    """JSON document or a two-column Metric,Value CSV."""
    if export_format == ExportFormat.JSON:
        return json.dumps(content, indent=2)

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(["Metric", "Value"])
    for metric, value in flatten(content):
        writer.writerow([metric, "" if value is None else value])
    return buffer.getvalue()


class ReportService:
    """Generates, stores and schedules analytics reports."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize report service with database session."""
        self.session = session
        self.codes = AccessCodeService(session)
        self.logs = ActivityLogService(session)

    async def generate(
        self,
        report_type: ReportType,
        export_format: ExportFormat,
        date_range: str | None = "7d",
        custom_start: datetime | None = None,
        custom_end: datetime | None = None,
        include_details: bool = False,
        now: datetime | None = None,
    ) -> ReportData:
        """
        Render and store a report.

        Raises:
            InvalidInputError: invalid custom range
        """
        now = now or datetime.now(UTC)
        period = resolve_period(date_range, custom_start, custom_end, now)
        content = await self._build_content(report_type, period, now, include_details)
        rendered = render_report(content, export_format)

        report = Report(
            name=(
                f"{REPORT_TITLES[report_type]} "
                f"{period.start.date().isoformat()} to {period.end.date().isoformat()}"
            ),
            report_type=report_type.value,
            format=export_format.value,
            content=rendered,
            period_start=period.start,
            period_end=period.end,
            generated_at=now,
            size_bytes=len(rendered.encode("utf-8")),
        )
        try:
            self.session.add(report)
            await self.session.commit()
            await self.session.refresh(report)
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_error("database_error", "generate_report")
            raise

        logger.info(
            "report_generated",
            report_id=str(report.id),
            report_type=report_type.value,
            format=export_format.value,
            size_bytes=report.size_bytes,
        )
        return self._report_to_domain(report)

    async def _build_content(
        self,
        report_type: ReportType,
        period: DateRange,
        now: datetime,
        include_details: bool,
    ) -> dict[str, Any]:
        if report_type == ReportType.CODES:
            return build_codes_content(
                await self.codes.usage_statistics(),
                await self.codes.top_used(TOP_CODES_LIMIT),
                period,
                now,
            )

        entries = await self.logs.fetch(
            LogFilters(date_range=period), limit=settings.aggregation_max_rows
        )
        if report_type == ReportType.USAGE:
            return build_usage_content(entries, period, now)

        return build_overview_content(
            entries,
            await self.codes.list_active(),
            await self.codes.count_total(),
            period,
            now,
            include_details,
        )

    async def get(self, report_id: UUID) -> ReportData:
        """
        Stored report by id.

        Raises:
            ResourceNotFoundError: unknown report
        """
        report = await self.session.get(Report, report_id)
        if report is None:
            raise ResourceNotFoundError("Report", str(report_id))
        return self._report_to_domain(report)

    async def schedule(
        self,
        report_type: ReportType,
        export_format: ExportFormat,
        date_range: str,
        email_address: str | None,
        frequency: str | None,
        now: datetime | None = None,
    ) -> ScheduledReportData:
        """
        Persist a recurring report definition.

        Raises:
            InvalidInputError: missing email address
        """
        if not email_address or not email_address.strip():
            raise InvalidInputError("Email address is required for scheduled reports")

        now = now or datetime.now(UTC)
        cadence = parse_frequency(frequency)
        scheduled = ScheduledReport(
            report_type=report_type.value,
            format=export_format.value,
            date_range=parse_range(date_range).value,
            email_address=email_address.strip(),
            frequency=cadence.value,
            next_run_at=next_run(cadence, now),
            active=True,
            created_at=now,
        )
        try:
            self.session.add(scheduled)
            await self.session.commit()
            await self.session.refresh(scheduled)
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_error("database_error", "schedule_report")
            raise

        logger.info(
            "report_scheduled",
            schedule_id=str(scheduled.id),
            report_type=report_type.value,
            frequency=cadence.value,
            next_run_at=scheduled.next_run_at.isoformat(),
        )
        return self._schedule_to_domain(scheduled)

    async def list_scheduled(self) -> list[ScheduledReportData]:
        """Active schedules, soonest first."""
        result = await self.session.execute(
            select(ScheduledReport)
            .where(ScheduledReport.active.is_(True))
            .order_by(ScheduledReport.next_run_at.asc())
        )
        return [self._schedule_to_domain(s) for s in result.scalars().all()]

    async def cancel(self, schedule_id: UUID) -> None:
        """
        Deactivate a schedule.

        Raises:
            ResourceNotFoundError: unknown or already cancelled schedule
        """
        scheduled = await self.session.get(ScheduledReport, schedule_id)
        if scheduled is None or not scheduled.active:
            raise ResourceNotFoundError("Scheduled report", str(schedule_id))

        try:
            scheduled.active = False
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_error("database_error", "cancel_scheduled_report")
            raise

        logger.info("scheduled_report_cancelled", schedule_id=str(schedule_id))

    async def run_due(self, now: datetime | None = None) -> int:
        """
        Generate reports for every schedule whose next run has passed.

        Returns:
            Number of reports generated
        """
        now = now or datetime.now(UTC)
        result = await self.session.execute(
            select(ScheduledReport)
            .where(ScheduledReport.active.is_(True), ScheduledReport.next_run_at <= now)
            .order_by(ScheduledReport.next_run_at.asc())
        )
        due = list(result.scalars().all())

        generated = 0
        for scheduled in due:
            report = await self.generate(
                ReportType(scheduled.report_type),
                ExportFormat(scheduled.format),
                date_range=scheduled.date_range,
                now=now,
            )
            try:
                scheduled.last_run_at = now
                scheduled.next_run_at = next_run(ScheduleFrequency(scheduled.frequency), now)
                await self.session.commit()
            except SQLAlchemyError:
                await self.session.rollback()
                metrics.record_error("database_error", "run_scheduled_report")
                raise

            generated += 1
            # Delivery is not wired up; the report stays downloadable by id
            logger.info(
                "scheduled_report_generated",
                schedule_id=str(scheduled.id),
                report_id=str(report.id),
                email_address=scheduled.email_address,
                next_run_at=scheduled.next_run_at.isoformat(),
            )

        return generated

    @staticmethod
    def _report_to_domain(report: Report) -> ReportData:
        """Convert ORM model to domain model."""
        return ReportData(
            id=report.id,
            name=report.name,
            report_type=ReportType(report.report_type),
            format=ExportFormat(report.format),
            content=report.content,
            period_start=report.period_start,
            period_end=report.period_end,
            generated_at=report.generated_at,
            size_bytes=report.size_bytes,
        )

    @staticmethod
    def _schedule_to_domain(scheduled: ScheduledReport) -> ScheduledReportData:
        """Convert ORM model to domain model."""
        return ScheduledReportData(
            id=scheduled.id,
            report_type=ReportType(scheduled.report_type),
            format=ExportFormat(scheduled.format),
            date_range=scheduled.date_range,
            email_address=scheduled.email_address,
            frequency=ScheduleFrequency(scheduled.frequency),
            next_run_at=scheduled.next_run_at,
            created_at=scheduled.created_at,
            last_run_at=scheduled.last_run_at,
            active=scheduled.active,
        )

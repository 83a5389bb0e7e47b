"""
Analytics Routes - Dashboard analytics, visitor profiles and reports.

NO DICTIONARIES - All requests/responses use Pydantic models.

Every endpoint requires the admin token.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from openstream.api.dependencies import get_analytics_service, get_report_service, require_admin
from openstream.exceptions import InvalidInputError, ResourceNotFoundError
from openstream.models.api import (
    AnalyticsOverviewResponse,
    ChartsResponse,
    GenerateReportRequest,
    MessageResponse,
    RealtimeMetricsResponse,
    ReportSummaryResponse,
    ScheduledReportItem,
    ScheduledReportListResponse,
    ScheduleReportRequest,
    ScheduleReportResponse,
    UsersResponse,
)
from openstream.models.domain import ReportData, ScheduledReportData
from openstream.services.analytics import AnalyticsService, parse_range
from openstream.services.export import (
    MEDIA_TYPES,
    content_disposition,
    parse_format,
    render_users_export,
)
from openstream.services.reports import ReportService

router = APIRouter(tags=["analytics"], dependencies=[Depends(require_admin)])


def report_to_summary(report: ReportData) -> ReportSummaryResponse:
    """Stored report to response, with its download link."""
    return ReportSummaryResponse(
        id=report.id,
        name=report.name,
        type=report.report_type,
        format=report.format,
        generated_at=report.generated_at,
        size_bytes=report.size_bytes,
        download_url=f"/api/analytics/reports/download/{report.id}",
    )


def schedule_to_item(scheduled: ScheduledReportData) -> ScheduledReportItem:
    """Domain schedule to response row."""
    return ScheduledReportItem(
        id=scheduled.id,
        type=scheduled.report_type,
        format=scheduled.format,
        email_address=scheduled.email_address,
        frequency=scheduled.frequency,
        next_run=scheduled.next_run_at,
        created_at=scheduled.created_at,
    )


# ============================================================================
# Analytics
# ============================================================================


@router.get(
    "/api/analytics/overview",
    response_model=AnalyticsOverviewResponse,
    response_model_by_alias=True,
)
async def analytics_overview(
    service: AnalyticsService = Depends(get_analytics_service),
) -> AnalyticsOverviewResponse:
    """Headline numbers with last-24h trends."""
    return await service.overview()


@router.get(
    "/api/analytics/charts",
    response_model=ChartsResponse,
    response_model_by_alias=True,
)
async def analytics_charts(
    range: str | None = Query("7d"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ChartsResponse:
    """Chart series for 24h, 7d, 30d or 90d; unknown ranges mean 7d."""
    return await service.charts(parse_range(range))


@router.get(
    "/api/analytics/metrics",
    response_model=RealtimeMetricsResponse,
    response_model_by_alias=True,
)
async def analytics_metrics(
    service: AnalyticsService = Depends(get_analytics_service),
) -> RealtimeMetricsResponse:
    """Activity over the last hour."""
    return await service.realtime_metrics()


@router.get(
    "/api/admin/users",
    response_model=UsersResponse,
    response_model_by_alias=True,
)
async def admin_users(
    range: str | None = Query("7d"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> UsersResponse:
    """Visitor profiles keyed by IP address."""
    return await service.users(parse_range(range))


@router.get("/api/admin/users/export")
async def export_users(
    range: str | None = Query("90d"),
    format: str | None = Query("csv"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> Response:
    """All visitor profiles for the window as a CSV or JSON attachment."""
    export_format = parse_format(format)
    response = await service.export_users(parse_range(range))
    result = render_users_export(response, export_format, datetime.now(UTC))
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={
            "Content-Disposition": content_disposition(result.filename),
            "Cache-Control": "no-cache",
        },
    )


# ============================================================================
# Reports
# ============================================================================


@router.post(
    "/api/analytics/reports/generate",
    response_model=ReportSummaryResponse,
    response_model_by_alias=True,
)
async def generate_report(
    request: GenerateReportRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportSummaryResponse:
    """Render and store a report; download it through download_url."""
    report = await service.generate(
        request.type,
        request.format,
        date_range=request.date_range,
        custom_start=request.custom_start,
        custom_end=request.custom_end,
        include_details=request.include_details,
    )
    return report_to_summary(report)


@router.get("/api/analytics/reports/download/{report_id}")
async def download_report(
    report_id: str,
    service: ReportService = Depends(get_report_service),
) -> Response:
    """Stored report content as an attachment."""
    try:
        report = await service.get(UUID(report_id))
    except ValueError:
        raise ResourceNotFoundError("Report", report_id) from None
    return Response(
        content=report.content,
        media_type=MEDIA_TYPES[report.format],
        headers={
            "Content-Disposition": content_disposition(report.filename),
            "Cache-Control": "no-cache",
        },
    )


@router.post(
    "/api/analytics/reports/schedule",
    response_model=ScheduleReportResponse,
    response_model_by_alias=True,
)
async def schedule_report(
    request: ScheduleReportRequest,
    service: ReportService = Depends(get_report_service),
) -> ScheduleReportResponse:
    """Create a recurring report (daily, weekly or monthly)."""
    scheduled = await service.schedule(
        request.type,
        request.format,
        request.date_range,
        request.email_address,
        request.schedule_frequency,
    )
    return ScheduleReportResponse(
        message="Report scheduled successfully",
        scheduled_report=schedule_to_item(scheduled),
    )


@router.get(
    "/api/analytics/reports/schedule",
    response_model=ScheduledReportListResponse,
    response_model_by_alias=True,
)
async def list_scheduled_reports(
    service: ReportService = Depends(get_report_service),
) -> ScheduledReportListResponse:
    """Active scheduled reports."""
    scheduled = await service.list_scheduled()
    return ScheduledReportListResponse(scheduled_reports=[schedule_to_item(s) for s in scheduled])


@router.delete("/api/analytics/reports/schedule", response_model=MessageResponse)
async def cancel_scheduled_report(
    id: str | None = Query(None),
    service: ReportService = Depends(get_report_service),
) -> MessageResponse:
    """Cancel a scheduled report by `?id=`."""
    if not id:
        raise InvalidInputError("Report ID is required")
    try:
        schedule_id = UUID(id)
    except ValueError:
        raise ResourceNotFoundError("Scheduled report", id) from None

    await service.cancel(schedule_id)
    return MessageResponse(message="Scheduled report cancelled successfully")

"""
Activity Log Routes - Query, maintenance and export of usage logs.

NO DICTIONARIES - All requests/responses use Pydantic models.

Every endpoint requires the admin token.
"""

import json
import time
from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from openstream.api.access_code_routes import entry_to_item
from openstream.api.dependencies import get_activity_log_service, get_log_reader, require_admin
from openstream.config import settings
from openstream.exceptions import InvalidInputError
from openstream.models.api import (
    ActivityLogActionRequest,
    ActivityLogListResponse,
    BulkDeleteRequest,
    BulkDeleteResponse,
    BulkUpdateRequest,
    BulkUpdateResponse,
    ExportDataResponse,
    ExportFileRequest,
    ExportLogsRequest,
    ExportPreviewResponse,
    GroupBy,
    LogAggregationsModel,
    LogStatsModel,
    LogStatsResponse,
    PaginationInfo,
    QueryMetadata,
    SearchLogsRequest,
    SearchLogsResponse,
    SortField,
    SortOrder,
    StatsRequest,
)
from openstream.models.domain import (
    DateRange,
    LogAggregations,
    LogFieldUpdate,
    LogFilters,
    Pagination,
    SortSpec,
)
from openstream.observability.logging import get_logger
from openstream.observability.metrics import metrics
from openstream.services.activity_logs import ActivityLogService
from openstream.services.export import (
    content_disposition,
    estimated_size,
    parse_format,
    render_export,
    row_cap,
)
from openstream.services.log_query import filters_from_model, parse_actions, split_csv

logger = get_logger(__name__)

router = APIRouter(tags=["activity-logs"], dependencies=[Depends(require_admin)])


# ============================================================================
# Request parsing
# ============================================================================


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


def filters_from_query(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    actions: str | None = None,
    search: str | None = None,
    users: str | None = None,
    codes: str | None = None,
    ip_addresses: str | None = None,
    success: bool | None = None,
) -> LogFilters:
    """
    LogFilters from query parameters.

    A date range applies only when both ends are given.

    Raises:
        InvalidInputError: reversed date range or unknown action
    """
    date_range = None
    if start_date is not None and end_date is not None:
        start, end = _as_utc(start_date), _as_utc(end_date)
        if start > end:
            raise InvalidInputError("startDate must not be after endDate")
        date_range = DateRange(start=start, end=end)

    return LogFilters(
        date_range=date_range,
        actions=parse_actions(split_csv(actions)),
        search_term=(search or "").strip() or None,
        users=split_csv(users),
        codes=tuple(c.upper() for c in split_csv(codes)),
        ip_addresses=split_csv(ip_addresses),
        success=success,
    )


def pagination_from_query(page: int, limit: int | None) -> Pagination:
    """
    Pagination with the limit clamped to the configured maximum.

    Raises:
        InvalidInputError: page or limit below 1
    """
    if page < 1:
        raise InvalidInputError("page must be >= 1")
    if limit is None:
        limit = settings.default_page_size
    if limit < 1:
        raise InvalidInputError("limit must be >= 1")
    return Pagination(page=page, limit=min(limit, settings.max_page_size))


def parse_log_ids(raw: str | None) -> list[UUID]:
    """
    Comma separated UUID list.

    Raises:
        InvalidInputError: empty list or malformed id
    """
    parts = split_csv(raw)
    if not parts:
        raise InvalidInputError("No log IDs provided")
    try:
        return [UUID(part) for part in parts]
    except ValueError:
        raise InvalidInputError("Invalid log IDs provided") from None


def aggregations_to_model(aggregations: LogAggregations) -> LogAggregationsModel:
    """Domain aggregations to response model."""
    return LogAggregationsModel(
        total_by_action=aggregations.total_by_action,
        total_by_date=aggregations.total_by_date,
        total_by_user=aggregations.total_by_user,
        total_by_code=aggregations.total_by_code,
        total_by_hour=aggregations.total_by_hour,
        success_rate=aggregations.success_rate,
        average_duration=aggregations.average_duration,
        peak_hour=aggregations.peak_hour,
        groups=aggregations.groups,
    )


def to_field_updates(request: BulkUpdateRequest) -> list[LogFieldUpdate]:
    """
    Body updates to domain updates carrying only the fields that were sent.

    Raises:
        InvalidInputError: missing list or an entry with nothing to change
    """
    if not request.updates:
        raise InvalidInputError("Invalid updates provided")

    updates = []
    for item in request.updates:
        fields_set = frozenset(item.updates.model_fields_set)
        try:
            updates.append(
                LogFieldUpdate(
                    log_id=item.id,
                    fields_set=fields_set,
                    **item.updates.model_dump(include=set(fields_set)),
                )
            )
        except ValueError as e:
            raise InvalidInputError("Invalid updates provided", details=[str(e)]) from e
    return updates


# ============================================================================
# Query & maintenance
# ============================================================================


@router.get(
    "/api/activity-logs",
    response_model=ActivityLogListResponse,
    response_model_by_alias=True,
)
async def list_activity_logs(
    page: int = Query(1),
    limit: int | None = Query(None),
    sort_by: SortField = Query(SortField.TIMESTAMP, alias="sortBy"),
    sort_order: SortOrder = Query(SortOrder.DESC, alias="sortOrder"),
    include_aggregations: bool = Query(False, alias="includeAggregations"),
    group_by: GroupBy | None = Query(None, alias="groupBy"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    actions: str | None = Query(None),
    search: str | None = Query(None, max_length=200),
    users: str | None = Query(None),
    codes: str | None = Query(None),
    ip_addresses: str | None = Query(None, alias="ipAddresses"),
    success: bool | None = Query(None),
    service: ActivityLogService = Depends(get_log_reader),
) -> ActivityLogListResponse:
    """
    Filtered, sorted, paginated activity logs.

    List parameters (actions, users, codes, ipAddresses) are comma separated.
    """
    started = time.perf_counter()
    filters = filters_from_query(
        start_date, end_date, actions, search, users, codes, ip_addresses, success
    )
    sort = SortSpec(field=sort_by, order=sort_order)
    pagination = pagination_from_query(page, limit)

    result = await service.query(
        filters,
        sort=sort,
        pagination=pagination,
        group_by=group_by,
        include_aggregations=include_aggregations,
    )

    info = result.page_info
    return ActivityLogListResponse(
        data=[entry_to_item(e) for e in result.entries],
        pagination=PaginationInfo(
            total=info.total,
            page=info.page,
            limit=info.limit,
            total_pages=info.total_pages,
            has_next_page=info.has_next_page,
            has_previous_page=info.has_previous_page,
        ),
        aggregations=(
            aggregations_to_model(result.aggregations) if result.aggregations else None
        ),
        metadata=QueryMetadata(
            query_time=round((time.perf_counter() - started) * 1000),
            filters=filters.describe(),
            sort_by=sort.field,
            sort_order=sort.order,
        ),
    )


@router.post(
    "/api/activity-logs",
    response_model=SearchLogsResponse
    | ExportDataResponse
    | LogStatsResponse
    | BulkDeleteResponse
    | BulkUpdateResponse,
    response_model_by_alias=True,
)
async def activity_log_action(
    request: ActivityLogActionRequest,
    service: ActivityLogService = Depends(get_activity_log_service),
) -> SearchLogsResponse | ExportDataResponse | LogStatsResponse | BulkDeleteResponse | BulkUpdateResponse:
    """
    Activity log actions: search, export, stats, bulk_delete, bulk_update.
    """
    if isinstance(request, SearchLogsRequest):
        found = await service.search(
            request.search_term,
            fields=request.options.fields,
            case_sensitive=request.options.case_sensitive,
            exact_match=request.options.exact_match,
            limit=request.options.limit,
        )
        return SearchLogsResponse(data=[entry_to_item(e) for e in found], total=len(found))

    if isinstance(request, ExportLogsRequest):
        now = datetime.now(UTC)
        entries = await service.fetch(
            filters_from_model(request.filters), limit=settings.export_max_rows
        )
        export = render_export(entries, request.format, now)
        metrics.record_export(export.format.value, export.total_records)
        return ExportDataResponse(data=export.content, format=export.format, timestamp=now)

    if isinstance(request, StatsRequest):
        date_range = None
        if request.date_range is not None:
            date_range = DateRange(start=request.date_range.start, end=request.date_range.end)
        stats = await service.stats(date_range)
        return LogStatsResponse(
            data=LogStatsModel(
                total_logs=stats.total_logs,
                logs_by_action=stats.logs_by_action,
                logs_by_hour=stats.logs_by_hour,
                unique_users=stats.unique_users,
                unique_ips=stats.unique_ips,
                average_logs_per_day=stats.average_logs_per_day,
            )
        )

    if isinstance(request, BulkDeleteRequest):
        deleted = await service.bulk_delete(request.log_ids)
        return BulkDeleteResponse(
            deleted_count=deleted,
            message=f"Successfully deleted {deleted} activity logs",
        )

    updated = await service.bulk_update(to_field_updates(request))
    return BulkUpdateResponse(
        updated_count=updated,
        message=f"Successfully updated {updated} activity logs",
    )


@router.delete(
    "/api/activity-logs",
    response_model=BulkDeleteResponse,
    response_model_by_alias=True,
)
async def delete_activity_logs(
    ids: str | None = Query(None),
    service: ActivityLogService = Depends(get_activity_log_service),
) -> BulkDeleteResponse:
    """Delete logs by a comma separated id list."""
    deleted = await service.bulk_delete(parse_log_ids(ids))
    return BulkDeleteResponse(
        deleted_count=deleted,
        message=f"Successfully deleted {deleted} activity logs",
    )


# ============================================================================
# Export
# ============================================================================


def _attachment(content: str, media_type: str, filename: str, stats: str | None = None) -> Response:
    headers = {
        "Content-Disposition": content_disposition(filename),
        "Cache-Control": "no-cache",
    }
    if stats is not None:
        headers["X-Export-Stats"] = stats
    return Response(content=content, media_type=media_type, headers=headers)


@router.post("/api/activity-logs/export")
async def export_activity_logs(
    request: ExportFileRequest,
    service: ActivityLogService = Depends(get_log_reader),
) -> Response:
    """
    Download matching logs as CSV or JSON.

    Rows are capped at EXPORT_MAX_ROWS; X-Export-Stats describes the export.
    """
    export_format = parse_format(request.format)
    filters = filters_from_model(request.filters)
    now = datetime.now(UTC)

    entries = await service.fetch(filters, limit=row_cap(request.max_rows))
    export = render_export(
        entries,
        export_format,
        now,
        include_metadata=request.include_metadata,
        filename=request.filename,
    )
    metrics.record_export(export.format.value, export.total_records)

    stats = json.dumps(
        {
            "totalRecords": export.total_records,
            "exportedAt": now.isoformat(),
            "format": export.format.value,
            "filters": filters.describe() if not filters.is_empty else "none",
        }
    )
    logger.info(
        "activity_logs_exported",
        format=export.format.value,
        total_records=export.total_records,
        filename=export.filename,
    )
    return _attachment(export.content, export.media_type, export.filename, stats)


@router.get(
    "/api/activity-logs/export",
    response_model=None,
)
async def export_activity_logs_get(
    format: str = Query("csv"),
    preview: bool = Query(False),
    max_rows: int | None = Query(None, alias="maxRows"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    actions: str | None = Query(None),
    search: str | None = Query(None, max_length=200),
    service: ActivityLogService = Depends(get_log_reader),
) -> Response | ExportPreviewResponse:
    """
    Export download, or with `preview=true` the first rows and a size estimate.
    """
    export_format = parse_format(format)
    filters = filters_from_query(start_date, end_date, actions, search)

    if preview:
        entries = await service.fetch(filters, limit=settings.export_preview_rows)
        total = await service.count(filters)
        return ExportPreviewResponse(
            data=[entry_to_item(e) for e in entries],
            total_records=total,
            format=export_format,
            estimated_file_size=estimated_size(total, export_format),
        )

    now = datetime.now(UTC)
    entries = await service.fetch(filters, limit=row_cap(max_rows))
    # GET downloads always carry the formatted timestamp fields
    export = render_export(entries, export_format, now, include_metadata=True)
    metrics.record_export(export.format.value, export.total_records)
    return _attachment(export.content, export.media_type, export.filename)

"""
Activity Log Service - Query, search, statistics and bulk maintenance.

NO DICTIONARIES - Results are LogEntry / LogPage / LogStats domain models.

Filters, sorting and pagination are pushed into SQL, and so are the
aggregation counts (GROUP BY over the same conditions). services.log_query
holds the matching pure functions.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import (
    ColumnElement,
    and_,
    delete,
    func,
    literal_column,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from openstream.config import settings
from openstream.db.models import UsageLog
from openstream.exceptions import InvalidInputError
from openstream.models.api import GroupBy, LogAction, SortField, SortOrder, ValidationOutcome
from openstream.models.domain import (
    DateRange,
    LogAggregations,
    LogEntry,
    LogFieldUpdate,
    LogFilters,
    LogPage,
    LogStats,
    LogSummary,
    PageInfo,
    Pagination,
    SortSpec,
)
from openstream.observability.logging import get_logger
from openstream.observability.metrics import metrics
from openstream.services.log_query import (
    DEFAULT_SEARCH_FIELDS,
    aggregations_from_counts,
    stats_from_summary,
)

logger = get_logger(__name__)

SORT_COLUMNS = {
    SortField.TIMESTAMP: UsageLog.timestamp,
    SortField.CODE: UsageLog.code,
    SortField.ACTION: UsageLog.action,
    SortField.IP_ADDRESS: UsageLog.ip_address,
    SortField.DURATION_MS: UsageLog.duration_ms,
}

SEARCH_COLUMNS = {
    "code": UsageLog.code,
    "details": UsageLog.details,
    "ip_address": UsageLog.ip_address,
    "user_agent": UsageLog.user_agent,
}

# Grouping keys carry no bind parameters so the SELECT and GROUP BY
# expressions render identically.
UTC_TIMESTAMP = func.timezone(literal_column("'UTC'"), UsageLog.timestamp)
HOUR_BUCKET = func.to_char(UTC_TIMESTAMP, literal_column("'HH24'"))
DATE_BUCKET = func.to_char(UTC_TIMESTAMP, literal_column("'YYYY-MM-DD'"))
USER_BUCKET = func.coalesce(
    func.nullif(UsageLog.ip_address, literal_column("''")), literal_column("'unknown'")
)

# log_query.is_validation_attempt / is_successful_attempt
IS_ATTEMPT = and_(
    UsageLog.action == LogAction.USED.value,
    or_(UsageLog.outcome.is_not(None), UsageLog.success.is_not(None)),
)
IS_SUCCESS = or_(
    UsageLog.outcome == ValidationOutcome.SUCCESS.value,
    and_(UsageLog.outcome.is_(None), UsageLog.success.is_(True)),
)


def _like_pattern(term: str) -> str:
    """Substring pattern with LIKE wildcards in the term escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def build_conditions(filters: LogFilters) -> list[ColumnElement[bool]]:
    """SQL counterpart of log_query.matches()."""
    conditions: list[ColumnElement[bool]] = []

    if filters.date_range is not None:
        conditions.append(UsageLog.timestamp >= filters.date_range.start)
        conditions.append(UsageLog.timestamp <= filters.date_range.end)

    if filters.actions:
        conditions.append(UsageLog.action.in_([a.value for a in filters.actions]))

    if filters.search_term:
        pattern = _like_pattern(filters.search_term)
        conditions.append(
            or_(*(column.ilike(pattern, escape="\\") for column in SEARCH_COLUMNS.values()))
        )

    if filters.users:
        conditions.append(UsageLog.ip_address.in_(filters.users))

    if filters.codes:
        conditions.append(func.upper(UsageLog.code).in_(filters.codes))

    if filters.ip_addresses:
        conditions.append(UsageLog.ip_address.in_(filters.ip_addresses))

    if filters.success is not None:
        conditions.append(UsageLog.success.is_(filters.success))

    return conditions


def build_order(sort: SortSpec) -> list[ColumnElement]:
    """ORDER BY for a SortSpec, id as tie-break in the same direction."""
    column = SORT_COLUMNS[sort.field]
    if sort.order == SortOrder.ASC:
        return [column.asc(), UsageLog.id.asc()]
    return [column.desc(), UsageLog.id.desc()]


def log_to_domain(log: UsageLog) -> LogEntry:
    """Convert ORM model to domain model."""
    return LogEntry(
        id=log.id,
        code=log.code,
        action=LogAction(log.action),
        timestamp=log.timestamp,
        details=log.details,
        ip_address=log.ip_address,
        user_agent=log.user_agent,
        success=log.success,
        outcome=ValidationOutcome(log.outcome) if log.outcome else None,
        duration_ms=log.duration_ms,
        metadata=log.log_metadata,
    )


class ActivityLogService:
    """Read and maintenance operations on the usage_logs table."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize activity log service with database session."""
        self.session = session

    async def query(
        self,
        filters: LogFilters,
        sort: SortSpec | None = None,
        pagination: Pagination | None = None,
        group_by: GroupBy | None = None,
        include_aggregations: bool = False,
    ) -> LogPage:
        """
        One page of matching logs.

        Aggregations are attached when requested or when group_by is set.
        """
        sort = sort or SortSpec()
        pagination = pagination or Pagination(limit=settings.default_page_size)
        conditions = build_conditions(filters)

        total = await self.count(filters)

        result = await self.session.execute(
            select(UsageLog)
            .where(*conditions)
            .order_by(*build_order(sort))
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        entries = [log_to_domain(log) for log in result.scalars().all()]

        aggregations = None
        if include_aggregations or group_by is not None:
            aggregations = await self.aggregate(filters, group_by)

        logger.debug(
            "activity_logs_queried",
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            sort_by=sort.field.value,
            group_by=group_by.value if group_by else None,
        )
        return LogPage(
            entries=entries,
            page_info=PageInfo(total=total, page=pagination.page, limit=pagination.limit),
            aggregations=aggregations,
            group_by=group_by,
        )

    async def count(self, filters: LogFilters) -> int:
        """Number of logs matching filters."""
        result = await self.session.execute(
            select(func.count()).select_from(UsageLog).where(*build_conditions(filters))
        )
        return result.scalar() or 0

    async def fetch(
        self,
        filters: LogFilters,
        limit: int,
        sort: SortSpec | None = None,
    ) -> list[LogEntry]:
        """Matching logs in sort order, at most `limit` rows."""
        result = await self.session.execute(
            select(UsageLog)
            .where(*build_conditions(filters))
            .order_by(*build_order(sort or SortSpec()))
            .limit(limit)
        )
        return [log_to_domain(log) for log in result.scalars().all()]

    async def recent(self, limit: int = 50) -> list[LogEntry]:
        """Newest logs for the admin listing."""
        return await self.fetch(LogFilters(), limit=limit)

    async def search(
        self,
        term: str,
        fields: Sequence[str] | None = None,
        case_sensitive: bool = False,
        exact_match: bool = False,
        limit: int | None = None,
    ) -> list[LogEntry]:
        """
        Free-text search over whitelisted columns, newest first.

        Raises:
            InvalidInputError: empty term or unknown field
        """
        if not term or not term.strip():
            raise InvalidInputError("searchTerm is required")

        names = list(fields or DEFAULT_SEARCH_FIELDS)
        unknown = [name for name in names if name not in SEARCH_COLUMNS]
        if unknown:
            raise InvalidInputError(f"Unsupported search fields: {', '.join(unknown)}")

        columns = [SEARCH_COLUMNS[name] for name in names]
        if exact_match:
            clause = or_(*(column == term for column in columns))
        elif case_sensitive:
            clause = or_(*(column.like(_like_pattern(term), escape="\\") for column in columns))
        else:
            clause = or_(*(column.ilike(_like_pattern(term), escape="\\") for column in columns))

        result = await self.session.execute(
            select(UsageLog)
            .where(clause)
            .order_by(UsageLog.timestamp.desc(), UsageLog.id.desc())
            .limit(min(limit or settings.search_default_limit, settings.max_page_size))
        )
        return [log_to_domain(log) for log in result.scalars().all()]

    async def _count_by(
        self, key: ColumnElement, conditions: Sequence[ColumnElement[bool]]
    ) -> dict[str, int]:
        """{key: row count} for one GROUP BY breakdown."""
        result = await self.session.execute(
            select(key.label("key"), func.count().label("count"))
            .where(*conditions)
            .group_by(key)
        )
        return {str(key_value): count for key_value, count in result.all()}

    async def summary(self, filters: LogFilters) -> LogSummary:
        """Headline counts over matching logs, computed in the database."""
        conditions = build_conditions(filters)
        by_action = await self._count_by(UsageLog.action, conditions)
        by_hour = await self._count_by(HOUR_BUCKET, conditions)

        result = await self.session.execute(
            select(
                func.count().label("total"),
                func.count().filter(IS_ATTEMPT).label("attempts"),
                func.count().filter(and_(IS_ATTEMPT, IS_SUCCESS)).label("successes"),
                func.count(
                    func.distinct(func.nullif(UsageLog.ip_address, literal_column("''")))
                ).label("unique_ips"),
                func.avg(UsageLog.duration_ms).label("average_duration"),
            ).where(*conditions)
        )
        total, attempts, successes, unique_ips, mean_duration = result.one()
        # avg() comes back as Decimal, or NULL over no durations
        average = round(float(mean_duration), 2) if mean_duration is not None else 0.0

        return LogSummary(
            total=total or 0,
            by_action=by_action,
            by_hour=dict(sorted(by_hour.items())),
            validation_attempts=attempts or 0,
            successful_attempts=successes or 0,
            unique_ips=unique_ips or 0,
            average_duration=average,
        )

    async def aggregate(
        self, filters: LogFilters, group_by: GroupBy | None = None
    ) -> LogAggregations:
        """Counts, success rate, average duration and peak hour over matching logs."""
        conditions = build_conditions(filters)
        summary = await self.summary(filters)
        return aggregations_from_counts(
            summary,
            by_date=await self._count_by(DATE_BUCKET, conditions),
            by_user=await self._count_by(USER_BUCKET, conditions),
            by_code=await self._count_by(UsageLog.code, conditions),
            group_by=group_by,
        )

    async def stats(self, date_range: DateRange | None = None) -> LogStats:
        """Window statistics for the stats action."""
        summary = await self.summary(LogFilters(date_range=date_range))
        return stats_from_summary(summary, date_range)

    async def bulk_delete(self, log_ids: Sequence[UUID] | None) -> int:
        """
        Delete logs by id.

        Raises:
            InvalidInputError: empty id list
        """
        if not log_ids:
            raise InvalidInputError("Invalid log IDs provided")

        try:
            result = await self.session.execute(
                delete(UsageLog)
                .where(UsageLog.id.in_(list(log_ids)))
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_error("database_error", "bulk_delete_logs")
            raise

        deleted = result.rowcount or 0
        metrics.logs_bulk_modified_total.labels(operation="delete").inc(deleted)
        logger.info("activity_logs_deleted", requested=len(log_ids), deleted=deleted)
        return deleted

    async def bulk_update(self, updates: Sequence[LogFieldUpdate] | None) -> int:
        """
        Apply per-row updates to details/success/duration_ms/metadata.

        All rows change in one transaction or none do.

        Raises:
            InvalidInputError: empty update list
        """
        if not updates:
            raise InvalidInputError("Invalid updates provided")

        updated = 0
        try:
            for change in updates:
                values: dict[str, object] = {}
                for name in change.fields_set:
                    target = "log_metadata" if name == "metadata" else name
                    values[target] = getattr(change, name)

                result = await self.session.execute(
                    update(UsageLog)
                    .where(UsageLog.id == change.log_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                updated += result.rowcount or 0
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_error("database_error", "bulk_update_logs")
            raise

        metrics.logs_bulk_modified_total.labels(operation="update").inc(updated)
        logger.info("activity_logs_updated", requested=len(updates), updated=updated)
        return updated

"""
Status API routes - Health checks for the access API and its database.

/api/status is public (no auth) for status page aggregation and is cached
briefly to prevent abuse. /api/admin/database-status is the admin
diagnostics view.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from openstream.api.dependencies import (
    get_access_code_service,
    get_activity_log_service,
    require_admin,
)
from openstream.config import settings
from openstream.db.migration_runner import check_migrations_status
from openstream.db.session import get_write_session
from openstream.observability.logging import get_logger
from openstream.services.access_codes import AccessCodeService
from openstream.services.activity_logs import ActivityLogService
from openstream.services.report_scheduler import get_scheduler_status

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

DEGRADED_LATENCY_THRESHOLD = 1000  # ms
DIAGNOSTIC_LOG_SAMPLE = 100

# Rate limiting: cache last result for 10 seconds
_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Status of a single dependency."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /api/status endpoint."""

    service: str
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


class CodeSample(BaseModel):
    """Active code row in the diagnostics view."""

    code: str
    created_at: datetime
    expires_at: datetime
    status: str


class LogSample(BaseModel):
    """Usage log row in the diagnostics view; user agents are shortened."""

    code: str
    action: str
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None


class CodeDiagnostics(BaseModel):
    count: int
    sample: list[CodeSample]


class LogDiagnostics(BaseModel):
    total: int
    withIP: int
    uniqueIPs: int
    sample: list[LogSample]


class MigrationDiagnostics(BaseModel):
    current: str | None = None
    head: str | None = None
    pending: bool = False
    error: str | None = None


class DatabaseStatusResponse(BaseModel):
    """Response for /api/admin/database-status."""

    success: bool = True
    connectionTest: str
    accessCodes: CodeDiagnostics | None = None
    usageLogs: LogDiagnostics | None = None
    migrations: MigrationDiagnostics
    scheduler: dict[str, Any]
    error: str | None = None


async def check_postgresql() -> ProviderStatus:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with get_write_session() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    status = (
        StatusLevel.DEGRADED if latency_ms > DEGRADED_LATENCY_THRESHOLD else StatusLevel.OPERATIONAL
    )
    return ProviderStatus(
        status=status,
        latency_ms=latency_ms,
        last_check=timestamp,
        message="High latency" if status == StatusLevel.DEGRADED else None,
    )


async def check_migrations() -> ProviderStatus:
    """Compare the applied schema revision with the Alembic head."""
    timestamp = datetime.now(UTC).isoformat()
    migration_status = await asyncio.to_thread(check_migrations_status)

    if migration_status.error is not None:
        return ProviderStatus(
            status=StatusLevel.OUTAGE, last_check=timestamp, message=migration_status.error
        )
    if migration_status.pending:
        return ProviderStatus(
            status=StatusLevel.DEGRADED,
            last_check=timestamp,
            message=f"Pending migrations (at {migration_status.current_revision})",
        )
    return ProviderStatus(status=StatusLevel.OPERATIONAL, last_check=timestamp)


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from dependency statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/api/status", response_model=ServiceStatusResponse)
async def get_status() -> ServiceStatusResponse:
    """
    Get service status.

    Public endpoint (no auth). Rate limited via 10-second cache.
    """
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    postgresql_status, migrations_status = await asyncio.gather(
        check_postgresql(), check_migrations()
    )
    providers = {"postgresql": postgresql_status, "migrations": migrations_status}

    response = ServiceStatusResponse(
        service=settings.service_name,
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )
    _status_cache[cache_key] = (now, response)
    return response


@router.get(
    "/api/admin/database-status",
    response_model=DatabaseStatusResponse,
    dependencies=[Depends(require_admin)],
)
async def database_status(
    codes: AccessCodeService = Depends(get_access_code_service),
    logs: ActivityLogService = Depends(get_activity_log_service),
) -> DatabaseStatusResponse:
    """Database diagnostics: connectivity, sample rows and schema revision."""
    migration_status = await asyncio.to_thread(check_migrations_status)
    migrations = MigrationDiagnostics(
        current=migration_status.current_revision,
        head=migration_status.head_revision,
        pending=migration_status.pending,
        error=migration_status.error,
    )

    try:
        active = await codes.list_active()
        recent = await logs.recent(limit=DIAGNOSTIC_LOG_SAMPLE)
    except SQLAlchemyError as e:
        logger.error("database_status_check_failed", error=str(e), exc_info=True)
        return DatabaseStatusResponse(
            success=False,
            connectionTest="Failed",
            migrations=migrations,
            scheduler=get_scheduler_status(),
            error=str(e),
        )

    with_ip = [e for e in recent if e.ip_address and e.ip_address.strip()]
    return DatabaseStatusResponse(
        connectionTest="Success",
        accessCodes=CodeDiagnostics(
            count=len(active),
            sample=[
                CodeSample(
                    code=c.code,
                    created_at=c.created_at,
                    expires_at=c.expires_at,
                    status=c.status.value,
                )
                for c in active[:3]
            ],
        ),
        usageLogs=LogDiagnostics(
            total=len(recent),
            withIP=len(with_ip),
            uniqueIPs=len({e.ip_address for e in with_ip}),
            sample=[
                LogSample(
                    code=e.code,
                    action=e.action.value,
                    timestamp=e.timestamp,
                    ip_address=e.ip_address,
                    user_agent=f"{e.user_agent[:50]}..." if e.user_agent else None,
                )
                for e in with_ip[:5]
            ],
        ),
        migrations=migrations,
        scheduler=get_scheduler_status(),
    )

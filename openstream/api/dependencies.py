"""
FastAPI Dependencies - Admin authentication, client identity and services.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from openstream.config import get_settings
from openstream.db.session import get_read_db, get_write_db
from openstream.services.access_codes import AccessCodeService
from openstream.services.activity_logs import ActivityLogService
from openstream.services.admin_auth import AdminAuthService
from openstream.services.analytics import AnalyticsService
from openstream.services.reports import ReportService

UNKNOWN_CLIENT = "unknown"


# ============================================================================
# Admin Authentication
# ============================================================================


def get_admin_auth_service() -> AdminAuthService:
    """Get admin auth service instance."""
    return AdminAuthService(admin_token=get_settings().ADMIN_TOKEN)


async def require_admin(
    authorization: str | None = Header(None),
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> None:
    """
    Require `Authorization: Bearer <ADMIN_TOKEN>`.

    Raises:
        AuthenticationError: rendered as 401 {"error": "Unauthorized"}
    """
    auth_service.require(authorization)


# ============================================================================
# Client Identity
# ============================================================================


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For entry, else X-Real-IP, else "unknown"."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT


def get_user_agent(user_agent: str | None = Header(None)) -> str:
    """User-Agent header or "unknown"."""
    return user_agent or UNKNOWN_CLIENT


# ============================================================================
# Services
# ============================================================================


def get_access_code_service(db: AsyncSession = Depends(get_write_db)) -> AccessCodeService:
    """Access code service on the primary database."""
    return AccessCodeService(db)


def get_activity_log_service(db: AsyncSession = Depends(get_write_db)) -> ActivityLogService:
    """Activity log service; writes (bulk delete/update) need the primary."""
    return ActivityLogService(db)


def get_log_reader(db: AsyncSession = Depends(get_read_db)) -> ActivityLogService:
    """Activity log service for read-only endpoints (replica when configured)."""
    return ActivityLogService(db)


def get_analytics_service(db: AsyncSession = Depends(get_read_db)) -> AnalyticsService:
    """Analytics service on the read database."""
    return AnalyticsService(db)


def get_report_service(db: AsyncSession = Depends(get_write_db)) -> ReportService:
    """Report service on the primary database."""
    return ReportService(db)

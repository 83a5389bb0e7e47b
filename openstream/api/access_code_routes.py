"""
Access Code Routes - Generate, validate, revoke and the admin overview.

NO DICTIONARIES - All requests/responses use Pydantic models.

POST /api/access-codes dispatches on the `action` field of the body.
`validate` is public; `generate` and `revoke` need the admin token.
"""

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse

from openstream.api.dependencies import (
    get_access_code_service,
    get_activity_log_service,
    get_admin_auth_service,
    get_client_ip,
    get_user_agent,
    require_admin,
)
from openstream.exceptions import CodeValidationError, InvalidInputError
from openstream.models.api import (
    AccessCodeActionRequest,
    AccessCodeItem,
    AdminOverviewResponse,
    GenerateCodeRequest,
    GenerateCodeResponse,
    RevokeCodeRequest,
    RevokeCodeResponse,
    UsageLogItem,
    ValidateCodeRequest,
    ValidateCodeResponse,
)
from openstream.models.domain import AccessCodeData, LogEntry
from openstream.services.access_codes import AccessCodeService
from openstream.services.activity_logs import ActivityLogService
from openstream.services.admin_auth import AdminAuthService

router = APIRouter(tags=["access-codes"])

ADMIN_OVERVIEW_LOG_LIMIT = 50


def code_to_item(code: AccessCodeData) -> AccessCodeItem:
    """Domain code to admin listing row."""
    return AccessCodeItem(
        code=code.code,
        expires_at=code.expires_at,
        created_at=code.created_at,
        used_at=code.used_at,
        used_by=code.used_by,
        prefix=code.prefix,
        status=code.status,
        auto_expire_on_use=code.auto_expire_on_use,
        max_uses=code.max_uses,
        current_uses=code.current_uses,
    )


def entry_to_item(entry: LogEntry) -> UsageLogItem:
    """Domain log entry to response row."""
    return UsageLogItem(
        id=entry.id,
        code=entry.code,
        action=entry.action,
        timestamp=entry.timestamp,
        details=entry.details,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        success=entry.success,
        outcome=entry.outcome,
        duration_ms=entry.duration_ms,
        metadata=entry.metadata,
    )


@router.post(
    "/api/access-codes",
    response_model=GenerateCodeResponse | ValidateCodeResponse | RevokeCodeResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def access_code_action(
    request: AccessCodeActionRequest,
    authorization: str | None = Header(None),
    client_ip: str = Depends(get_client_ip),
    user_agent: str = Depends(get_user_agent),
    service: AccessCodeService = Depends(get_access_code_service),
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> GenerateCodeResponse | ValidateCodeResponse | RevokeCodeResponse | JSONResponse:
    """
    Access code actions.

    generate (admin): create a code with duration/prefix/reuse policy.
    validate (public): redeem a code; failures answer 400 {valid: false, error}.
    revoke (admin): invalidate a code; repeat revocations are no-ops.
    """
    if isinstance(request, ValidateCodeRequest):
        return await _validate(request, client_ip, user_agent, service)

    auth_service.require(authorization)

    if isinstance(request, GenerateCodeRequest):
        return await _generate(request, service)
    return await _revoke(request, service)


async def _generate(
    request: GenerateCodeRequest, service: AccessCodeService
) -> GenerateCodeResponse:
    code = await service.generate(
        duration_minutes=request.duration,
        prefix=request.prefix,
        auto_expire_on_use=request.auto_expire,
        max_uses=request.max_uses,
    )
    return GenerateCodeResponse(
        code=code.code,
        expires_at=code.expires_at,
        expiration_minutes=code.duration_minutes,
        prefix=code.prefix,
        auto_expire=code.auto_expire_on_use,
        max_uses=code.max_uses,
    )


async def _validate(
    request: ValidateCodeRequest,
    client_ip: str,
    user_agent: str,
    service: AccessCodeService,
) -> ValidateCodeResponse | JSONResponse:
    await service.ensure_cleanup()
    try:
        await service.validate(request.code, ip_address=client_ip, user_agent=user_agent)
    except (CodeValidationError, InvalidInputError) as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ValidateCodeResponse(valid=False, error=e.message).model_dump(
                exclude_none=True
            ),
        )

    return ValidateCodeResponse(valid=True, message="Access code validated successfully")


async def _revoke(request: RevokeCodeRequest, service: AccessCodeService) -> RevokeCodeResponse:
    result = await service.revoke(request.code)
    return RevokeCodeResponse(
        message="Code revoked successfully",
        code=result.code,
        status=result.status,
    )


@router.get(
    "/api/access-codes",
    response_model=AdminOverviewResponse,
    response_model_by_alias=True,
)
async def admin_overview(
    action: str | None = Query(None),
    _: None = Depends(require_admin),
    service: AccessCodeService = Depends(get_access_code_service),
    logs: ActivityLogService = Depends(get_activity_log_service),
) -> AdminOverviewResponse | JSONResponse:
    """
    Admin overview: active codes, total count and recent usage logs.

    Only `?action=admin` is supported.
    """
    if action != "admin":
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid action"},
        )

    await service.ensure_cleanup()
    active = await service.list_active()
    total = await service.count_total()
    recent = await logs.recent(limit=ADMIN_OVERVIEW_LOG_LIMIT)

    return AdminOverviewResponse(
        active_codes=[code_to_item(c) for c in active],
        total_codes=total,
        usage_logs=[entry_to_item(e) for e in recent],
    )

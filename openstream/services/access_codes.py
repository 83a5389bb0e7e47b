"""
Access Code Service - Generation, redemption and revocation of access codes.

NO DICTIONARIES - All operations use strongly typed domain models.

Every state transition is a single conditional UPDATE guarded on the current
status; the matching usage log row is written in the same transaction.
"""

import secrets
import string
import time
from datetime import UTC, datetime, timedelta
from typing import ClassVar

from sqlalchemy import Update, and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from openstream.config import settings
from openstream.db.models import AccessCode, UsageLog
from openstream.exceptions import (
    CodeAlreadyUsedError,
    CodeExpiredError,
    CodeGenerationError,
    CodeNotFoundError,
    CodeRevokedError,
    CodeValidationError,
    InvalidDurationError,
    InvalidInputError,
    ResourceNotFoundError,
    UsageLimitReachedError,
)
from openstream.models.api import CodeStatus, LogAction, ValidationOutcome
from openstream.models.domain import (
    AccessCodeData,
    RevocationResult,
    UsageStatistics,
    ValidationResult,
    code_state,
)
from openstream.observability.logging import get_logger
from openstream.observability.metrics import metrics
from openstream.observability.tracing import trace_operation

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def clean_prefix(prefix: str | None, max_length: int | None = None) -> str | None:
    """Upper-case, keep only A-Z0-9, truncate. Returns None when nothing is left."""
    if not prefix:
        return None
    limit = settings.code_prefix_max_length if max_length is None else max_length
    cleaned = "".join(ch for ch in prefix.upper() if ch in CODE_ALPHABET)[:limit]
    return cleaned or None


def generate_code(prefix: str | None = None, length: int | None = None) -> str:
    """Build a code from the cleaned prefix plus CSPRNG characters from A-Z0-9."""
    total = settings.code_length if length is None else length
    head = clean_prefix(prefix) or ""
    tail = "".join(secrets.choice(CODE_ALPHABET) for _ in range(total - len(head)))
    return head + tail


def describe_generation(
    duration_minutes: int,
    prefix: str | None,
    auto_expire_on_use: bool,
    max_uses: int | None,
) -> str:
    """Details text of a `generated` log row."""
    extras: list[str] = []
    if prefix:
        extras.append(f"prefix: {prefix}")
    if not auto_expire_on_use:
        extras.append("reusable")
    if max_uses is not None:
        extras.append(f"max uses: {max_uses}")
    suffix = f" ({', '.join(extras)})" if extras else ""
    return f"Expires in {duration_minutes} minutes{suffix}"


def normalize_code(code: str | None) -> str:
    """Strip and upper-case a submitted code; empty input is rejected."""
    normalized = (code or "").strip().upper()
    if not normalized:
        raise InvalidInputError("Code is required")
    return normalized


class AccessCodeService:
    """
    Access code lifecycle.

    State machine:
        ACTIVE -> USED (single-use redeemed) | EXHAUSTED (max uses reached)
               | EXPIRED (past expires_at)
        ACTIVE | USED | EXHAUSTED -> REVOKED
    Terminal states never transition again.
    """

    # Process-local throttle for ensure_cleanup()
    _last_cleanup: ClassVar[float] = 0.0

    def __init__(self, session: AsyncSession) -> None:
        """Initialize access code service with database session."""
        self.session = session

    # ========================================================================
    # Generation
    # ========================================================================

    async def generate(
        self,
        duration_minutes: int | None = None,
        prefix: str | None = None,
        auto_expire_on_use: bool = True,
        max_uses: int | None = None,
        created_by: str = "admin",
    ) -> AccessCodeData:
        """
        Create a new access code and its `generated` log row.

        Raises:
            InvalidDurationError: duration outside [1, code_max_duration_minutes]
            InvalidInputError: max_uses outside [1, code_max_uses_limit]
            CodeGenerationError: no unique code after the configured attempts
        """
        duration = (
            settings.code_default_duration_minutes if duration_minutes is None else duration_minutes
        )
        if duration < 1 or duration > settings.code_max_duration_minutes:
            raise InvalidDurationError(duration, settings.code_max_duration_minutes)

        if max_uses is not None and not 1 <= max_uses <= settings.code_max_uses_limit:
            raise InvalidInputError(
                f"maxUses must be between 1 and {settings.code_max_uses_limit}, got {max_uses}"
            )

        cleaned_prefix = clean_prefix(prefix)
        details = describe_generation(duration, cleaned_prefix, auto_expire_on_use, max_uses)

        for attempt in range(1, settings.code_generation_attempts + 1):
            now = _utc_now()
            access_code = AccessCode(
                code=generate_code(cleaned_prefix),
                prefix=cleaned_prefix,
                created_at=now,
                expires_at=now + timedelta(minutes=duration),
                duration_minutes=duration,
                created_by=created_by,
                auto_expire_on_use=auto_expire_on_use,
                max_uses=max_uses,
                current_uses=0,
                status=CodeStatus.ACTIVE.value,
            )
            self.session.add(access_code)
            self.session.add(
                UsageLog(
                    code=access_code.code,
                    action=LogAction.GENERATED.value,
                    timestamp=now,
                    details=details,
                )
            )

            try:
                await self.session.flush()
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                logger.warning(
                    "access_code_collision",
                    attempt=attempt,
                    error=str(e),
                )
                continue

            metrics.record_generation(reusable=not auto_expire_on_use)
            logger.info(
                "access_code_generated",
                code=access_code.code,
                duration_minutes=duration,
                prefix=cleaned_prefix,
                auto_expire_on_use=auto_expire_on_use,
                max_uses=max_uses,
                created_by=created_by,
            )
            return self._code_to_domain(access_code)

        logger.error("access_code_generation_exhausted", attempts=settings.code_generation_attempts)
        raise CodeGenerationError(settings.code_generation_attempts)

    # ========================================================================
    # Redemption
    # ========================================================================

    async def validate(
        self,
        code: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ValidationResult:
        """
        Redeem an access code.

        The validity check and the usage increment are one conditional UPDATE,
        so two concurrent redemptions of a single-use code cannot both pass.

        Raises:
            InvalidInputError: empty code
            CodeNotFoundError, CodeRevokedError, CodeExpiredError,
            CodeAlreadyUsedError, UsageLimitReachedError: redemption refused
        """
        normalized = normalize_code(code)
        started = time.perf_counter()
        now = _utc_now()
        client = ip_address or "unknown"

        with trace_operation("access_code_validation", code=normalized) as span:
            try:
                result = await self.session.execute(
                    self._redeem_statement(normalized, client, now)
                )
                row = result.first()

                if row is not None:
                    elapsed_ms = int((time.perf_counter() - started) * 1000)
                    usage_type = "One-time use" if row.auto_expire_on_use else "Reusable"
                    self.session.add(
                        UsageLog(
                            code=normalized,
                            action=LogAction.USED.value,
                            timestamp=now,
                            details=f"Used by {client} - {usage_type}",
                            ip_address=client,
                            user_agent=user_agent,
                            success=True,
                            outcome=ValidationOutcome.SUCCESS.value,
                            duration_ms=elapsed_ms,
                        )
                    )
                    await self.session.commit()
                else:
                    error = await self._classify_failure(normalized, now)
                    if settings.log_failed_validations:
                        self.session.add(
                            UsageLog(
                                code=normalized[:16],
                                action=LogAction.USED.value,
                                timestamp=now,
                                details=f"Validation failed: {error.message}",
                                ip_address=client,
                                user_agent=user_agent,
                                success=False,
                                outcome=error.outcome,
                                duration_ms=int((time.perf_counter() - started) * 1000),
                            )
                        )
                    await self.session.commit()
            except SQLAlchemyError:
                await self.session.rollback()
                metrics.record_error("database_error", "validate_access_code")
                raise

            duration = time.perf_counter() - started
            if row is None:
                span.set_attribute("outcome", error.outcome)
                metrics.record_validation(error.outcome, duration)
                logger.info(
                    "access_code_validation_failed",
                    code=normalized,
                    outcome=error.outcome,
                    ip_address=client,
                )
                raise error

            span.set_attribute("outcome", ValidationOutcome.SUCCESS.value)
            metrics.record_validation(ValidationOutcome.SUCCESS.value, duration)
            logger.info(
                "access_code_validated",
                code=normalized,
                ip_address=client,
                status=row.status,
                current_uses=row.current_uses,
                max_uses=row.max_uses,
            )
            return ValidationResult(
                code=normalized,
                status=CodeStatus(row.status),
                current_uses=row.current_uses,
                max_uses=row.max_uses,
            )

    @staticmethod
    def _redeem_statement(code: str, client: str, now: datetime) -> Update:
        """Conditional increment; matches only a currently valid code."""
        return (
            update(AccessCode)
            .where(
                AccessCode.code == code,
                AccessCode.status == CodeStatus.ACTIVE.value,
                AccessCode.expires_at > now,
                or_(AccessCode.auto_expire_on_use.is_(False), AccessCode.current_uses == 0),
                or_(AccessCode.max_uses.is_(None), AccessCode.current_uses < AccessCode.max_uses),
            )
            .values(
                current_uses=AccessCode.current_uses + 1,
                used_at=func.coalesce(AccessCode.used_at, now),
                used_by=func.coalesce(AccessCode.used_by, client),
                status=case(
                    (AccessCode.auto_expire_on_use.is_(True), CodeStatus.USED.value),
                    (
                        and_(
                            AccessCode.max_uses.is_not(None),
                            AccessCode.current_uses + 1 >= AccessCode.max_uses,
                        ),
                        CodeStatus.EXHAUSTED.value,
                    ),
                    else_=CodeStatus.ACTIVE.value,
                ),
            )
            .returning(
                AccessCode.code,
                AccessCode.status,
                AccessCode.current_uses,
                AccessCode.max_uses,
                AccessCode.auto_expire_on_use,
            )
            .execution_options(synchronize_session=False)
        )

    async def _classify_failure(self, code: str, now: datetime) -> CodeValidationError:
        """
        Explain why a redemption matched no row.

        Order: not found, revoked, expired, already used, usage limit.
        A still-active code found past expiry is moved to EXPIRED here.
        """
        access_code = await self._find_code(code)
        if access_code is None:
            return CodeNotFoundError(code)

        snapshot = self._code_to_domain(access_code)
        if snapshot.status == CodeStatus.REVOKED:
            return CodeRevokedError(code)

        if snapshot.status == CodeStatus.EXPIRED or now >= snapshot.expires_at:
            if snapshot.status == CodeStatus.ACTIVE:
                await self._expire_one(code, now, "Expired on validation attempt")
            return CodeExpiredError(code)

        state = code_state(snapshot, now)
        if state == CodeStatus.EXHAUSTED:
            return UsageLimitReachedError(code, snapshot.max_uses or snapshot.current_uses)
        # USED, or ACTIVE when a concurrent redemption won the row
        return CodeAlreadyUsedError(code)

    async def _expire_one(self, code: str, now: datetime, details: str) -> bool:
        """ACTIVE -> EXPIRED for one code; logs only when this call made the change."""
        result = await self.session.execute(
            update(AccessCode)
            .where(
                AccessCode.code == code,
                AccessCode.status == CodeStatus.ACTIVE.value,
                AccessCode.expires_at <= now,
            )
            .values(status=CodeStatus.EXPIRED.value)
            .returning(AccessCode.code)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            return False

        self.session.add(
            UsageLog(code=code, action=LogAction.EXPIRED.value, timestamp=now, details=details)
        )
        metrics.record_expiry("validation")
        logger.info("access_code_expired", code=code, source="validation")
        return True

    # ========================================================================
    # Revocation
    # ========================================================================

    async def revoke(self, code: str | None, revoked_by: str = "admin") -> RevocationResult:
        """
        Revoke an access code.

        Revoking an already revoked or expired code is a no-op success.

        Raises:
            InvalidInputError: empty code
            ResourceNotFoundError: unknown code
        """
        normalized = normalize_code(code)
        now = _utc_now()

        try:
            result = await self.session.execute(
                update(AccessCode)
                .where(
                    AccessCode.code == normalized,
                    or_(
                        AccessCode.status.in_(
                            [CodeStatus.USED.value, CodeStatus.EXHAUSTED.value]
                        ),
                        and_(
                            AccessCode.status == CodeStatus.ACTIVE.value,
                            AccessCode.expires_at > now,
                        ),
                    ),
                )
                .values(status=CodeStatus.REVOKED.value, revoked_at=now)
                .returning(AccessCode.code)
                .execution_options(synchronize_session=False)
            )
            if result.scalar_one_or_none() is not None:
                self.session.add(
                    UsageLog(
                        code=normalized,
                        action=LogAction.REVOKED.value,
                        timestamp=now,
                        details=f"Manually revoked by {revoked_by}",
                    )
                )
                await self.session.commit()
                metrics.codes_revoked_total.inc()
                logger.info("access_code_revoked", code=normalized, revoked_by=revoked_by)
                return RevocationResult(code=normalized, status=CodeStatus.REVOKED, changed=True)
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_error("database_error", "revoke_access_code")
            raise

        access_code = await self._find_code(normalized)
        if access_code is None:
            raise ResourceNotFoundError("Access code", normalized)

        state = code_state(self._code_to_domain(access_code), now)
        logger.info("access_code_revoke_noop", code=normalized, status=state.value)
        return RevocationResult(code=normalized, status=state, changed=False)

    # ========================================================================
    # Cleanup
    # ========================================================================

    async def cleanup_expired(self) -> int:
        """Move every time-expired ACTIVE code to EXPIRED, one log row each."""
        now = _utc_now()
        try:
            result = await self.session.execute(
                update(AccessCode)
                .where(
                    AccessCode.status == CodeStatus.ACTIVE.value,
                    AccessCode.expires_at <= now,
                )
                .values(status=CodeStatus.EXPIRED.value)
                .returning(AccessCode.code)
                .execution_options(synchronize_session=False)
            )
            expired_codes = list(result.scalars().all())

            for expired in expired_codes:
                self.session.add(
                    UsageLog(
                        code=expired,
                        action=LogAction.EXPIRED.value,
                        timestamp=now,
                        details="Automatically expired by cleanup",
                    )
                )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_error("database_error", "cleanup_expired_codes")
            raise

        if expired_codes:
            metrics.record_expiry("cleanup", len(expired_codes))
            logger.info("access_codes_cleaned_up", count=len(expired_codes))
        return len(expired_codes)

    async def ensure_cleanup(self) -> int:
        """Run cleanup_expired() at most once per cleanup interval per process."""
        current = time.monotonic()
        if (
            AccessCodeService._last_cleanup
            and current - AccessCodeService._last_cleanup < settings.cleanup_interval_seconds
        ):
            return 0

        expired = await self.cleanup_expired()
        AccessCodeService._last_cleanup = current
        return expired

    # ========================================================================
    # Reads
    # ========================================================================

    async def get(self, code: str) -> AccessCodeData:
        """Fetch one code or raise ResourceNotFoundError."""
        normalized = normalize_code(code)
        access_code = await self._find_code(normalized)
        if access_code is None:
            raise ResourceNotFoundError("Access code", normalized)
        return self._code_to_domain(access_code)

    async def list_active(self) -> list[AccessCodeData]:
        """Codes still redeemable now, newest first."""
        now = _utc_now()
        result = await self.session.execute(
            select(AccessCode)
            .where(
                AccessCode.status == CodeStatus.ACTIVE.value,
                AccessCode.expires_at > now,
            )
            .order_by(AccessCode.created_at.desc())
        )
        return [self._code_to_domain(c) for c in result.scalars().all()]

    async def count_total(self) -> int:
        """Number of codes ever generated."""
        result = await self.session.execute(select(func.count()).select_from(AccessCode))
        return result.scalar() or 0

    async def usage_statistics(self) -> UsageStatistics:
        """Population counts across all codes."""
        now = _utc_now()
        live = and_(AccessCode.status == CodeStatus.ACTIVE.value, AccessCode.expires_at > now)
        expired = or_(
            AccessCode.status == CodeStatus.EXPIRED.value,
            and_(AccessCode.status == CodeStatus.ACTIVE.value, AccessCode.expires_at <= now),
        )
        result = await self.session.execute(
            select(
                func.count(),
                func.count().filter(live),
                func.count().filter(AccessCode.used_at.is_not(None)),
                func.count().filter(expired),
                func.count().filter(AccessCode.max_uses.is_not(None)),
                func.coalesce(func.avg(AccessCode.current_uses), 0),
            ).select_from(AccessCode)
        )
        total, active, used, expired_count, limited, average = result.one()
        return UsageStatistics(
            total_codes=total or 0,
            active_codes=active or 0,
            used_codes=used or 0,
            expired_codes=expired_count or 0,
            codes_with_usage_limit=limited or 0,
            average_uses_per_code=round(float(average or 0), 2),
        )

    async def top_used(self, limit: int = 10) -> list[AccessCodeData]:
        """Most redeemed codes."""
        result = await self.session.execute(
            select(AccessCode)
            .where(AccessCode.current_uses > 0)
            .order_by(AccessCode.current_uses.desc(), AccessCode.created_at.desc())
            .limit(limit)
        )
        return [self._code_to_domain(c) for c in result.scalars().all()]

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _find_code(self, code: str) -> AccessCode | None:
        result = await self.session.execute(select(AccessCode).where(AccessCode.code == code))
        return result.scalar_one_or_none()

    @staticmethod
    def _code_to_domain(access_code: AccessCode) -> AccessCodeData:
        """Convert ORM model to domain model."""
        return AccessCodeData(
            code=access_code.code,
            created_at=access_code.created_at,
            expires_at=access_code.expires_at,
            duration_minutes=access_code.duration_minutes,
            status=CodeStatus(access_code.status),
            auto_expire_on_use=access_code.auto_expire_on_use,
            max_uses=access_code.max_uses,
            current_uses=access_code.current_uses or 0,
            prefix=access_code.prefix,
            created_by=access_code.created_by or "admin",
            used_at=access_code.used_at,
            used_by=access_code.used_by,
            revoked_at=access_code.revoked_at,
        )

"""
Tests for AccessCodeService.

Covers generation policy, redemption outcomes, revocation and cleanup with
a mocked AsyncSession.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from openstream.db.models import AccessCode, UsageLog
from openstream.exceptions import (
    CodeAlreadyUsedError,
    CodeExpiredError,
    CodeGenerationError,
    CodeNotFoundError,
    CodeRevokedError,
    InvalidDurationError,
    InvalidInputError,
    ResourceNotFoundError,
    UsageLimitReachedError,
)
from openstream.models.api import CodeStatus, LogAction
from openstream.services.access_codes import (
    CODE_ALPHABET,
    AccessCodeService,
    clean_prefix,
    describe_generation,
    generate_code,
    normalize_code,
)
from tests.conftest import create_mock_code, make_result


def added_objects(session: AsyncMock, kind: type) -> list:
    """Objects of one ORM type passed to session.add()."""
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], kind)]


def redeemed_row(
    status: CodeStatus = CodeStatus.USED,
    current_uses: int = 1,
    max_uses: int | None = None,
    auto_expire_on_use: bool = True,
) -> MagicMock:
    """RETURNING row of a successful redemption."""
    row = MagicMock()
    row.code = "ABCD1234"
    row.status = status.value
    row.current_uses = current_uses
    row.max_uses = max_uses
    row.auto_expire_on_use = auto_expire_on_use
    return row


class TestCodeHelpers:
    """Tests for the pure code helpers."""

    def test_clean_prefix_uppercases_and_strips_symbols(self):
        assert clean_prefix("v-i!p") == "VIP"

    def test_clean_prefix_truncates_to_max_length(self):
        assert clean_prefix("abcdefgh") == "ABCD"

    def test_clean_prefix_empty_becomes_none(self):
        assert clean_prefix(None) is None
        assert clean_prefix("") is None
        assert clean_prefix("---") is None

    def test_generate_code_length_and_alphabet(self):
        code = generate_code()
        assert len(code) == 8
        assert all(ch in CODE_ALPHABET for ch in code)

    def test_generate_code_keeps_prefix(self):
        code = generate_code("vip")
        assert code.startswith("VIP")
        assert len(code) == 8

    def test_describe_generation_plain(self):
        assert describe_generation(10, None, True, None) == "Expires in 10 minutes"

    def test_describe_generation_with_options(self):
        text = describe_generation(60, "VIP", False, 5)
        assert text == "Expires in 60 minutes (prefix: VIP, reusable, max uses: 5)"

    def test_normalize_code(self):
        assert normalize_code("  abcd1234 ") == "ABCD1234"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_normalize_code_rejects_empty(self, value):
        with pytest.raises(InvalidInputError, match="Code is required"):
            normalize_code(value)


class TestGenerate:
    """Tests for AccessCodeService.generate()."""

    async def test_generate_defaults(self, access_code_service, db_session):
        code = await access_code_service.generate()

        assert len(code.code) == 8
        assert code.duration_minutes == 10
        assert code.status == CodeStatus.ACTIVE
        assert code.auto_expire_on_use is True
        assert code.current_uses == 0
        assert (code.expires_at - code.created_at).total_seconds() == 600
        db_session.commit.assert_awaited_once()

        logs = added_objects(db_session, UsageLog)
        assert len(logs) == 1
        assert logs[0].action == LogAction.GENERATED.value
        assert logs[0].details == "Expires in 10 minutes"

    async def test_generate_with_prefix_and_limits(self, access_code_service, db_session):
        code = await access_code_service.generate(
            duration_minutes=60, prefix="vip", auto_expire_on_use=False, max_uses=3
        )

        assert code.code.startswith("VIP")
        assert code.prefix == "VIP"
        assert code.max_uses == 3
        assert code.auto_expire_on_use is False
        codes = added_objects(db_session, AccessCode)
        assert codes[0].duration_minutes == 60

    @pytest.mark.parametrize("duration", [0, -5, 525601])
    async def test_generate_rejects_bad_duration(self, access_code_service, db_session, duration):
        with pytest.raises(InvalidDurationError):
            await access_code_service.generate(duration_minutes=duration)
        db_session.add.assert_not_called()

    async def test_generate_accepts_max_duration(self, access_code_service):
        code = await access_code_service.generate(duration_minutes=525600)
        assert code.duration_minutes == 525600

    @pytest.mark.parametrize("max_uses", [0, 1001])
    async def test_generate_rejects_bad_max_uses(self, access_code_service, max_uses):
        with pytest.raises(InvalidInputError):
            await access_code_service.generate(max_uses=max_uses)

    async def test_generate_retries_on_collision(self, access_code_service, db_session):
        db_session.flush = AsyncMock(
            side_effect=[IntegrityError("INSERT", {}, Exception("duplicate")), None]
        )

        code = await access_code_service.generate()

        assert code.status == CodeStatus.ACTIVE
        db_session.rollback.assert_awaited_once()
        assert db_session.flush.await_count == 2

    async def test_generate_gives_up_after_attempts(self, access_code_service, db_session):
        db_session.flush = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("duplicate"))
        )

        with pytest.raises(CodeGenerationError):
            await access_code_service.generate()
        assert db_session.rollback.await_count == 5


class TestValidate:
    """Tests for AccessCodeService.validate()."""

    async def test_validate_success_single_use(self, access_code_service, db_session):
        db_session.execute = AsyncMock(return_value=make_result(first=redeemed_row()))

        result = await access_code_service.validate(
            "abcd1234", ip_address="10.0.0.1", user_agent="pytest"
        )

        assert result.code == "ABCD1234"
        assert result.status == CodeStatus.USED
        assert result.current_uses == 1
        db_session.commit.assert_awaited_once()

        logs = added_objects(db_session, UsageLog)
        assert len(logs) == 1
        assert logs[0].success is True
        assert logs[0].outcome == "success"
        assert logs[0].details == "Used by 10.0.0.1 - One-time use"
        assert logs[0].ip_address == "10.0.0.1"
        assert logs[0].user_agent == "pytest"

    async def test_validate_success_reusable(self, access_code_service, db_session):
        row = redeemed_row(
            status=CodeStatus.ACTIVE, current_uses=2, max_uses=5, auto_expire_on_use=False
        )
        db_session.execute = AsyncMock(return_value=make_result(first=row))

        result = await access_code_service.validate("ABCD1234")

        assert result.status == CodeStatus.ACTIVE
        assert result.max_uses == 5
        logs = added_objects(db_session, UsageLog)
        assert logs[0].details == "Used by unknown - Reusable"

    async def test_validate_unknown_code(self, access_code_service, db_session):
        db_session.execute = AsyncMock(
            side_effect=[make_result(first=None), make_result(scalar_one_or_none=None)]
        )

        with pytest.raises(CodeNotFoundError, match="Invalid access code"):
            await access_code_service.validate("NOPE0000", ip_address="10.0.0.9")

        logs = added_objects(db_session, UsageLog)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].outcome == "invalid"
        db_session.commit.assert_awaited_once()

    async def test_validate_failed_attempt_code_is_truncated(self, access_code_service, db_session):
        db_session.execute = AsyncMock(
            side_effect=[make_result(first=None), make_result(scalar_one_or_none=None)]
        )

        with pytest.raises(CodeNotFoundError):
            await access_code_service.validate("X" * 40)

        logs = added_objects(db_session, UsageLog)
        assert len(logs[0].code) == 16

    async def test_validate_expired_code_transitions_once(
        self, access_code_service, db_session, expired_code
    ):
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(first=None),
                make_result(scalar_one_or_none=expired_code),
                make_result(scalar_one_or_none="ABCD1234"),
            ]
        )

        with pytest.raises(CodeExpiredError, match="This access code has expired"):
            await access_code_service.validate("ABCD1234")

        actions = [log.action for log in added_objects(db_session, UsageLog)]
        assert actions == [LogAction.EXPIRED.value, LogAction.USED.value]

    async def test_validate_expired_code_lost_race_logs_no_transition(
        self, access_code_service, db_session, expired_code
    ):
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(first=None),
                make_result(scalar_one_or_none=expired_code),
                make_result(scalar_one_or_none=None),
            ]
        )

        with pytest.raises(CodeExpiredError):
            await access_code_service.validate("ABCD1234")

        actions = [log.action for log in added_objects(db_session, UsageLog)]
        assert actions == [LogAction.USED.value]

    async def test_validate_used_code(self, access_code_service, db_session, used_code):
        db_session.execute = AsyncMock(
            side_effect=[make_result(first=None), make_result(scalar_one_or_none=used_code)]
        )

        with pytest.raises(CodeAlreadyUsedError, match="This access code already used"):
            await access_code_service.validate("ABCD1234")

    async def test_validate_revoked_code(self, access_code_service, db_session, revoked_code):
        db_session.execute = AsyncMock(
            side_effect=[make_result(first=None), make_result(scalar_one_or_none=revoked_code)]
        )

        with pytest.raises(CodeRevokedError):
            await access_code_service.validate("ABCD1234")

    async def test_validate_exhausted_code(self, access_code_service, db_session):
        exhausted = create_mock_code(auto_expire_on_use=False, max_uses=2, current_uses=2)
        db_session.execute = AsyncMock(
            side_effect=[make_result(first=None), make_result(scalar_one_or_none=exhausted)]
        )

        with pytest.raises(UsageLimitReachedError) as exc_info:
            await access_code_service.validate("ABCD1234")
        assert exc_info.value.max_uses == 2
        assert exc_info.value.outcome == "usage_limit_reached"

    async def test_validate_empty_code_touches_nothing(self, access_code_service, db_session):
        with pytest.raises(InvalidInputError):
            await access_code_service.validate("  ")
        db_session.execute.assert_not_awaited()

    async def test_validate_failed_attempt_logging_can_be_disabled(
        self, access_code_service, db_session
    ):
        db_session.execute = AsyncMock(
            side_effect=[make_result(first=None), make_result(scalar_one_or_none=None)]
        )

        with patch("openstream.services.access_codes.settings.log_failed_validations", False):
            with pytest.raises(CodeNotFoundError):
                await access_code_service.validate("NOPE0000")

        assert added_objects(db_session, UsageLog) == []

    async def test_validate_database_error_rolls_back(self, access_code_service, db_session):
        db_session.execute = AsyncMock(
            side_effect=OperationalError("UPDATE", {}, Exception("connection lost"))
        )

        with pytest.raises(OperationalError):
            await access_code_service.validate("ABCD1234")
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()


class TestRedeemStatement:
    """Tests for the conditional UPDATE that makes a redemption atomic."""

    NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

    def statement(self):
        return AccessCodeService._redeem_statement("ABCD1234", "10.0.0.1", self.NOW).compile(
            dialect=postgresql.dialect()
        )

    def test_matches_only_active_unexpired_code(self):
        """Revoked, used, exhausted and expired rows never match."""
        statement = self.statement()
        sql = str(statement)

        assert sql.startswith("UPDATE access_codes SET")
        assert "access_codes.code = %(code_1)s" in sql
        assert "access_codes.status = %(status_1)s" in sql
        assert "access_codes.expires_at > %(expires_at_1)s" in sql
        assert statement.params["code_1"] == "ABCD1234"
        assert statement.params["status_1"] == CodeStatus.ACTIVE.value
        assert statement.params["expires_at_1"] == self.NOW

    def test_single_use_guard(self):
        """A single-use code matches only while it has never been redeemed."""
        sql = str(self.statement())
        assert "access_codes.auto_expire_on_use IS false OR access_codes.current_uses = " in sql

    def test_usage_limit_guard(self):
        """The increment is refused once current_uses reaches max_uses."""
        sql = str(self.statement())
        assert (
            "access_codes.max_uses IS NULL OR access_codes.current_uses < access_codes.max_uses"
            in sql
        )

    def test_increments_and_advances_status(self):
        statement = self.statement()
        sql = str(statement)

        assert "current_uses=(access_codes.current_uses + " in sql
        assert "used_at=coalesce(access_codes.used_at, " in sql
        assert "status=CASE WHEN (access_codes.auto_expire_on_use IS true)" in sql
        assert "access_codes.max_uses IS NOT NULL" in sql
        assert "RETURNING access_codes.code, access_codes.status" in sql
        assert {CodeStatus.USED.value, CodeStatus.EXHAUSTED.value} <= set(
            statement.params.values()
        )


class TestRevoke:
    """Tests for AccessCodeService.revoke()."""

    async def test_revoke_active_code(self, access_code_service, db_session):
        db_session.execute = AsyncMock(return_value=make_result(scalar_one_or_none="ABCD1234"))

        result = await access_code_service.revoke("abcd1234")

        assert result.changed is True
        assert result.status == CodeStatus.REVOKED
        logs = added_objects(db_session, UsageLog)
        assert logs[0].action == LogAction.REVOKED.value
        assert logs[0].details == "Manually revoked by admin"
        db_session.commit.assert_awaited_once()

    async def test_revoke_is_idempotent(self, access_code_service, db_session, revoked_code):
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(scalar_one_or_none=None),
                make_result(scalar_one_or_none=revoked_code),
            ]
        )

        result = await access_code_service.revoke("ABCD1234")

        assert result.changed is False
        assert result.status == CodeStatus.REVOKED
        assert added_objects(db_session, UsageLog) == []

    async def test_revoke_expired_code_is_noop(self, access_code_service, db_session, expired_code):
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(scalar_one_or_none=None),
                make_result(scalar_one_or_none=expired_code),
            ]
        )

        result = await access_code_service.revoke("ABCD1234")

        assert result.changed is False
        assert result.status == CodeStatus.EXPIRED

    async def test_revoke_unknown_code(self, access_code_service, db_session):
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar_one_or_none=None), make_result(scalar_one_or_none=None)]
        )

        with pytest.raises(ResourceNotFoundError):
            await access_code_service.revoke("NOPE0000")


class TestCleanup:
    """Tests for expiry cleanup."""

    async def test_cleanup_expired_logs_each_code(self, access_code_service, db_session):
        db_session.execute = AsyncMock(return_value=make_result(scalars=["AAAA1111", "BBBB2222"]))

        count = await access_code_service.cleanup_expired()

        assert count == 2
        logs = added_objects(db_session, UsageLog)
        assert [log.code for log in logs] == ["AAAA1111", "BBBB2222"]
        assert all(log.action == LogAction.EXPIRED.value for log in logs)
        db_session.commit.assert_awaited_once()

    async def test_ensure_cleanup_is_throttled(self, access_code_service, db_session):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[]))

        await access_code_service.ensure_cleanup()
        await access_code_service.ensure_cleanup()

        assert db_session.execute.await_count == 1

    async def test_failed_cleanup_is_retried(self, access_code_service, db_session):
        """A failed cleanup does not start the throttle window."""
        db_session.execute = AsyncMock(
            side_effect=[
                OperationalError("UPDATE", {}, Exception("connection lost")),
                make_result(scalars=["AAAA1111"]),
            ]
        )

        with pytest.raises(OperationalError):
            await access_code_service.ensure_cleanup()
        assert AccessCodeService._last_cleanup == 0.0

        assert await access_code_service.ensure_cleanup() == 1
        assert db_session.execute.await_count == 2
        assert AccessCodeService._last_cleanup > 0


class TestReads:
    """Tests for listing and statistics."""

    async def test_list_active(self, access_code_service, db_session, active_code):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[active_code]))

        codes = await access_code_service.list_active()

        assert [c.code for c in codes] == ["ABCD1234"]
        assert codes[0].status == CodeStatus.ACTIVE

    async def test_count_total(self, access_code_service, db_session):
        db_session.execute = AsyncMock(return_value=make_result(scalar=7))
        assert await access_code_service.count_total() == 7

    async def test_usage_statistics(self, access_code_service, db_session):
        db_session.execute = AsyncMock(
            return_value=make_result(one=(10, 4, 5, 3, 2, Decimal("1.456")))
        )

        stats = await access_code_service.usage_statistics()

        assert stats.total_codes == 10
        assert stats.active_codes == 4
        assert stats.used_codes == 5
        assert stats.expired_codes == 3
        assert stats.codes_with_usage_limit == 2
        assert stats.average_uses_per_code == 1.46

    async def test_get_unknown_code(self, access_code_service, db_session):
        with pytest.raises(ResourceNotFoundError):
            await access_code_service.get("NOPE0000")

"""
Tests for exception classes.

Covers messages, HTTP status codes and validation outcomes.
"""

from uuid import uuid4

import pytest

from openstream.exceptions import (
    AccessCodeServiceError,
    AuthenticationError,
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
from openstream.models.api import ValidationOutcome


class TestAccessCodeServiceError:
    """Tests for the base error."""

    def test_is_exception(self):
        assert issubclass(AccessCodeServiceError, Exception)

    def test_message_and_default_status(self):
        error = AccessCodeServiceError("boom")
        assert str(error) == "boom"
        assert error.message == "boom"
        assert error.status_code == 500


class TestValidationErrors:
    """Tests for redemption failures."""

    @pytest.mark.parametrize(
        "error,message,outcome",
        [
            (CodeNotFoundError("X"), "Invalid access code", ValidationOutcome.INVALID),
            (CodeRevokedError("X"), "This access code has been revoked", ValidationOutcome.REVOKED),
            (CodeExpiredError("X"), "This access code has expired", ValidationOutcome.EXPIRED),
            (CodeAlreadyUsedError("X"), "This access code already used", ValidationOutcome.ALREADY_USED),
            (
                UsageLimitReachedError("X", 3),
                "This access code has reached its usage limit",
                ValidationOutcome.USAGE_LIMIT_REACHED,
            ),
        ],
    )
    def test_messages_and_outcomes(self, error, message, outcome):
        """Each failure carries its public message and a known outcome."""
        assert isinstance(error, CodeValidationError)
        assert error.message == message
        assert ValidationOutcome(error.outcome) == outcome
        assert error.status_code == 400
        assert error.code == "X"

    def test_usage_limit_keeps_max_uses(self):
        assert UsageLimitReachedError("X", 3).max_uses == 3


class TestRequestErrors:
    def test_invalid_input_details(self):
        error = InvalidInputError("bad", details=["a", "b"])
        assert error.status_code == 400
        assert error.details == ["a", "b"]

    def test_invalid_duration(self):
        error = InvalidDurationError(0, 525600)
        assert isinstance(error, InvalidInputError)
        assert error.message == "Duration must be between 1 and 525600 minutes, got 0"

    def test_resource_not_found(self):
        report_id = uuid4()
        error = ResourceNotFoundError("Report", report_id)
        assert error.status_code == 404
        assert error.resource_id == report_id
        assert str(report_id) in error.message

    def test_authentication_error(self):
        error = AuthenticationError()
        assert error.status_code == 401
        assert error.message == "Unauthorized"


class TestPersistenceErrors:
    def test_code_generation_error(self):
        error = CodeGenerationError(5)
        assert error.attempts == 5
        assert error.status_code == 500
        assert "5 attempts" in error.message

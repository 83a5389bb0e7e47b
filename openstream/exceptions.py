"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Each exception carries the HTTP status it is rendered with at the API boundary.
"""

from uuid import UUID


class AccessCodeServiceError(Exception):
    """Base exception for all access code service errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ============================================================================
# Access Code Validation Errors
# ============================================================================


class CodeValidationError(AccessCodeServiceError):
    """Raised when an access code cannot be redeemed."""

    status_code = 400
    outcome: str = "invalid"

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


class CodeNotFoundError(CodeValidationError):
    """Raised when the access code does not exist."""

    outcome = "invalid"

    def __init__(self, code: str) -> None:
        super().__init__(code, "Invalid access code")


class CodeRevokedError(CodeValidationError):
    """Raised when the access code was revoked by an admin."""

    outcome = "revoked"

    def __init__(self, code: str) -> None:
        super().__init__(code, "This access code has been revoked")


class CodeExpiredError(CodeValidationError):
    """Raised when the access code is past its expiry time."""

    outcome = "expired"

    def __init__(self, code: str) -> None:
        super().__init__(code, "This access code has expired")


class CodeAlreadyUsedError(CodeValidationError):
    """Raised when a single-use access code was already redeemed."""

    outcome = "already_used"

    def __init__(self, code: str) -> None:
        super().__init__(code, "This access code already used")


class UsageLimitReachedError(CodeValidationError):
    """Raised when a multi-use access code has no redemptions left."""

    outcome = "usage_limit_reached"

    def __init__(self, code: str, max_uses: int) -> None:
        self.max_uses = max_uses
        super().__init__(code, "This access code has reached its usage limit")


# ============================================================================
# Request Errors
# ============================================================================


class InvalidInputError(AccessCodeServiceError):
    """Raised when request input fails validation."""

    status_code = 400

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        self.details = details
        super().__init__(message)


class InvalidDurationError(InvalidInputError):
    """Raised when a code duration falls outside the accepted range."""

    def __init__(self, duration_minutes: int, maximum: int) -> None:
        self.duration_minutes = duration_minutes
        self.maximum = maximum
        super().__init__(
            f"Duration must be between 1 and {maximum} minutes, got {duration_minutes}"
        )


class ResourceNotFoundError(AccessCodeServiceError):
    """Raised when a requested resource doesn't exist."""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str | UUID) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class AuthenticationError(AccessCodeServiceError):
    """Raised when the admin credential is missing or wrong."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


# ============================================================================
# Persistence Errors
# ============================================================================


class CodeGenerationError(AccessCodeServiceError):
    """Raised when no unique code could be produced."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not generate a unique access code after {attempts} attempts")

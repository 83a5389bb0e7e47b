"""
Admin authentication service.

The dashboard authenticates with a single static bearer token configured as
ADMIN_TOKEN. Comparison is constant time.
"""

import secrets

from structlog import get_logger

from openstream.exceptions import AuthenticationError

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer(authorization: str | None) -> str | None:
    """Token from an `Authorization: Bearer <token>` header value."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    return token or None


class AdminAuthService:
    """Admin authentication service."""

    def __init__(self, admin_token: str):
        self.admin_token = admin_token

    def is_authorized(self, authorization: str | None) -> bool:
        """Whether the header carries the configured admin token."""
        token = extract_bearer(authorization)
        if token is None:
            return False
        return secrets.compare_digest(token.encode("utf-8"), self.admin_token.encode("utf-8"))

    def require(self, authorization: str | None) -> None:
        """
        Raise unless the header carries the admin token.

        Raises:
            AuthenticationError: header missing, malformed or wrong token
        """
        if not self.is_authorized(authorization):
            logger.warning(
                "admin_auth_failed",
                header_present=authorization is not None,
            )
            raise AuthenticationError()

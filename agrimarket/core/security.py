"""
JWT verification for lifecycle API callers.

Tokens are issued by the identity service; this module only verifies them
and turns their claims into an :class:`Actor`. ``create_access_token`` exists
for local development and the test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from agrimarket.core.config import get_settings
from agrimarket.core.logging import get_logger
from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.enums import UserRole

logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""
    pass


def create_access_token(
    subject: UUID,
    role: UserRole,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token for an actor.

    Args:
        subject: User identifier placed in the ``sub`` claim
        role: User role placed in the ``role`` claim
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    claims: Dict[str, Any] = {
        "sub": str(subject),
        "role": UserRole(role).value,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Actor:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode

    Returns:
        Actor described by the token's ``sub`` and ``role`` claims

    Raises:
        TokenError: If token is empty, invalid, expired, or its claims are
            malformed
    """
    if not token:
        logger.warning("Attempted to decode empty token")
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e), error_type=type(e).__name__)
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e

    subject = payload.get("sub")
    role = payload.get("role")
    if subject is None or role is None:
        logger.warning("Token missing required claims", has_sub=subject is not None)
        raise TokenError("Token is missing required claims", code="TOKEN_CLAIMS")

    try:
        actor = Actor(id=UUID(str(subject)), role=UserRole(role))
    except ValueError as e:
        logger.warning("Token claims are malformed", subject=subject, role=role)
        raise TokenError("Token claims are malformed", code="TOKEN_CLAIMS") from e

    logger.debug("Token decoded successfully", subject=str(actor.id), role=actor.role.value)
    return actor

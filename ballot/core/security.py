"""
JWT helpers for caller identity.

The engine trusts the identity it is handed. This module only turns a bearer
token issued by the identity provider into that identity; the provider and
this service share ``SECRET_KEY``.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from ballot.core.config import settings
from ballot.core.logging_config import get_logger

logger = get_logger(__name__)


def create_access_token(
    identity: str, expires_delta: timedelta | None = None
) -> str:
    """
    Create a JWT access token for an identity.

    Args:
        identity: Voter or administrator identity, stored as the ``sub`` claim
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token string
    """
    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode = {"sub": identity, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT access token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
        return None

"""JWT access tokens.

Accounts are provisioned outside this service; clients present an access
token whose ``sub`` claim is the user ID. Tokens are minted here only for
operational scripts and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from app.config import settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    subject: UUID | str,
    expires_delta: timedelta | None = None,
    **claims: Any,
) -> str:
    """
    Create a signed access token for a user.

    Args:
        subject: User ID stored in the ``sub`` claim
        expires_delta: Lifetime, defaults to ``ACCESS_TOKEN_EXPIRE_MINUTES``
        **claims: Extra claims to embed

    Returns:
        Encoded JWT token
    """
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)

    payload = {
        **claims,
        "sub": str(subject),
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Verified claims of an access token, or None if it is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        return None

    return payload


def token_subject(token: str) -> UUID | None:
    """User ID carried by a valid access token."""
    payload = decode_access_token(token)
    if payload is None:
        return None

    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        return None

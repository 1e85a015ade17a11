"""Access tokens issued for the opaque user ids of the identity provider."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from sealhub.core.settings import settings


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """Return a signed bearer token whose ``sub`` is ``user_id``."""
    ttl = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    payload = {
        "sub": user_id,
        "exp": datetime.now(UTC) + timedelta(minutes=ttl),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by ``token``.

    Raises:
        JWTError: If the token is invalid, expired or has no subject.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    if payload.get("scope"):
        raise JWTError("Scoped tokens are not access tokens")
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise JWTError("Token has no subject")
    return subject

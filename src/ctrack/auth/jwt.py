"""
HS256 JWT verification.

Access tokens are minted by the hosted auth provider with a shared secret. The
``sub`` claim is the provider's user id; it maps to ``User.auth_subject``.
``create_access_token`` mints compatible tokens for tests and local tooling.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from ctrack.config import get_settings


def create_access_token(
    subject: str,
    *,
    username: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """
    Create an access token for ``subject``.

    Args:
        subject: The auth provider's user id (becomes ``sub``).
        username: Optional display handle carried in ``user_metadata``.
        expires_minutes: Lifetime override; defaults to the configured value.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    lifetime = expires_minutes if expires_minutes is not None else settings.jwt_access_token_expire_minutes
    payload: dict[str, Any] = {
        "sub": subject,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + timedelta(minutes=lifetime),
        "iss": settings.jwt_issuer,
        "role": "authenticated",
    }
    if username:
        payload["user_metadata"] = {"username": username}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an access token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or lacks a subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if not payload.get("sub"):
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)
    return payload

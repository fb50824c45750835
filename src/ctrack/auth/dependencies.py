"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ctrack.auth.jwt import verify_token
from ctrack.database import get_session
from ctrack.db.models import User
from ctrack.users.service import get_or_create_user

_bearer = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Verify the bearer token and return the local User, creating it on first sight.

    Raises 401 on an invalid or expired token.
    """
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    metadata = payload.get("user_metadata") or {}
    user, created = await get_or_create_user(db, str(payload["sub"]), username=metadata.get("username"))
    if created:
        await db.commit()
    return user

"""User management business logic."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ctrack.db.models import Challenge, Participation, User, UserStats
from ctrack.participation.store import ensure_user_stats

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_user_by_subject(db: AsyncSession, auth_subject: str) -> User | None:
    """Fetch a user by the auth provider's subject id."""
    result = await db.execute(select(User).where(User.auth_subject == auth_subject))
    return result.scalar_one_or_none()


async def get_or_create_user(
    db: AsyncSession,
    auth_subject: str,
    username: str | None = None,
) -> tuple[User, bool]:
    """
    Get the local user for an auth subject, creating it on first sight.

    Returns:
        Tuple of (user, created) where created is True if a new user was made.
    """
    user = await get_user_by_subject(db, auth_subject)
    if user is not None:
        return user, False

    user = User(
        auth_subject=auth_subject,
        username=username,
        display_name=username,
        avatar_url=None,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent request created the same subject first.
        await db.rollback()
        existing = await get_user_by_subject(db, auth_subject)
        if existing is None:
            raise
        return existing, False

    logger.info("user_created", user_id=user.id, auth_subject=auth_subject)
    return user, True


async def update_profile(
    db: AsyncSession,
    user: User,
    username: str | None = None,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> User:
    """Update user profile fields that were provided."""
    if username is not None:
        user.username = username
    if display_name is not None:
        user.display_name = display_name
    if avatar_url is not None:
        user.avatar_url = avatar_url
    await db.flush()
    return user


async def get_user_stats(db: AsyncSession, user_id: int) -> UserStats:
    """Profile counters, re-read so check-ins committed by other sessions are visible."""
    await ensure_user_stats(db, user_id)
    result = await db.execute(
        select(UserStats)
        .where(UserStats.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def list_user_participations(
    db: AsyncSession,
    user_id: int,
    status: str | None = None,
) -> list[tuple[Participation, Challenge]]:
    """A user's participations with their challenges, most recently started first."""
    stmt = (
        select(Participation, Challenge)
        .join(Challenge, Participation.challenge_id == Challenge.id)
        .where(Participation.user_id == user_id)
    )
    if status:
        stmt = stmt.where(Participation.status == status)
    result = await db.execute(
        stmt.order_by(Participation.started_at.desc(), Participation.id.desc())
        .execution_options(populate_existing=True)
    )
    return [(row.Participation, row.Challenge) for row in result]

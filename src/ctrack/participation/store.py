"""Participation store helpers shared by both check-in backends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TypeVar

from sqlalchemy import case, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ctrack.db.models import Challenge, CheckInNote, Participation, UserStats
from ctrack.participation.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_unavailable(exc: BaseException) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, (OperationalError, InterfaceError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def _safe_rollback(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except Exception:
        logger.warning("Rollback failed after store error", exc_info=True)


@asynccontextmanager
async def store_errors(db: AsyncSession, operation: str) -> AsyncGenerator[None, None]:
    """Translate driver, connection and timeout failures into StoreUnavailableError.

    The transaction is rolled back first, so nothing partial is committed.
    """
    try:
        yield
    except Exception as exc:
        if not _is_unavailable(exc):
            raise
        await _safe_rollback(db)
        logger.warning("Participation store unavailable during %s: %s", operation, exc)
        raise StoreUnavailableError(operation, exc) from exc


async def with_timeout(awaitable: Awaitable[T], seconds: float | None) -> T:
    """Bound a store round trip; ``None`` or a non-positive value disables the limit."""
    if seconds is None or seconds <= 0:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=seconds)


async def fetch_participation(
    db: AsyncSession,
    participation_id: int,
    *,
    for_update: bool = False,
) -> Participation | None:
    """Load a participation, bypassing any stale copy in the identity map."""
    stmt = select(Participation).where(Participation.id == participation_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def ensure_user_stats(db: AsyncSession, user_id: int) -> UserStats:
    """Get or create the profile counters row for a user."""
    stats = await db.get(UserStats, user_id)
    if stats is None:
        stats = UserStats(user_id=user_id, updated_at=None)
        db.add(stats)
        await db.flush()
    return stats


def record_note(db: AsyncSession, participation_id: int, note: str | None, now: datetime) -> None:
    if not note:
        return
    db.add(CheckInNote(participation_id=participation_id, noted_at=now, note=note))


async def apply_check_in_stats(
    db: AsyncSession,
    *,
    user_id: int,
    challenge_id: int,
    streak: int,
    completed: bool,
    now: datetime,
) -> None:
    """Fold an accepted check-in into the user's profile counters."""
    await ensure_user_stats(db, user_id)

    values: dict[str, object] = {
        "current_streak": streak,
        "longest_streak": case(
            (UserStats.longest_streak < streak, streak),
            else_=UserStats.longest_streak,
        ),
        "updated_at": now,
    }
    if completed:
        points_result = await db.execute(
            select(Challenge.points_reward).where(Challenge.id == challenge_id)
        )
        points = points_result.scalar_one_or_none() or 0
        values["challenges_completed"] = UserStats.challenges_completed + 1
        values["total_points"] = UserStats.total_points + points

    await db.execute(
        update(UserStats)
        .where(UserStats.user_id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def adjust_participant_count(db: AsyncSession, challenge_id: int, delta: int) -> None:
    """Shift the denormalized participant count; never drops below zero."""
    stmt = update(Challenge).where(Challenge.id == challenge_id)
    if delta < 0:
        stmt = stmt.where(Challenge.participant_count >= -delta)
    await db.execute(
        stmt.values(participant_count=Challenge.participant_count + delta)
        .execution_options(synchronize_session=False)
    )

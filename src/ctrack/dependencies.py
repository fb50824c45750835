"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ctrack.config import get_settings
from ctrack.database import get_session as _get_session
from ctrack.participation.clock import Clock, SystemClock
from ctrack.participation.tracker import ParticipationTracker
from ctrack.redis_client import get_optional_redis

get_db = _get_session


def get_clock() -> Clock:
    """Wall clock evaluating days in the configured zone. Overridden in tests."""
    return SystemClock(get_settings().day_timezone)


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client, or None when Redis is not initialized."""
    yield get_optional_redis()


async def get_tracker(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    redis: object | None = Depends(get_redis_dep),
) -> ParticipationTracker:
    """Per-request tracker bound to the request's session."""
    return ParticipationTracker.from_settings(db, clock, get_settings(), redis=redis)

"""Challenge catalogue business logic.

Rules:
- duration_days is a positive integer, points_reward non-negative
- Tags are de-duplicated, order preserved
- Only public challenges are listed; private ones are reachable by id
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ctrack.db.models import Challenge, Participation, User
from ctrack.participation.rules import ParticipationStatus, validate_duration

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard", "extreme")


@dataclass(frozen=True)
class ChallengeStats:
    participant_count: int = 0
    completed_count: int = 0
    active_count: int = 0
    average_progress: float = 0.0


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Strip, drop empties and duplicates (case-insensitive), keep first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags or []:
        cleaned = tag.strip()
        key = cleaned.lower()
        if cleaned and key not in seen:
            seen.add(key)
            result.append(cleaned)
    return result


async def create_challenge(
    db: AsyncSession,
    creator_id: int,
    title: str,
    category: str,
    duration_days: int,
    description: str | None = None,
    difficulty: str = "medium",
    points_reward: int = 100,
    tags: list[str] | None = None,
    is_public: bool = True,
) -> Challenge:
    """
    Create a challenge owned by ``creator_id``.

    Raises:
        ValueError: On a non-positive duration, negative reward or unknown difficulty.
    """
    validate_duration(duration_days)
    if points_reward < 0:
        raise ValueError("points_reward must be non-negative")
    if difficulty not in DIFFICULTIES:
        raise ValueError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")

    challenge = Challenge(
        title=title.strip(),
        description=description,
        category=category,
        difficulty=difficulty,
        duration_days=duration_days,
        points_reward=points_reward,
        tags=normalize_tags(tags),
        is_public=is_public,
        created_by=creator_id,
        participant_count=0,
        created_at=datetime.now(timezone.utc),
    )
    db.add(challenge)
    await db.flush()

    logger.info("Challenge created: %s (id=%d, owner=%d)", challenge.title, challenge.id, creator_id)
    return challenge


async def get_challenge(db: AsyncSession, challenge_id: int) -> Challenge | None:
    """Get a challenge by ID."""
    result = await db.execute(select(Challenge).where(Challenge.id == challenge_id))
    return result.scalar_one_or_none()


async def get_challenge_stats(db: AsyncSession, challenge_ids: list[int]) -> dict[int, ChallengeStats]:
    """Participation aggregates per challenge. Abandoned participations are not counted."""
    if not challenge_ids:
        return {}

    completed = ParticipationStatus.COMPLETED.value
    active = ParticipationStatus.ACTIVE.value
    result = await db.execute(
        select(
            Participation.challenge_id,
            func.count().label("participant_count"),
            func.sum(case((Participation.status == completed, 1), else_=0)).label("completed_count"),
            func.sum(case((Participation.status == active, 1), else_=0)).label("active_count"),
            func.avg(Participation.progress).label("average_progress"),
        )
        .where(Participation.challenge_id.in_(challenge_ids))
        .where(Participation.status != ParticipationStatus.ABANDONED.value)
        .group_by(Participation.challenge_id)
    )
    return {
        row.challenge_id: ChallengeStats(
            participant_count=row.participant_count,
            completed_count=int(row.completed_count or 0),
            active_count=int(row.active_count or 0),
            average_progress=round(float(row.average_progress or 0.0), 2),
        )
        for row in result
    }


async def list_public_challenges(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 20,
    category: str | None = None,
) -> tuple[list[tuple[Challenge, ChallengeStats]], int]:
    """List public challenges, newest first, each with its participation stats."""
    offset = (page - 1) * per_page
    filters = [Challenge.is_public.is_(True)]
    if category:
        filters.append(Challenge.category == category)

    total_result = await db.execute(select(func.count()).select_from(Challenge).where(*filters))
    total = total_result.scalar_one()

    result = await db.execute(
        select(Challenge)
        .where(*filters)
        .order_by(Challenge.created_at.desc(), Challenge.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    challenges = list(result.scalars().all())
    stats = await get_challenge_stats(db, [c.id for c in challenges])
    return [(c, stats.get(c.id, ChallengeStats())) for c in challenges], total


async def list_participants(
    db: AsyncSession,
    challenge_id: int,
    limit: int = 50,
) -> list[tuple[Participation, User]]:
    """Live participants of a challenge with user info, furthest along first."""
    result = await db.execute(
        select(Participation, User)
        .join(User, Participation.user_id == User.id)
        .where(Participation.challenge_id == challenge_id)
        .where(Participation.status != ParticipationStatus.ABANDONED.value)
        .order_by(Participation.progress.desc(), Participation.started_at.asc())
        .limit(limit)
    )
    return [(row.Participation, row.User) for row in result]

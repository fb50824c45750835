"""Challenge catalogue endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ctrack.auth.dependencies import get_current_user
from ctrack.challenges.schemas import (
    ChallengeListResponse,
    ChallengeResponse,
    ChallengeStatsResponse,
    CreateChallengeRequest,
    ParticipantResponse,
)
from ctrack.challenges.service import (
    ChallengeStats,
    create_challenge,
    get_challenge,
    get_challenge_stats,
    list_participants,
    list_public_challenges,
)
from ctrack.config import get_settings
from ctrack.database import get_session
from ctrack.db.models import Challenge, User

router = APIRouter(prefix="/api/v1", tags=["Challenges"])


def _build_challenge_response(c: Challenge, stats: ChallengeStats | None = None) -> ChallengeResponse:
    return ChallengeResponse(
        id=str(c.id),
        title=c.title,
        description=c.description,
        category=c.category,
        difficulty=c.difficulty,
        duration_days=c.duration_days,
        points_reward=c.points_reward,
        tags=list(c.tags or []),
        is_public=c.is_public,
        created_by=str(c.created_by),
        participant_count=c.participant_count,
        created_at=c.created_at,
        stats=ChallengeStatsResponse(**asdict(stats)) if stats else None,
    )


async def _visible_challenge(db: AsyncSession, challenge_id: int, user: User) -> Challenge:
    challenge = await get_challenge(db, challenge_id)
    if challenge is None or (not challenge.is_public and challenge.created_by != user.id):
        raise HTTPException(status_code=404, detail="Challenge not found")
    return challenge


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_challenges_endpoint(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1),
    category: str | None = Query(None, max_length=32),
    db: AsyncSession = Depends(get_session),
):
    """List public challenges with participation stats (paginated, public)."""
    per_page = min(per_page, get_settings().challenges_page_size_max)
    rows, total = await list_public_challenges(db, page, per_page, category)
    return ChallengeListResponse(
        challenges=[_build_challenge_response(c, stats) for c, stats in rows],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
async def create_challenge_endpoint(
    body: CreateChallengeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Create a challenge owned by the caller."""
    points = body.points_reward if body.points_reward is not None else get_settings().default_points_reward
    try:
        challenge = await create_challenge(
            db,
            user.id,
            title=body.title,
            category=body.category,
            duration_days=body.duration_days,
            description=body.description,
            difficulty=body.difficulty,
            points_reward=points,
            tags=body.tags,
            is_public=body.is_public,
        )
        await db.commit()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return _build_challenge_response(challenge, ChallengeStats())


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def get_challenge_endpoint(
    challenge_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Get a challenge with stats. Private challenges are visible to their owner only."""
    challenge = await _visible_challenge(db, challenge_id, user)
    stats = await get_challenge_stats(db, [challenge.id])
    return _build_challenge_response(challenge, stats.get(challenge.id, ChallengeStats()))


@router.get("/challenges/{challenge_id}/participants", response_model=list[ParticipantResponse])
async def list_participants_endpoint(
    challenge_id: int,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Live participants, furthest along first."""
    await _visible_challenge(db, challenge_id, user)
    rows = await list_participants(db, challenge_id, limit)
    return [
        ParticipantResponse(
            user_id=str(p.user_id),
            username=u.username,
            display_name=u.display_name,
            avatar_url=u.avatar_url,
            status=p.status,
            progress=round(p.progress, 2),
            check_in_streak=p.check_in_streak,
            started_at=p.started_at,
        )
        for p, u in rows
    ]

"""User router: all /api/v1/users/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ctrack.auth.dependencies import get_current_user
from ctrack.database import get_session
from ctrack.db.models import User
from ctrack.participation.router import build_participation_response
from ctrack.users.schemas import (
    ProfileUpdateRequest,
    UserParticipationResponse,
    UserResponse,
    UserStatsResponse,
)
from ctrack.users.service import get_user_stats, list_user_participations, update_profile

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


def _user_response(user: User) -> UserResponse:
    """Build a UserResponse from a User model."""
    return UserResponse(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        created_at=user.created_at,
    )


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserResponse)
async def get_profile(
    user: User = Depends(get_current_user),
) -> UserResponse:
    """Get own profile."""
    return _user_response(user)


@router.patch("/me", response_model=UserResponse)
async def update_my_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    """Update username, display name or avatar."""
    await update_profile(
        db,
        user,
        username=body.username,
        display_name=body.display_name,
        avatar_url=body.avatar_url,
    )
    await db.commit()
    return _user_response(user)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@router.get("/me/stats", response_model=UserStatsResponse)
async def get_my_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserStatsResponse:
    """Completed challenges, points and streaks."""
    stats = await get_user_stats(db, user.id)
    await db.commit()
    return UserStatsResponse(
        challenges_completed=stats.challenges_completed,
        total_points=stats.total_points,
        current_streak=stats.current_streak,
        longest_streak=stats.longest_streak,
        updated_at=stats.updated_at,
    )


@router.get("/me/participations", response_model=list[UserParticipationResponse])
async def list_my_participations(
    status: str | None = Query(None, pattern="^(active|completed|abandoned)$"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[UserParticipationResponse]:
    """Every challenge the caller has joined."""
    rows = await list_user_participations(db, user.id, status)
    return [
        UserParticipationResponse(
            challenge_title=c.title,
            duration_days=c.duration_days,
            points_reward=c.points_reward,
            participation=build_participation_response(p),
        )
        for p, c in rows
    ]

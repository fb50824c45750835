"""Request/response schemas for user endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ctrack.participation.schemas import ParticipationResponse


class UserResponse(BaseModel):
    id: int
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None


class ProfileUpdateRequest(BaseModel):
    username: str | None = Field(None, min_length=3, max_length=64)
    display_name: str | None = Field(None, min_length=1, max_length=64)
    avatar_url: str | None = Field(None, max_length=2048)


class UserStatsResponse(BaseModel):
    challenges_completed: int
    total_points: int
    current_streak: int
    longest_streak: int
    updated_at: datetime | None = None


class UserParticipationResponse(BaseModel):
    challenge_title: str
    duration_days: int
    points_reward: int
    participation: ParticipationResponse

"""Pydantic schemas for challenge endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class CreateChallengeRequest(BaseModel):
    title: str = Field(..., min_length=3, max_length=120)
    description: str | None = Field(None, max_length=2000)
    category: str = Field(..., min_length=1, max_length=32)
    difficulty: Literal["easy", "medium", "hard", "extreme"] = "medium"
    duration_days: int = Field(..., gt=0, le=3650)
    points_reward: int | None = Field(None, ge=0)
    tags: list[str] = Field(default_factory=list, max_length=20)
    is_public: bool = True


class ChallengeStatsResponse(BaseModel):
    participant_count: int = 0
    completed_count: int = 0
    active_count: int = 0
    average_progress: float = 0.0


class ChallengeResponse(BaseModel):
    id: str
    title: str
    description: str | None = None
    category: str
    difficulty: str
    duration_days: int
    points_reward: int
    tags: list[str] = []
    is_public: bool
    created_by: str
    participant_count: int
    created_at: datetime | None = None
    stats: ChallengeStatsResponse | None = None


class ChallengeListResponse(BaseModel):
    challenges: list[ChallengeResponse]
    total: int
    page: int
    per_page: int


class ParticipantResponse(BaseModel):
    user_id: str
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    status: str
    progress: float
    check_in_streak: int
    started_at: datetime

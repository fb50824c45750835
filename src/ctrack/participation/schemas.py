"""Pydantic schemas for participation endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class CheckInRequestBody(BaseModel):
    note: str | None = Field(None, max_length=2000)


class ParticipationResponse(BaseModel):
    id: str
    challenge_id: str
    user_id: str
    status: str
    progress: float
    started_at: datetime
    last_check_in: datetime | None = None
    last_check_in_day: date | None = None
    check_in_count: int
    check_in_streak: int
    completed_at: datetime | None = None


class CheckInResponse(BaseModel):
    accepted: bool
    rejection: str | None = None  # already_checked_in_today | already_completed | not_active
    message: str
    completed_now: bool = False
    participation: ParticipationResponse


class HistoryEntryResponse(BaseModel):
    date: datetime
    note: str


class HistoryResponse(BaseModel):
    order: str
    total: int
    entries: list[HistoryEntryResponse]

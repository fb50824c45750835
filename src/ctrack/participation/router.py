"""Participation API endpoints: join, check-in, leave, status, history."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query, Response

from ctrack.auth.dependencies import get_current_user
from ctrack.db.models import Participation, User
from ctrack.dependencies import get_tracker
from ctrack.participation.schemas import (
    CheckInRequestBody,
    CheckInResponse,
    HistoryEntryResponse,
    HistoryResponse,
    ParticipationResponse,
)
from ctrack.participation.tracker import ParticipationTracker

router = APIRouter(prefix="/api/v1", tags=["Participation"])


def build_participation_response(p: Participation) -> ParticipationResponse:
    return ParticipationResponse(
        id=str(p.id),
        challenge_id=str(p.challenge_id),
        user_id=str(p.user_id),
        status=p.status,
        progress=round(p.progress, 2),
        started_at=p.started_at,
        last_check_in=p.last_check_in,
        last_check_in_day=p.last_check_in_day,
        check_in_count=p.check_in_count,
        check_in_streak=p.check_in_streak,
        completed_at=p.completed_at,
    )


@router.post(
    "/challenges/{challenge_id}/join",
    response_model=ParticipationResponse,
    status_code=201,
)
async def join_challenge_endpoint(
    challenge_id: int,
    user: User = Depends(get_current_user),
    tracker: ParticipationTracker = Depends(get_tracker),
):
    """Join a challenge. Rejoining after abandoning reactivates the old participation."""
    participation = await tracker.join(challenge_id, user.id)
    return build_participation_response(participation)


@router.post("/challenges/{challenge_id}/check-in", response_model=CheckInResponse)
async def check_in_endpoint(
    challenge_id: int,
    body: CheckInRequestBody | None = Body(None),
    user: User = Depends(get_current_user),
    tracker: ParticipationTracker = Depends(get_tracker),
):
    """Record today's check-in. A rejected check-in is reported, not raised."""
    note = body.note if body else None
    result = await tracker.check_in_for(challenge_id, user.id, note)

    if result.rejection is not None:
        message = result.rejection.message
    elif result.completed_now:
        message = "Challenge completed"
    else:
        message = "Checked in"

    return CheckInResponse(
        accepted=result.accepted,
        rejection=result.rejection.value if result.rejection else None,
        message=message,
        completed_now=result.completed_now,
        participation=build_participation_response(result.participation),
    )


@router.delete("/challenges/{challenge_id}/participation", status_code=204)
async def leave_challenge_endpoint(
    challenge_id: int,
    user: User = Depends(get_current_user),
    tracker: ParticipationTracker = Depends(get_tracker),
):
    """Leave a challenge."""
    await tracker.leave_challenge(challenge_id, user.id)
    return Response(status_code=204)


@router.get("/challenges/{challenge_id}/participation", response_model=ParticipationResponse)
async def get_participation_endpoint(
    challenge_id: int,
    user: User = Depends(get_current_user),
    tracker: ParticipationTracker = Depends(get_tracker),
):
    """Get the caller's participation in a challenge."""
    participation = await tracker.require_participation(challenge_id, user.id)
    return build_participation_response(participation)


@router.get("/challenges/{challenge_id}/history", response_model=HistoryResponse)
async def get_history_endpoint(
    challenge_id: int,
    order: str = Query("asc", pattern="^(asc|desc)$"),
    user: User = Depends(get_current_user),
    tracker: ParticipationTracker = Depends(get_tracker),
):
    """Check-in notes for the caller's participation."""
    participation = await tracker.require_participation(challenge_id, user.id)
    history = await tracker.history(participation, newest_first=order == "desc")
    return HistoryResponse(
        order=order,
        total=len(history),
        entries=[HistoryEntryResponse(date=e.date, note=e.note) for e in history],
    )

"""Check-in rules: state machine, progress, streaks, completion.

Pure functions over plain values. The locked backend evaluates them in Python;
the atomic backend expresses the same rules as SQL (see ``backends``), and the
tests hold both to the same outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from ctrack.participation.errors import (
    CheckInRejection,
    InvalidTransitionError,
    InvariantViolationError,
)

FULL_PROGRESS = 100.0
# Sums this close to 100 complete; D increments of 100/D can fall short by float rounding.
PROGRESS_EPSILON = 1e-6


class ParticipationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


VALID_TRANSITIONS: dict[str, list[str]] = {
    "active": ["active", "completed", "abandoned"],
    "completed": [],
    "abandoned": ["active"],  # rejoin
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a status transition. Raises InvalidTransitionError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransitionError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


def validate_duration(duration_days: int) -> int:
    if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days <= 0:
        raise ValueError(f"duration_days must be a positive integer, got {duration_days!r}")
    return duration_days


def progress_after(progress: float, duration_days: int) -> float:
    """Progress after one more check-in: min(progress + 100 / D, 100).

    A result within PROGRESS_EPSILON of 100 is returned as exactly 100.0.
    """
    validate_duration(duration_days)
    new_progress = progress + FULL_PROGRESS / duration_days
    if new_progress >= FULL_PROGRESS - PROGRESS_EPSILON:
        return FULL_PROGRESS
    return new_progress


def next_streak(last_day: date | None, today: date, current_streak: int) -> int:
    """Streak after a check-in on ``today``.

    Consecutive days (or a first check-in) extend the streak; any gap restarts it at 1.
    """
    if last_day is None or last_day == today - timedelta(days=1):
        return current_streak + 1
    return 1


@dataclass(frozen=True)
class CheckInDecision:
    """New field values for an accepted check-in."""

    progress: float
    check_in_count: int
    check_in_streak: int
    status: str
    completed: bool


def decide_check_in(
    *,
    status: str,
    progress: float,
    check_in_count: int,
    check_in_streak: int,
    last_check_in_day: date | None,
    today: date,
    duration_days: int,
) -> CheckInDecision | CheckInRejection:
    """Evaluate one check-in against the current participation values."""
    validate_duration(duration_days)

    if status == ParticipationStatus.COMPLETED:
        return CheckInRejection.ALREADY_COMPLETED
    if status != ParticipationStatus.ACTIVE:
        return CheckInRejection.NOT_ACTIVE
    # A stored day after today only happens with clock skew; treat it as today.
    if last_check_in_day is not None and last_check_in_day >= today:
        return CheckInRejection.ALREADY_CHECKED_IN_TODAY

    new_progress = progress_after(progress, duration_days)
    completed = new_progress >= FULL_PROGRESS
    return CheckInDecision(
        progress=new_progress,
        check_in_count=check_in_count + 1,
        check_in_streak=next_streak(last_check_in_day, today, check_in_streak),
        status=ParticipationStatus.COMPLETED.value if completed else ParticipationStatus.ACTIVE.value,
        completed=completed,
    )


def check_invariants(
    *,
    old_progress: float,
    new_progress: float,
    new_status: str,
    completed_at_set: bool,
) -> None:
    """Refuse states that break the participation invariants."""
    if new_progress < old_progress:
        raise InvariantViolationError(f"progress would decrease: {old_progress} -> {new_progress}")
    if not 0.0 <= new_progress <= FULL_PROGRESS:
        raise InvariantViolationError(f"progress out of range: {new_progress}")
    is_completed = new_status == ParticipationStatus.COMPLETED
    if is_completed != (new_progress >= FULL_PROGRESS):
        raise InvariantViolationError(
            f"status {new_status!r} inconsistent with progress {new_progress}"
        )
    if is_completed and not completed_at_set:
        raise InvariantViolationError("completed participation is missing completed_at")

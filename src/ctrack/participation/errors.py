"""Participation outcomes and failures.

Expected business outcomes of a check-in are returned as ``CheckInRejection``
values inside a ``CheckInResult``; everything else is an exception.
"""

from __future__ import annotations

from enum import Enum


class CheckInRejection(str, Enum):
    """Reasons a check-in was not applied. Informational, never an error."""

    ALREADY_CHECKED_IN_TODAY = "already_checked_in_today"
    ALREADY_COMPLETED = "already_completed"
    NOT_ACTIVE = "not_active"

    @property
    def message(self) -> str:
        return _REJECTION_MESSAGES[self]


_REJECTION_MESSAGES = {
    CheckInRejection.ALREADY_CHECKED_IN_TODAY: "Already checked in today",
    CheckInRejection.ALREADY_COMPLETED: "Challenge already completed",
    CheckInRejection.NOT_ACTIVE: "You are no longer active in this challenge",
}


class ParticipationError(Exception):
    """Base class for participation rule violations."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class DuplicateParticipationError(ParticipationError):
    status_code = 409

    def __init__(self, challenge_id: int, user_id: int) -> None:
        super().__init__("You are already participating in this challenge")
        self.challenge_id = challenge_id
        self.user_id = user_id


class ParticipationNotFoundError(ParticipationError):
    status_code = 404

    def __init__(self, detail: str = "You are not participating in this challenge") -> None:
        super().__init__(detail)


class ChallengeNotFoundError(ParticipationError):
    status_code = 404

    def __init__(self, challenge_id: int) -> None:
        super().__init__("Challenge not found")
        self.challenge_id = challenge_id


class InvalidTransitionError(ParticipationError):
    status_code = 409


class InvariantViolationError(ParticipationError):
    """A write would break a participation invariant. Indicates a defect."""

    status_code = 500


class StoreUnavailableError(Exception):
    """The participation store timed out or could not be reached.

    Nothing was committed; the call is safe to retry.
    """

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Participation store unavailable during {operation}")
        self.operation = operation
        self.cause = cause

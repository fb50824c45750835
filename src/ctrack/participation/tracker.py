"""Participation lifecycle: join, daily check-in, leave, history.

Rules:
- One participation per (challenge, user); a second join is a duplicate
- Abandoned participations are reactivated on rejoin, keeping their history
- At most one accepted check-in per calendar day
- Completion is terminal
- Only active participations may leave
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from ctrack.db.models import Challenge, CheckInNote, Participation
from ctrack.participation.backends import (
    CheckInBackend,
    CheckInRequest,
    CheckInResult,
    LocalLockProvider,
    LockProvider,
    RedisLockProvider,
    select_backend,
)
from ctrack.participation.errors import (
    ChallengeNotFoundError,
    DuplicateParticipationError,
    ParticipationNotFoundError,
)
from ctrack.participation.events import (
    EVENT_CHECKED_IN,
    EVENT_COMPLETED,
    EVENT_JOINED,
    EVENT_LEFT,
    publish_participation_event,
)
from ctrack.participation.history import CheckInHistory, normalize_entry
from ctrack.participation.rules import ParticipationStatus, validate_duration, validate_transition
from ctrack.participation.store import (
    adjust_participant_count,
    ensure_user_stats,
    fetch_participation,
    store_errors,
    with_timeout,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from ctrack.config import Settings
    from ctrack.participation.clock import Clock

logger = logging.getLogger(__name__)

LEAVE_DELETE = "delete"
LEAVE_ABANDON = "abandon"

# Shared by every tracker in this process; per-request trackers must see the same locks.
_local_locks = LocalLockProvider()

__all__ = ["CheckInResult", "ParticipationTracker"]


class ParticipationTracker:
    """Owns every write to a participation row.

    One tracker wraps one session. Each public write commits its own
    transaction, so callers never hold a half-applied participation.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        *,
        redis: object | None = None,
        backend: str = "auto",
        locks: LockProvider | None = None,
        leave_policy: str = LEAVE_DELETE,
        store_timeout: float | None = 5.0,
        lock_timeout: float = 10.0,
    ) -> None:
        if leave_policy not in (LEAVE_DELETE, LEAVE_ABANDON):
            raise ValueError(f"Unknown leave policy: {leave_policy!r}")
        self.db = db
        self.clock = clock
        self.redis = redis
        self.backend_mode = backend
        if locks is None:
            locks = RedisLockProvider(redis) if redis is not None else _local_locks
        self.locks = locks
        self.leave_policy = leave_policy
        self.store_timeout = store_timeout
        self.lock_timeout = lock_timeout
        self._backend: CheckInBackend | None = None

    @classmethod
    def from_settings(
        cls,
        db: AsyncSession,
        clock: Clock,
        settings: Settings,
        redis: object | None = None,
    ) -> ParticipationTracker:
        return cls(
            db,
            clock,
            redis=redis,
            backend=settings.check_in_backend,
            leave_policy=settings.leave_policy,
            store_timeout=settings.store_timeout_seconds,
            lock_timeout=settings.check_in_lock_timeout_seconds,
        )

    @property
    def backend(self) -> CheckInBackend:
        if self._backend is None:
            self._backend = select_backend(self.backend_mode, self.db, self.locks, self.lock_timeout)
        return self._backend

    # --- reads ---

    async def get_challenge(self, challenge_id: int) -> Challenge:
        async with store_errors(self.db, "get_challenge"):
            result = await with_timeout(
                self.db.execute(select(Challenge).where(Challenge.id == challenge_id)),
                self.store_timeout,
            )
        challenge = result.scalar_one_or_none()
        if challenge is None:
            raise ChallengeNotFoundError(challenge_id)
        return challenge

    async def get_participation(self, challenge_id: int, user_id: int) -> Participation | None:
        """Get a user's participation in a challenge (if any)."""
        async with store_errors(self.db, "get_participation"):
            result = await with_timeout(
                self.db.execute(
                    select(Participation)
                    .where(Participation.challenge_id == challenge_id)
                    .where(Participation.user_id == user_id)
                    .execution_options(populate_existing=True)
                ),
                self.store_timeout,
            )
        return result.scalar_one_or_none()

    async def require_participation(self, challenge_id: int, user_id: int) -> Participation:
        participation = await self.get_participation(challenge_id, user_id)
        if participation is None:
            raise ParticipationNotFoundError
        return participation

    # --- writes ---

    async def join(self, challenge_id: int, user_id: int) -> Participation:
        """Start participating in a challenge.

        Raises:
            ChallengeNotFoundError: Unknown challenge.
            DuplicateParticipationError: The user already has a live participation.
        """
        async with store_errors(self.db, "join"):
            participation, rejoined = await with_timeout(
                self._join(challenge_id, user_id), self.store_timeout
            )

        if rejoined:
            logger.info("User %d rejoined challenge %d", user_id, challenge_id)
        else:
            logger.info("User %d joined challenge %d", user_id, challenge_id)
        await publish_participation_event(self.redis, EVENT_JOINED, participation)
        return participation

    async def _join(self, challenge_id: int, user_id: int) -> tuple[Participation, bool]:
        await self.get_challenge(challenge_id)
        existing = await self.get_participation(challenge_id, user_id)
        now = self.clock.now()

        if existing is not None:
            if existing.status != ParticipationStatus.ABANDONED:
                raise DuplicateParticipationError(challenge_id, user_id)
            validate_transition(existing.status, ParticipationStatus.ACTIVE.value)
            return await self._rejoin(existing.id, challenge_id, user_id), True

        participation = Participation(
            challenge_id=challenge_id,
            user_id=user_id,
            status=ParticipationStatus.ACTIVE.value,
            progress=0.0,
            started_at=now,
            last_check_in=None,
            last_check_in_day=None,
            check_in_count=0,
            check_in_streak=0,
            completed_at=None,
        )
        self.db.add(participation)

        try:
            await self.db.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent join for the same pair.
            await self.db.rollback()
            raise DuplicateParticipationError(challenge_id, user_id) from exc

        await adjust_participant_count(self.db, challenge_id, 1)
        await ensure_user_stats(self.db, user_id)
        await self.db.commit()
        return participation, False

    async def _rejoin(self, participation_id: int, challenge_id: int, user_id: int) -> Participation:
        # Only one concurrent rejoin can flip abandoned -> active.
        result = await self.db.execute(
            update(Participation)
            .where(
                Participation.id == participation_id,
                Participation.status == ParticipationStatus.ABANDONED.value,
            )
            .values(status=ParticipationStatus.ACTIVE.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise DuplicateParticipationError(challenge_id, user_id)

        await adjust_participant_count(self.db, challenge_id, 1)
        await ensure_user_stats(self.db, user_id)
        await self.db.commit()

        participation = await fetch_participation(self.db, participation_id)
        if participation is None:
            raise ParticipationNotFoundError
        return participation

    async def check_in(
        self,
        participation: Participation,
        duration_days: int,
        note: str | None = None,
    ) -> CheckInResult:
        """Record today's check-in.

        Returns a result carrying either the updated participation or the
        reason the check-in was not applied. Nothing is written on rejection.

        Raises:
            ValueError: ``duration_days`` is not a positive integer.
            StoreUnavailableError: The store failed or timed out; safe to retry.
        """
        validate_duration(duration_days)
        text = note.strip() if note else ""
        now = self.clock.now()
        request = CheckInRequest(
            participation_id=participation.id,
            challenge_id=participation.challenge_id,
            user_id=participation.user_id,
            duration_days=duration_days,
            now=now,
            today=self.clock.day_of(now),
            note=text or None,
            seen_progress=participation.progress,
        )

        async with store_errors(self.db, "check_in"):
            result = await with_timeout(self.backend.apply(self.db, request), self.store_timeout)

        if not result.accepted:
            return result

        updated = result.participation
        logger.info(
            "User %d checked in to challenge %d (progress=%.2f, streak=%d)",
            request.user_id,
            request.challenge_id,
            updated.progress,
            updated.check_in_streak,
        )
        await publish_participation_event(self.redis, EVENT_CHECKED_IN, updated)
        if result.completed_now:
            logger.info("User %d completed challenge %d", request.user_id, request.challenge_id)
            await publish_participation_event(self.redis, EVENT_COMPLETED, updated)
        return result

    async def check_in_for(self, challenge_id: int, user_id: int, note: str | None = None) -> CheckInResult:
        """Check in by (challenge, user), reading the duration from the challenge."""
        challenge = await self.get_challenge(challenge_id)
        duration_days = challenge.duration_days
        participation = await self.require_participation(challenge_id, user_id)
        return await self.check_in(participation, duration_days, note)

    async def leave(self, participation: Participation) -> None:
        """Stop participating.

        Under the ``delete`` policy the row and its notes are removed; under
        ``abandon`` the row stays with status abandoned.

        Raises:
            InvalidTransitionError: The participation is not active.
            ParticipationNotFoundError: The row disappeared concurrently.
        """
        validate_transition(participation.status, ParticipationStatus.ABANDONED.value)
        participation_id = participation.id
        challenge_id = participation.challenge_id
        user_id = participation.user_id

        async with store_errors(self.db, "leave"):
            changed = await with_timeout(self._leave(participation), self.store_timeout)

        if not changed:
            current = await self._refetch(participation_id)
            if current is None:
                raise ParticipationNotFoundError
            validate_transition(current.status, ParticipationStatus.ABANDONED.value)
            raise ParticipationNotFoundError

        logger.info("User %d left challenge %d (%s)", user_id, challenge_id, self.leave_policy)
        await publish_participation_event(self.redis, EVENT_LEFT, participation)

    async def _leave(self, participation: Participation) -> bool:
        pid = participation.id
        active = Participation.status == ParticipationStatus.ACTIVE.value

        if self.leave_policy == LEAVE_ABANDON:
            result = await self.db.execute(
                update(Participation)
                .where(Participation.id == pid, active)
                .values(status=ParticipationStatus.ABANDONED.value)
                .execution_options(synchronize_session=False)
            )
        else:
            await self.db.execute(delete(CheckInNote).where(CheckInNote.participation_id == pid))
            result = await self.db.execute(
                delete(Participation)
                .where(Participation.id == pid, active)
                .execution_options(synchronize_session=False)
            )

        if result.rowcount == 0:
            await self.db.rollback()
            return False

        await adjust_participant_count(self.db, participation.challenge_id, -1)
        await self.db.commit()

        if self.leave_policy == LEAVE_ABANDON:
            await self.db.refresh(participation)
        else:
            self.db.expunge(participation)
        return True

    async def _refetch(self, participation_id: int) -> Participation | None:
        async with store_errors(self.db, "leave"):
            return await with_timeout(fetch_participation(self.db, participation_id), self.store_timeout)

    async def leave_challenge(self, challenge_id: int, user_id: int) -> None:
        participation = await self.require_participation(challenge_id, user_id)
        await self.leave(participation)

    async def history(self, participation: Participation, newest_first: bool = False) -> CheckInHistory:
        """Check-in notes in insertion order, or newest first."""
        async with store_errors(self.db, "history"):
            result = await with_timeout(
                self.db.execute(
                    select(CheckInNote.noted_at, CheckInNote.note)
                    .where(CheckInNote.participation_id == participation.id)
                    .order_by(CheckInNote.id)
                ),
                self.store_timeout,
            )
        entries = [normalize_entry(row.noted_at, row.note) for row in result]
        return CheckInHistory(entries, newest_first=newest_first)

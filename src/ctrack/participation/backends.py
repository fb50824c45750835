"""Check-in persistence strategies.

Both backends honour one contract: apply a check-in to a participation row
exactly once per calendar day, or report why it was not applied. They differ in
how they keep concurrent requests from double-applying:

- ``AtomicCheckInBackend`` issues a single conditional ``UPDATE ... RETURNING``
  whose WHERE clause carries the same-day guard, so the store arbitrates.
- ``LockedCheckInBackend`` reads, decides in Python and writes while holding a
  per-(challenge, user) lock until commit.

``select_backend`` picks one from configuration and dialect capabilities.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from redis.exceptions import LockError, RedisError
from sqlalchemy import DateTime, String, case, literal, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from ctrack.db.models import Participation
from ctrack.participation.errors import (
    CheckInRejection,
    ParticipationNotFoundError,
    StoreUnavailableError,
)
from ctrack.participation.rules import (
    FULL_PROGRESS,
    PROGRESS_EPSILON,
    CheckInDecision,
    ParticipationStatus,
    check_invariants,
    decide_check_in,
    validate_duration,
)
from ctrack.participation.store import apply_check_in_stats, fetch_participation, record_note

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInRequest:
    participation_id: int
    challenge_id: int
    user_id: int
    duration_days: int
    now: datetime
    today: date
    note: str | None = None
    # Progress the caller last saw; a write below it is refused.
    seen_progress: float = 0.0


@dataclass(frozen=True)
class CheckInResult:
    participation: Participation
    rejection: CheckInRejection | None = None
    completed_now: bool = False

    @property
    def accepted(self) -> bool:
        return self.rejection is None


def classify_rejection(participation: Participation) -> CheckInRejection:
    """Why a check-in on ``participation`` cannot be applied today."""
    if participation.status == ParticipationStatus.COMPLETED:
        return CheckInRejection.ALREADY_COMPLETED
    if participation.status != ParticipationStatus.ACTIVE:
        return CheckInRejection.NOT_ACTIVE
    return CheckInRejection.ALREADY_CHECKED_IN_TODAY


class CheckInBackend(ABC):
    """Applies one check-in and commits, or reports a rejection without writing."""

    name: str = "abstract"

    @abstractmethod
    async def apply(self, db: AsyncSession, request: CheckInRequest) -> CheckInResult: ...

    async def _finish(
        self,
        db: AsyncSession,
        request: CheckInRequest,
        *,
        streak: int,
        completed: bool,
    ) -> CheckInResult:
        """Write the note and profile counters, commit, and return the fresh row."""
        record_note(db, request.participation_id, request.note, request.now)
        await apply_check_in_stats(
            db,
            user_id=request.user_id,
            challenge_id=request.challenge_id,
            streak=streak,
            completed=completed,
            now=request.now,
        )
        await db.commit()

        participation = await fetch_participation(db, request.participation_id)
        if participation is None:
            raise ParticipationNotFoundError
        return CheckInResult(participation=participation, completed_now=completed)

    async def _reject(self, db: AsyncSession, request: CheckInRequest) -> CheckInResult:
        await db.rollback()
        participation = await fetch_participation(db, request.participation_id)
        if participation is None:
            raise ParticipationNotFoundError
        rejection = classify_rejection(participation)
        logger.info(
            "Check-in rejected for participation %d: %s",
            request.participation_id,
            rejection.value,
        )
        return CheckInResult(participation=participation, rejection=rejection)


class AtomicCheckInBackend(CheckInBackend):
    """Same-day guard and every new value evaluated by the store in one UPDATE."""

    name = "atomic"

    async def apply(self, db: AsyncSession, request: CheckInRequest) -> CheckInResult:
        duration = validate_duration(request.duration_days)
        p = Participation
        yesterday = request.today - timedelta(days=1)

        candidate = p.progress + FULL_PROGRESS / duration
        completes = candidate >= FULL_PROGRESS - PROGRESS_EPSILON

        stmt = (
            update(p)
            .where(
                p.id == request.participation_id,
                p.status == ParticipationStatus.ACTIVE.value,
                or_(p.last_check_in_day.is_(None), p.last_check_in_day < request.today),
            )
            .values(
                progress=case((completes, FULL_PROGRESS), else_=candidate),
                check_in_count=p.check_in_count + 1,
                check_in_streak=case(
                    (
                        or_(p.last_check_in_day.is_(None), p.last_check_in_day == yesterday),
                        p.check_in_streak + 1,
                    ),
                    else_=1,
                ),
                status=case(
                    (completes, literal(ParticipationStatus.COMPLETED.value, String)),
                    else_=p.status,
                ),
                completed_at=case(
                    (completes, literal(request.now, DateTime(timezone=True))),
                    else_=p.completed_at,
                ),
                last_check_in=request.now,
                last_check_in_day=request.today,
            )
            .returning(p.progress, p.status, p.check_in_streak, p.completed_at)
            .execution_options(synchronize_session=False)
        )
        row = (await db.execute(stmt)).first()
        if row is None:
            return await self._reject(db, request)

        completed = row.status == ParticipationStatus.COMPLETED
        try:
            check_invariants(
                old_progress=request.seen_progress,
                new_progress=row.progress,
                new_status=row.status,
                completed_at_set=row.completed_at is not None,
            )
        except Exception:
            await db.rollback()
            raise
        return await self._finish(db, request, streak=row.check_in_streak, completed=completed)


class LockProvider(ABC):
    """Per-participation mutual exclusion held across read, decide and commit."""

    @abstractmethod
    def hold(self, key: str, timeout: float) -> AbstractAsyncContextManager[None]: ...


class LocalLockProvider(LockProvider):
    """In-process ``asyncio.Lock`` per key. Only excludes callers in this process."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncGenerator[None, None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError("check-in lock", exc) from exc
        try:
            yield
        finally:
            lock.release()


class RedisLockProvider(LockProvider):
    """Redis lock shared by every API worker."""

    def __init__(self, redis: object, prefix: str = "lock:check_in") -> None:
        self.redis = redis
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncGenerator[None, None]:
        lock = self.redis.lock(  # type: ignore[union-attr]
            f"{self.prefix}:{key}",
            timeout=timeout,
            blocking_timeout=timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            raise StoreUnavailableError("check-in lock", exc) from exc
        if not acquired:
            raise StoreUnavailableError("check-in lock")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Check-in lock %s expired before release", key, exc_info=True)


class LockedCheckInBackend(CheckInBackend):
    """Read-modify-write under a per-(challenge, user) lock held until commit."""

    name = "locked"

    def __init__(self, locks: LockProvider, lock_timeout: float = 10.0) -> None:
        self.locks = locks
        self.lock_timeout = lock_timeout

    async def apply(self, db: AsyncSession, request: CheckInRequest) -> CheckInResult:
        key = f"{request.challenge_id}:{request.user_id}"
        # Release any read transaction before waiting, so waiters hold no store locks.
        await db.rollback()
        async with self.locks.hold(key, self.lock_timeout):
            participation = await fetch_participation(db, request.participation_id, for_update=True)
            if participation is None:
                raise ParticipationNotFoundError

            decision = decide_check_in(
                status=participation.status,
                progress=participation.progress,
                check_in_count=participation.check_in_count,
                check_in_streak=participation.check_in_streak,
                last_check_in_day=participation.last_check_in_day,
                today=request.today,
                duration_days=request.duration_days,
            )
            if isinstance(decision, CheckInRejection):
                # Nothing written; commit only ends the transaction and its row lock.
                await db.commit()
                logger.info(
                    "Check-in rejected for participation %d: %s",
                    request.participation_id,
                    decision.value,
                )
                return CheckInResult(participation=participation, rejection=decision)

            self._assign(participation, decision, request)
            try:
                check_invariants(
                    old_progress=max(request.seen_progress, 0.0),
                    new_progress=participation.progress,
                    new_status=participation.status,
                    completed_at_set=participation.completed_at is not None,
                )
            except Exception:
                await db.rollback()
                raise
            await db.flush()
            return await self._finish(
                db, request, streak=decision.check_in_streak, completed=decision.completed
            )

    @staticmethod
    def _assign(participation: Participation, decision: CheckInDecision, request: CheckInRequest) -> None:
        participation.progress = decision.progress
        participation.check_in_count = decision.check_in_count
        participation.check_in_streak = decision.check_in_streak
        participation.status = decision.status
        participation.last_check_in = request.now
        participation.last_check_in_day = request.today
        if decision.completed:
            participation.completed_at = request.now


def supports_atomic_update(db: AsyncSession) -> bool:
    """True when the bound dialect can run ``UPDATE ... RETURNING``."""
    dialect = db.get_bind().dialect
    return bool(getattr(dialect, "update_returning", False))


def select_backend(
    mode: str,
    db: AsyncSession,
    locks: LockProvider,
    lock_timeout: float = 10.0,
) -> CheckInBackend:
    """Resolve ``auto | atomic | locked`` into a backend for this session's dialect."""
    if mode == "atomic":
        return AtomicCheckInBackend()
    if mode == "locked":
        return LockedCheckInBackend(locks, lock_timeout)
    if mode != "auto":
        raise ValueError(f"Unknown check-in backend: {mode!r}")
    if supports_atomic_update(db):
        return AtomicCheckInBackend()
    logger.info("Dialect lacks UPDATE ... RETURNING; using locked check-in backend")
    return LockedCheckInBackend(locks, lock_timeout)

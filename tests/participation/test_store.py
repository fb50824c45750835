"""Store helpers: failure mapping, timeouts, denormalized counters."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from ctrack.db.models import Challenge, UserStats
from ctrack.participation.backends import CheckInBackend, CheckInRequest, CheckInResult
from ctrack.participation.errors import StoreUnavailableError
from ctrack.participation.store import adjust_participant_count, ensure_user_stats, store_errors, with_timeout


class TestStoreErrors:

    @pytest.mark.asyncio
    async def test_operational_error_becomes_unavailable(self, db_session):
        """Driver connectivity failures surface as StoreUnavailableError."""
        cause = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
        with pytest.raises(StoreUnavailableError) as info:
            async with store_errors(db_session, "check_in"):
                raise cause
        assert info.value.__cause__ is cause

    @pytest.mark.asyncio
    async def test_timeout_becomes_unavailable(self, db_session):
        with pytest.raises(StoreUnavailableError):
            async with store_errors(db_session, "join"):
                raise asyncio.TimeoutError

    @pytest.mark.asyncio
    async def test_integrity_error_passes_through(self, db_session):
        """Constraint violations are business outcomes, not outages."""
        with pytest.raises(IntegrityError):
            async with store_errors(db_session, "join"):
                raise IntegrityError("INSERT", {}, Exception("unique violation"))

    @pytest.mark.asyncio
    async def test_other_errors_pass_through(self, db_session):
        with pytest.raises(ValueError):
            async with store_errors(db_session, "join"):
                raise ValueError("bad input")


class TestWithTimeout:

    @pytest.mark.asyncio
    async def test_disabled(self):
        assert await with_timeout(asyncio.sleep(0, result=7), None) == 7
        assert await with_timeout(asyncio.sleep(0, result=8), 0) == 8

    @pytest.mark.asyncio
    async def test_elapsed(self):
        with pytest.raises(asyncio.TimeoutError):
            await with_timeout(asyncio.sleep(1), 0.01)


class _SlowBackend(CheckInBackend):
    name = "slow"

    async def apply(self, db, request: CheckInRequest) -> CheckInResult:
        await asyncio.sleep(1)
        raise AssertionError("unreachable")


class TestTrackerTimeouts:

    @pytest.mark.asyncio
    async def test_slow_store_is_unavailable(self, make_tracker, challenge, user):
        """A check-in that outlives the store timeout raises StoreUnavailableError."""
        tracker = make_tracker()
        p = await tracker.join(challenge.id, user.id)
        tracker.store_timeout = 0.05
        tracker._backend = _SlowBackend()

        with pytest.raises(StoreUnavailableError):
            await tracker.check_in(p, 30)

        tracker._backend = None
        tracker.store_timeout = None
        current = await tracker.require_participation(challenge.id, user.id)
        assert current.check_in_count == 0


class TestCounters:

    @pytest.mark.asyncio
    async def test_participant_count_floor(self, db_session, challenge):
        """Decrementing an empty count leaves it at zero."""
        await adjust_participant_count(db_session, challenge.id, -1)
        await db_session.commit()
        refreshed = await db_session.get(Challenge, challenge.id, populate_existing=True)
        assert refreshed.participant_count == 0

        await adjust_participant_count(db_session, challenge.id, 2)
        await adjust_participant_count(db_session, challenge.id, -1)
        await db_session.commit()
        refreshed = await db_session.get(Challenge, challenge.id, populate_existing=True)
        assert refreshed.participant_count == 1

    @pytest.mark.asyncio
    async def test_ensure_user_stats_idempotent(self, db_session, user):
        first = await ensure_user_stats(db_session, user.id)
        second = await ensure_user_stats(db_session, user.id)
        await db_session.commit()
        assert first is second
        assert isinstance(first, UserStats)
        assert first.total_points == 0

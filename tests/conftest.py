"""Shared test fixtures.

Every test gets its own file-backed SQLite database (aiosqlite) created from
the ORM metadata. Redis is left uninitialized unless a test injects a mock.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

os.environ["CTRACK_JWT_SECRET"] = "test-secret-with-at-least-32-bytes!!"
os.environ["CTRACK_LOG_FORMAT"] = "console"
os.environ["CTRACK_REDIS_URL"] = ""

from ctrack.auth.jwt import create_access_token  # noqa: E402
from ctrack.config import get_settings  # noqa: E402
from ctrack.database import close_db, get_engine, init_db  # noqa: E402
from ctrack.db.base import Base  # noqa: E402
from ctrack.db.models import Challenge, User  # noqa: E402
from ctrack.dependencies import get_clock  # noqa: E402
from ctrack.participation.clock import FixedClock  # noqa: E402
from ctrack.participation.tracker import ParticipationTracker  # noqa: E402

get_settings.cache_clear()

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _sqlite_url(path: object) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to 2026-03-01 09:00 UTC; tests advance it explicitly."""
    return FixedClock(START)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(_sqlite_url(tmp_path / "ctrack.db"))
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    u = User(
        auth_subject="subject-alice",
        username="alice",
        display_name="Alice",
        avatar_url=None,
        created_at=START,
    )
    db_session.add(u)
    await db_session.commit()
    return u


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    u = User(
        auth_subject="subject-bob",
        username="bob",
        display_name="Bob",
        avatar_url=None,
        created_at=START,
    )
    db_session.add(u)
    await db_session.commit()
    return u


@pytest_asyncio.fixture
async def challenge(db_session: AsyncSession, user: User) -> Challenge:
    """A public 30-day challenge worth 100 points."""
    c = Challenge(
        title="30 days of running",
        description="Run every day",
        category="fitness",
        difficulty="medium",
        duration_days=30,
        points_reward=100,
        tags=["running"],
        is_public=True,
        created_by=user.id,
        participant_count=0,
        created_at=START,
    )
    db_session.add(c)
    await db_session.commit()
    return c


@pytest.fixture
def redis_mock() -> AsyncMock:
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest_asyncio.fixture
async def make_tracker(session_factory, clock) -> AsyncGenerator[Callable[..., ParticipationTracker], None]:
    """Build trackers, each over its own session; extra kwargs go to the constructor."""
    sessions: list[AsyncSession] = []

    def _make(**kwargs: object) -> ParticipationTracker:
        session = session_factory()
        sessions.append(session)
        kwargs.setdefault("store_timeout", None)
        return ParticipationTracker(session, kwargs.pop("clock", clock), **kwargs)  # type: ignore[arg-type]

    yield _make
    for session in sessions:
        await session.close()


@pytest_asyncio.fixture
async def tracker(make_tracker) -> ParticipationTracker:
    return make_tracker()


@pytest.fixture
def token_for() -> Callable[..., dict[str, str]]:
    """Authorization header for an auth-provider subject."""

    def _headers(subject: str = "subject-alice", username: str | None = "alice") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(subject, username=username)}"}

    return _headers


@pytest_asyncio.fixture
async def client(tmp_path, clock: FixedClock) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the full app, bound to a per-test SQLite database."""
    from ctrack.main import create_app

    url = _sqlite_url(tmp_path / "api.db")
    os.environ["CTRACK_DATABASE_URL"] = url
    get_settings.cache_clear()

    app = create_app()
    await init_db(url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await close_db()
    os.environ.pop("CTRACK_DATABASE_URL", None)
    get_settings.cache_clear()

"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ctrack.challenges.router import router as challenges_router
from ctrack.config import get_settings
from ctrack.database import close_db, init_db
from ctrack.health.router import router as health_router
from ctrack.middleware import setup_middleware
from ctrack.participation.router import router as participation_router
from ctrack.redis_client import close_redis, init_redis
from ctrack.users.router import router as users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)
    else:
        logger.warning("Redis disabled: no change notifications, in-process check-in locks only")

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Challenge Tracker API",
        description="Habit challenges: join, check in daily, build streaks",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(challenges_router)
    app.include_router(participation_router)
    app.include_router(users_router)

    return app


app = create_app()

"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from propquest.config import get_settings
from propquest.database import close_db, create_schema, get_session, init_db
from propquest.gamification.router import router as progression_router
from propquest.gamification.seed import seed_badges
from propquest.health.router import router as health_router
from propquest.middleware import setup_middleware
from propquest.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    if settings.auto_create_schema:
        await create_schema()

    # Seed badge definitions (idempotent)
    async for db in get_session():
        await seed_badges(db)
        break
    logger.info("Progression engine started (%s)", settings.environment)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PropQuest Progression API",
        description="XP, levels, streaks, daily rewards, badges and leaderboards for the property platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progression_router)

    return app


app = create_app()

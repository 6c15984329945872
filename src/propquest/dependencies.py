"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.config import get_settings
from propquest.database import get_session as _get_session
from propquest.gamification.claim_cache import ClaimCache, MemoryClaimCache, RedisClaimCache
from propquest.gamification.progression import ProgressionFacade
from propquest.redis_client import get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (None when Redis is not configured) as a FastAPI dependency."""
    yield get_redis_or_none()


@lru_cache
def _memory_claim_cache() -> MemoryClaimCache:
    return MemoryClaimCache(get_settings().claim_marker_ttl_seconds)


def get_claim_cache(redis: object = Depends(get_redis_dep)) -> ClaimCache:  # noqa: B008
    """Advisory claim-marker store selected by settings."""
    settings = get_settings()
    if settings.claim_cache_backend == "memory":
        return _memory_claim_cache()
    return RedisClaimCache(redis, settings.claim_marker_ttl_seconds)


def get_progression(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
    cache: ClaimCache = Depends(get_claim_cache),  # noqa: B008
) -> ProgressionFacade:
    """Request-scoped progression facade."""
    return ProgressionFacade(db, redis, cache)

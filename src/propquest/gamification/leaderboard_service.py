"""Leaderboards: per-category rankings recomputed from the current data snapshot.

Ordering is score DESC, then account age (earliest ``users.created_at``
first), then user id, so ties never resolve arbitrarily. Results may be
cached in Redis for a few seconds; the tables stay the system of record.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from redis.exceptions import RedisError
from sqlalchemy import func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.config import get_settings
from propquest.db.models import ActivityCounter, User, UserBadge, UserStats
from propquest.gamification.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaderboardCategory:
    key: str
    title: str
    score: str  # "total_xp" | "longest_streak" | "badge_count" | "counter"
    counter_key: str | None = None
    account_type: str | None = None


CATEGORIES: dict[str, LeaderboardCategory] = {
    c.key: c
    for c in (
        LeaderboardCategory("top_xp", "Top Explorers", "total_xp"),
        LeaderboardCategory("top_streaks", "Most Dedicated", "longest_streak"),
        LeaderboardCategory("top_collectors", "Badge Collectors", "badge_count"),
        LeaderboardCategory(
            "top_agents", "Top Agents", "counter", counter_key="inquiry_answered", account_type="agent",
        ),
        LeaderboardCategory(
            "top_searchers", "Top Searchers", "counter", counter_key="property_saved", account_type="searcher",
        ),
        LeaderboardCategory(
            "top_homeowners", "Top Homeowners", "counter", counter_key="listing_published",
            account_type="homeowner",
        ),
    )
}


def get_category(key: str) -> LeaderboardCategory:
    """Look up a category or raise ValidationError."""
    category = CATEGORIES.get(key)
    if category is None:
        raise ValidationError(f"Unknown leaderboard category: {key!r}")
    return category


def build_leaderboard_key(category: str, limit: int) -> str:
    """Redis cache key for one computed leaderboard page."""
    return f"leaderboard:{category}:{limit}"


def _ranked_query(category: LeaderboardCategory):  # noqa: ANN202
    """Users with progression, scored for the category and numbered in rank order."""
    badge_counts = (
        select(UserBadge.user_id, func.count(UserBadge.id).label("cnt"))
        .group_by(UserBadge.user_id)
        .subquery()
    )
    badge_count = func.coalesce(badge_counts.c.cnt, 0)

    stmt = (
        select(UserStats.user_id, UserStats.current_level, User.display_name, User.created_at)
        .join(User, User.id == UserStats.user_id)
        .outerjoin(badge_counts, badge_counts.c.user_id == UserStats.user_id)
    )

    if category.score == "total_xp":
        score = UserStats.total_xp
    elif category.score == "longest_streak":
        score = UserStats.longest_streak
    elif category.score == "badge_count":
        score = badge_count
    else:
        counter = (
            select(ActivityCounter.user_id, ActivityCounter.value)
            .where(ActivityCounter.counter_key == category.counter_key)
            .subquery()
        )
        stmt = stmt.outerjoin(counter, counter.c.user_id == UserStats.user_id)
        score = func.coalesce(counter.c.value, literal(0))

    if category.account_type is not None:
        stmt = stmt.where(User.account_type == category.account_type)

    rank = func.row_number().over(
        order_by=(score.desc(), User.created_at.asc(), UserStats.user_id.asc())
    )
    return stmt.add_columns(
        score.label("score"),
        badge_count.label("badge_count"),
        rank.label("rank"),
    ).subquery()


def _entry(row) -> dict:  # noqa: ANN001
    return {
        "rank": row.rank,
        "user_id": row.user_id,
        "display_name": row.display_name or f"User-{row.user_id}",
        "score": int(row.score),
        "level": row.current_level,
        "badge_count": int(row.badge_count),
    }


async def compute_leaderboard(db: AsyncSession, category: LeaderboardCategory, limit: int) -> list[dict]:
    """Top ``limit`` entries, straight from the database."""
    ranked = _ranked_query(category)
    result = await db.execute(select(ranked).order_by(ranked.c.rank).limit(limit))
    return [_entry(row) for row in result]


async def get_user_rank(db: AsyncSession, category: LeaderboardCategory, user_id: int) -> dict | None:
    """A single user's entry, or None if they are not ranked in this category."""
    ranked = _ranked_query(category)
    result = await db.execute(select(ranked).where(ranked.c.user_id == user_id))
    row = result.first()
    return _entry(row) if row is not None else None


async def get_leaderboard(
    db: AsyncSession,
    redis: object,
    category: str,
    limit: int | None = None,
    current_user_id: int | None = None,
) -> dict:
    """Ranked entries for a category plus the current user's own rank.

    An empty board is a valid result, not an error.
    """
    settings = get_settings()
    cat = get_category(category)
    if limit is None:
        limit = settings.leaderboard_default_limit
    if limit < 1 or limit > settings.leaderboard_max_limit:
        raise ValidationError(f"limit must be between 1 and {settings.leaderboard_max_limit}")

    entries = await _cached_entries(db, redis, cat, limit)

    current_user = None
    if current_user_id is not None:
        current_user = next((e for e in entries if e["user_id"] == current_user_id), None)
        if current_user is None:
            current_user = await get_user_rank(db, cat, current_user_id)
        if current_user is not None:
            current_user = {**current_user, "is_current_user": True}

    return {
        "category": cat.key,
        "title": cat.title,
        "entries": [{**e, "is_current_user": e["user_id"] == current_user_id} for e in entries],
        "total": len(entries),
        "current_user": current_user,
    }


async def _cached_entries(
    db: AsyncSession,
    redis: object,
    category: LeaderboardCategory,
    limit: int,
) -> list[dict]:
    ttl = get_settings().leaderboard_cache_ttl_seconds
    if redis is None or ttl <= 0:
        return await compute_leaderboard(db, category, limit)

    key = build_leaderboard_key(category.key, limit)
    try:
        cached = await redis.get(key)  # type: ignore[union-attr]
        if cached:
            return json.loads(cached)
    except RedisError:
        logger.warning("Leaderboard cache read failed for %s", key, exc_info=True)

    entries = await compute_leaderboard(db, category, limit)
    try:
        await redis.set(key, json.dumps(entries), ex=ttl)  # type: ignore[union-attr]
    except RedisError:
        logger.warning("Leaderboard cache write failed for %s", key, exc_info=True)
    return entries

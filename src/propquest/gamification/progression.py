"""Progression facade: the single entry point for presentation code.

The view-state helpers at the top are pure functions of UserStats values and
are safe to call on every render. ``ProgressionFacade`` composes the ledger,
streaks, daily guard, badges and leaderboards behind one object.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.db.models import UserStats
from propquest.gamification.badge_service import BadgeEvaluator, CatalogBadge, earned_badge_ids
from propquest.gamification.calendar import authoritative_today, check_client_day
from propquest.gamification.claim_cache import ClaimCache
from propquest.gamification.counters import increment_counter
from propquest.gamification.daily_service import ClaimResult, DailyClaimGuard
from propquest.gamification.exceptions import ValidationError
from propquest.gamification.level_thresholds import MAX_LEVEL, compute_level
from propquest.gamification.leaderboard_service import get_leaderboard
from propquest.gamification.streak_service import StreakResult, record_activity
from propquest.gamification.xp_service import (
    ACTION_XP,
    get_or_create_stats,
    get_stats,
    grant_xp,
    parse_action_type,
)

logger = logging.getLogger(__name__)

# Ordered display ranks: (minimum level, title)
USER_TITLES: list[tuple[int, str]] = [
    (1, "Newcomer"),
    (3, "Explorer"),
    (5, "Insider"),
    (7, "Expert"),
    (9, "Master"),
    (10, "Legend"),
]

PROFILE_FRAMES: list[str] = ["basic", "bronze", "silver", "gold", "platinum", "diamond"]

# A long enough streak lifts the frame one tier
FRAME_STREAK_BOOST = 30


def progress_to_next_level(total_xp: int) -> dict:
    """XP progress within the current level, clamped to 100% at max level."""
    info = compute_level(total_xp)
    if info["is_max_level"]:
        return {"current": info["xp_into_level"], "required": 0, "percentage": 100.0}
    required = info["xp_for_level"]
    current = info["xp_into_level"]
    percentage = min(round(current / required * 100, 1), 100.0)
    return {"current": current, "required": required, "percentage": percentage}


def get_user_title(level: int) -> str:
    """Display rank for a level: the last table entry whose minimum is reached."""
    title = USER_TITLES[0][1]
    for minimum, name in USER_TITLES:
        if level >= minimum:
            title = name
    return title


def get_profile_frame(level: int, current_streak: int = 0) -> str:
    """Cosmetic frame tier from level, boosted by a long streak."""
    level = min(max(level, 1), MAX_LEVEL)
    tier = level // 2  # 1 -> basic, 2-3 -> bronze, ... 10 -> diamond
    if current_streak >= FRAME_STREAK_BOOST:
        tier += 1
    return PROFILE_FRAMES[min(tier, len(PROFILE_FRAMES) - 1)]


def view_state(stats: UserStats | None) -> dict:
    """Everything the profile widgets render, derived from one stats row."""
    total_xp = stats.total_xp if stats else 0
    current_streak = stats.current_streak if stats else 0
    info = compute_level(total_xp)
    return {
        "total_xp": total_xp,
        "level": info["level"],
        "level_title": info["title"],
        "next_level": info["next_level"],
        "is_max_level": info["is_max_level"],
        "progress": progress_to_next_level(total_xp),
        "title": get_user_title(info["level"]),
        "profile_frame": get_profile_frame(info["level"], current_streak),
        "current_streak": current_streak,
        "longest_streak": stats.longest_streak if stats else 0,
        "last_activity_day": stats.last_activity_day if stats else None,
    }


class ProgressionFacade:
    """Composes the progression services for one request."""

    def __init__(self, db: AsyncSession, redis: object, cache: ClaimCache) -> None:
        self.db = db
        self.redis = redis
        self.daily = DailyClaimGuard(db, redis, cache)
        self.badges = BadgeEvaluator(db, redis)

    @staticmethod
    def _activity_day(activity_day: date | None, today: date | None) -> date:
        if today is None:
            today = authoritative_today()
        if activity_day is None:
            return today
        return check_client_day(activity_day, today)

    async def grant_xp(
        self,
        user_id: int,
        action_type: str,
        amount: int,
        description: str,
        idempotency_key: str | None = None,
    ) -> dict:
        """Grant (or deduct) XP and commit. Returns the applied transaction."""
        entry = await grant_xp(self.db, self.redis, user_id, action_type, amount, description, idempotency_key)
        await self.db.commit()
        stats = await get_stats(self.db, user_id)
        return {
            "granted": entry is not None,
            "xp_amount": entry.xp_amount if entry else 0,
            "requested_amount": amount,
            "total_xp": stats.total_xp if stats else 0,
            "current_level": stats.current_level if stats else 1,
        }

    async def record_activity(
        self,
        user_id: int,
        activity_day: date | None = None,
        today: date | None = None,
    ) -> StreakResult:
        """Record a day of activity and commit."""
        day = self._activity_day(activity_day, today)
        result = await record_activity(self.db, self.redis, user_id, day)
        await self.db.commit()
        return result

    async def record_action(
        self,
        user_id: int,
        action_type: str,
        activity_day: date | None = None,
        today: date | None = None,
    ) -> dict:
        """Full pipeline for a user action: XP, counter, streak, then badges."""
        action = parse_action_type(action_type)
        if action not in ACTION_XP:
            raise ValidationError(f"{action.value!r} cannot be recorded as a user action")

        day = self._activity_day(activity_day, today)
        await get_or_create_stats(self.db, user_id, for_update=True)
        entry = await grant_xp(
            self.db, self.redis, user_id, action, ACTION_XP[action], action.value.replace("_", " ").capitalize(),
        )
        await increment_counter(self.db, user_id, action.value)
        streak = await record_activity(self.db, self.redis, user_id, day)
        await self.db.commit()

        unlocked = await self.evaluate_badges_deferred(user_id)
        return {
            "action_type": action.value,
            "xp_amount": entry.xp_amount if entry else 0,
            "streak": streak.to_dict(),
            "badges_unlocked": [b.to_dict() for b in unlocked],
        }

    async def claim_daily(
        self,
        user_id: int,
        today: date | None = None,
        client_day: date | None = None,
    ) -> ClaimResult:
        """Claim today's reward, then give badges a chance to unlock."""
        result = await self.daily.claim_daily(user_id, today=today, client_day=client_day)
        if not result.already_claimed:
            await self.evaluate_badges_deferred(user_id)
        return result

    async def evaluate_badges(
        self,
        user_id: int,
        stats: dict[str, int] | None = None,
        context: dict[str, int] | None = None,
    ) -> list[CatalogBadge]:
        return await self.badges.evaluate(user_id, stats=stats, context=context)

    async def evaluate_badges_deferred(self, user_id: int) -> list[CatalogBadge]:
        """Evaluate after an action; a failure is logged and retried on the next action."""
        try:
            return await self.badges.evaluate(user_id)
        except SQLAlchemyError:
            await self.db.rollback()
            logger.warning("Badge evaluation deferred for user %s", user_id, exc_info=True)
            return []

    async def get_leaderboard(self, category: str, limit: int | None = None, user_id: int | None = None) -> dict:
        return await get_leaderboard(self.db, self.redis, category, limit, user_id)

    async def get_view_state(self, user_id: int) -> dict:
        """Level, title, progress, frame and streaks for a user."""
        stats = await get_stats(self.db, user_id)
        state = view_state(stats)
        state["user_id"] = user_id
        state["badges_earned"] = len(await earned_badge_ids(self.db, user_id))
        return state

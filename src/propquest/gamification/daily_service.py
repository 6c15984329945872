"""Daily claim guard: at most one daily reward per user per calendar day.

Precedence, highest first:

1. Advisory cache unreachable -> suppress the prompt (fail closed).
2. Dismissed today / this session -> suppress.
3. Prompt already shown this session -> suppress.
4. Cached "claimed" marker for today -> suppress.
5. Durable ``daily_checkins`` row for today -> suppress and backfill the cache.
6. Otherwise the prompt may be shown.

The durable insert on UNIQUE(user_id, checkin_date) is the final arbiter at
claim time; losing that race is reported as ``already_claimed``, never as an
error. Durable-store connectivity errors always propagate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.config import get_settings
from propquest.database import conflict_insert
from propquest.db.models import DailyCheckin
from propquest.gamification.calendar import authoritative_today, day_key
from propquest.gamification.claim_cache import ClaimCache
from propquest.gamification.exceptions import StorageUnavailable
from propquest.gamification.streak_service import (
    STREAK_MILESTONES,
    advance_streak,
    crossed_milestones,
    record_activity,
)
from propquest.gamification.xp_service import ActionType, get_or_create_stats, get_stats, grant_xp

logger = logging.getLogger(__name__)

# Streak length -> multiplier applied to the daily base reward
DAILY_STREAK_MULTIPLIERS: dict[int, float] = {
    3: 1.5,
    7: 2.0,
    30: 3.0,
}


def streak_multiplier(streak: int) -> float:
    """Highest multiplier whose threshold the streak reaches."""
    multiplier = 1.0
    for threshold in sorted(DAILY_STREAK_MULTIPLIERS):
        if streak >= threshold:
            multiplier = DAILY_STREAK_MULTIPLIERS[threshold]
    return multiplier


def daily_reward(base_xp: int, streak: int) -> tuple[int, float]:
    """(xp_earned, multiplier) for a check-in that brings the streak to ``streak``."""
    multiplier = streak_multiplier(streak)
    return math.floor(base_xp * multiplier), multiplier


def checkin_key(user_id: int, checkin_date: date) -> str:
    """Idempotency key of the daily reward grant for one user-day."""
    return f"daily:{user_id}:{checkin_date.isoformat()}"


@dataclass(frozen=True)
class PromptDecision:
    show: bool
    reason: str
    day: date

    def to_dict(self) -> dict:
        return {"show": self.show, "reason": self.reason, "day": self.day.isoformat()}


@dataclass(frozen=True)
class ClaimResult:
    xp_earned: int
    streak_bonus: int
    current_streak: int
    already_claimed: bool
    checkin_date: date
    bonus_multiplier: float = 1.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["checkin_date"] = self.checkin_date.isoformat()
        return data


class DailyClaimGuard:
    """Gate for the daily login bonus."""

    def __init__(self, db: AsyncSession, redis: object, cache: ClaimCache) -> None:
        self.db = db
        self.redis = redis
        self.cache = cache

    async def _find_checkin(self, user_id: int, checkin_date: date) -> DailyCheckin | None:
        result = await self.db.execute(
            select(DailyCheckin).where(
                DailyCheckin.user_id == user_id,
                DailyCheckin.checkin_date == checkin_date,
            )
        )
        return result.scalar_one_or_none()

    async def _backfill(self, user_id: int, key: str) -> None:
        """Best-effort cache write; the durable row already holds the truth."""
        try:
            await self.cache.mark_claimed(user_id, key)
        except StorageUnavailable:
            logger.warning("Could not backfill claimed marker for user %s", user_id, exc_info=True)

    def _cache_day(self, today: date, client_day: date | None) -> str:
        if client_day is not None and client_day != today:
            logger.info(
                "Client day %s differs from authoritative day %s; keying cache on client day",
                client_day, today,
            )
            return day_key(client_day)
        return day_key(today)

    async def should_prompt(
        self,
        user_id: int,
        session_id: str | None = None,
        today: date | None = None,
        client_day: date | None = None,
    ) -> PromptDecision:
        """Decide whether the daily reward prompt may be displayed."""
        if today is None:
            today = authoritative_today()
        key = self._cache_day(today, client_day)

        try:
            markers = await self.cache.get_markers(user_id, key, session_id)
        except StorageUnavailable:
            logger.warning("Claim cache unavailable; suppressing daily prompt for user %s", user_id)
            return PromptDecision(show=False, reason="storage_unavailable", day=today)

        if markers.dismissed:
            return PromptDecision(show=False, reason="dismissed", day=today)
        if markers.prompt_shown:
            return PromptDecision(show=False, reason="already_shown", day=today)
        if markers.claimed:
            return PromptDecision(show=False, reason="already_claimed", day=today)

        await get_stats(self.db, user_id)
        if await self._find_checkin(user_id, today) is not None:
            await self._backfill(user_id, key)
            return PromptDecision(show=False, reason="already_claimed", day=today)

        return PromptDecision(show=True, reason="eligible", day=today)

    async def mark_prompt_shown(
        self,
        session_id: str,
        today: date | None = None,
        client_day: date | None = None,
    ) -> None:
        """Remember that this session has displayed the prompt."""
        if today is None:
            today = authoritative_today()
        await self.cache.mark_prompt_shown(session_id, self._cache_day(today, client_day))

    async def dismiss(
        self,
        user_id: int,
        session_id: str | None = None,
        today: date | None = None,
        client_day: date | None = None,
    ) -> None:
        """User deferred the prompt: do not show it again today or this session."""
        if today is None:
            today = authoritative_today()
        await self.cache.mark_dismissed(user_id, self._cache_day(today, client_day), session_id)

    async def claim_daily(
        self,
        user_id: int,
        today: date | None = None,
        client_day: date | None = None,
    ) -> ClaimResult:
        """Claim today's reward. Safe to call concurrently and to retry.

        Exactly one caller creates the check-in row and receives XP; every
        other caller gets ``already_claimed=True`` and nothing is granted.
        Commits on success.
        """
        if today is None:
            today = authoritative_today()
        key = self._cache_day(today, client_day)

        stats = await get_or_create_stats(self.db, user_id, for_update=True)

        existing = await self._find_checkin(user_id, today)
        if existing is not None:
            await self.db.commit()
            await self._backfill(user_id, key)
            return await self._already_claimed(user_id, today)

        previous_streak = stats.current_streak
        projected = advance_streak(
            stats.current_streak,
            stats.longest_streak,
            stats.last_activity_day,
            stats.streak_started_on,
            today,
        )
        xp_earned, multiplier = daily_reward(get_settings().daily_checkin_xp, projected.current_streak)
        baseline = previous_streak if projected.current_streak > 1 else 0
        streak_bonus = sum(
            STREAK_MILESTONES[t] for t in crossed_milestones(baseline, projected.current_streak)
        ) if projected.changed else 0

        inserted = await self.db.execute(
            conflict_insert(self.db, DailyCheckin)
            .values(
                user_id=user_id,
                checkin_date=today,
                xp_earned=xp_earned,
                streak_bonus=streak_bonus,
                streak_count=projected.current_streak,
                bonus_multiplier=multiplier,
                created_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["user_id", "checkin_date"])
            .returning(DailyCheckin.id)
        )
        if inserted.scalar_one_or_none() is None:
            # Another tab/device won the race for today's row
            await self.db.commit()
            logger.info("Concurrent daily claim lost for user %s on %s", user_id, today)
            await self._backfill(user_id, key)
            return await self._already_claimed(user_id, today)

        streak = await record_activity(self.db, self.redis, user_id, today)
        await grant_xp(
            self.db,
            self.redis,
            user_id,
            ActionType.DAILY_CHECKIN,
            xp_earned,
            f"Daily check-in reward (day {streak.current_streak})",
            idempotency_key=checkin_key(user_id, today),
        )
        await self.db.commit()
        await self._backfill(user_id, key)

        logger.info(
            "Daily claim for user %s on %s: %d XP, streak %d, bonus %d",
            user_id, today, xp_earned, streak.current_streak, streak.milestone_xp,
        )
        return ClaimResult(
            xp_earned=xp_earned,
            streak_bonus=streak.milestone_xp,
            current_streak=streak.current_streak,
            already_claimed=False,
            checkin_date=today,
            bonus_multiplier=multiplier,
        )

    async def _already_claimed(self, user_id: int, today: date) -> ClaimResult:
        # Re-read so a concurrent winner's streak is reported, not our stale copy
        stats = await get_or_create_stats(self.db, user_id)
        return ClaimResult(
            xp_earned=0,
            streak_bonus=0,
            current_streak=stats.current_streak if stats else 0,
            already_claimed=True,
            checkin_date=today,
        )

    async def checkin_status(self, user_id: int, today: date | None = None) -> dict:
        """Whether today's reward was claimed, with the current streak."""
        if today is None:
            today = authoritative_today()
        stats = await get_stats(self.db, user_id)
        checkin = await self._find_checkin(user_id, today)
        return {
            "has_checked_in_today": checkin is not None,
            "current_streak": stats.current_streak if stats else 0,
            "today_checkin": {
                "checkin_date": checkin.checkin_date.isoformat(),
                "xp_earned": checkin.xp_earned,
                "streak_bonus": checkin.streak_bonus,
                "streak_count": checkin.streak_count,
                "bonus_multiplier": checkin.bonus_multiplier,
            } if checkin is not None else None,
        }

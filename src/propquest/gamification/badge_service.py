"""Badge evaluation and award with duplicate prevention."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.database import conflict_insert
from propquest.db.models import Badge, UserBadge, UserStats
from propquest.gamification.badge_rules import RuleContext, UnlockRule, evaluate_rule, parse_rule
from propquest.gamification.counters import BADGES, CHECKINS, get_counters
from propquest.gamification.exceptions import NotFound
from propquest.gamification.xp_service import ACTION_XP, ActionType, get_stats, get_user, grant_xp

logger = logging.getLogger(__name__)

BADGE_CATEGORIES = ("universal", "agent", "homeowner", "searcher")

# Counters the engine maintains itself; callers can never supply them
TRACKED_COUNTERS = frozenset({action.value for action in ACTION_XP} | {CHECKINS, BADGES})


@dataclass(frozen=True)
class CatalogBadge:
    """Detached snapshot of a catalog row with its parsed rule."""

    id: int
    badge_key: str
    name: str
    description: str
    icon: str
    category: str
    xp_reward: int
    rule: UnlockRule
    sort_order: int = 0

    @classmethod
    def from_row(cls, badge: Badge) -> CatalogBadge:
        return cls(
            id=badge.id,
            badge_key=badge.badge_key,
            name=badge.name,
            description=badge.description,
            icon=badge.icon,
            category=badge.category,
            xp_reward=badge.xp_reward,
            rule=parse_rule(badge.unlock_rule),
            sort_order=badge.sort_order,
        )

    def to_dict(self) -> dict:
        return {
            "badge_key": self.badge_key,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
            "xp_reward": self.xp_reward,
        }


async def load_catalog(db: AsyncSession) -> list[CatalogBadge]:
    """All active badges, in display order."""
    result = await db.execute(
        select(Badge).where(Badge.is_active.is_(True)).order_by(Badge.sort_order, Badge.id)
    )
    return [CatalogBadge.from_row(b) for b in result.scalars()]


async def get_badge_by_key(db: AsyncSession, badge_key: str) -> CatalogBadge:
    """Fetch a badge by key or raise NotFound."""
    result = await db.execute(select(Badge).where(Badge.badge_key == badge_key))
    badge = result.scalar_one_or_none()
    if badge is None:
        raise NotFound(f"Badge {badge_key!r} not found")
    return CatalogBadge.from_row(badge)


async def has_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def earned_badge_ids(db: AsyncSession, user_id: int) -> set[int]:
    result = await db.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
    return set(result.scalars())


async def list_user_badges(db: AsyncSession, user_id: int) -> list[dict]:
    """Earned badges, newest first."""
    await get_user(db, user_id)
    result = await db.execute(
        select(UserBadge)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
    )
    return [
        {**CatalogBadge.from_row(ub.badge).to_dict(), "earned_at": ub.earned_at}
        for ub in result.scalars().unique()
    ]


def badge_reward_key(badge_key: str, user_id: int) -> str:
    """Idempotency key of a badge's XP reward for one user."""
    return f"badge:{badge_key}:{user_id}"


async def award_badge(
    db: AsyncSession,
    redis: object,
    user_id: int,
    badge: CatalogBadge,
) -> bool:
    """Award a badge to a user and commit.

    Returns True if awarded, False if already earned (including losing a
    concurrent race). The UserBadge row and its XP reward are committed
    together, and the reward is keyed so a retry can never grant it twice.
    """
    if await has_badge(db, user_id, badge.id):
        return False

    inserted = await db.execute(
        conflict_insert(db, UserBadge)
        .values(user_id=user_id, badge_id=badge.id, earned_at=datetime.now(timezone.utc))
        .on_conflict_do_nothing(index_elements=["user_id", "badge_id"])
        .returning(UserBadge.id)
    )
    if inserted.scalar_one_or_none() is None:
        await db.commit()
        return False  # Race condition: badge already awarded

    if badge.xp_reward > 0:
        await grant_xp(
            db,
            redis,
            user_id,
            ActionType.BADGE_REWARD,
            badge.xp_reward,
            f'Earned badge: "{badge.name}"',
            idempotency_key=badge_reward_key(badge.badge_key, user_id),
        )

    await db.commit()
    logger.info("Badge %s awarded to user %s", badge.badge_key, user_id)
    await _emit_badge_earned(redis, user_id, badge)
    return True


def layer_supplied(stored: dict[str, int], supplied: dict[str, int] | None, reserved: frozenset[str]) -> list[str]:
    """Add caller values for keys the engine does not store. Returns the keys refused."""
    refused = []
    for key, value in (supplied or {}).items():
        if key in reserved or key in stored:
            refused.append(key)
        else:
            stored[key] = value
    return refused


def stats_snapshot(stats: UserStats | None) -> dict[str, int]:
    if stats is None:
        return {"total_xp": 0, "current_level": 1, "current_streak": 0, "longest_streak": 0}
    return {
        "total_xp": stats.total_xp,
        "current_level": stats.current_level,
        "current_streak": stats.current_streak,
        "longest_streak": stats.longest_streak,
    }


class BadgeEvaluator:
    """Evaluates the badge catalog against a user's stats and event counts."""

    def __init__(self, db: AsyncSession, redis: object) -> None:
        self.db = db
        self.redis = redis
        self._badge_cache: list[CatalogBadge] | None = None

    async def _load_badges(self) -> list[CatalogBadge]:
        """Load and cache all badge definitions."""
        if self._badge_cache is None:
            self._badge_cache = await load_catalog(self.db)
        return self._badge_cache

    async def build_context(
        self,
        user_id: int,
        stats: dict[str, int] | None = None,
        context: dict[str, int] | None = None,
    ) -> RuleContext:
        """Stored stats and counters, plus caller values for keys nothing here stores.

        Stored values always win, so a caller can never unlock a badge by
        claiming progress the user has not made.
        """
        snapshot = stats_snapshot(await get_stats(self.db, user_id))
        refused = layer_supplied(snapshot, stats, frozenset(snapshot))
        counts = await get_counters(self.db, user_id)
        refused += layer_supplied(counts, context, TRACKED_COUNTERS)
        if refused:
            logger.info("Ignored caller-supplied values for stored keys %s (user %s)", sorted(refused), user_id)
        return RuleContext(stats=snapshot, event_counts=counts)

    async def evaluate(
        self,
        user_id: int,
        stats: dict[str, int] | None = None,
        context: dict[str, int] | None = None,
    ) -> list[CatalogBadge]:
        """Award every badge whose rule now holds. Returns the newly unlocked badges.

        Already-earned badges are skipped without evaluating their rule.
        Badge XP can raise the level, so evaluation repeats until nothing new
        unlocks.
        """
        user = await get_user(self.db, user_id)
        eligible = {"universal", user.account_type}
        badges = [b for b in await self._load_badges() if b.category in eligible]

        unlocked: list[CatalogBadge] = []
        while True:
            earned = await earned_badge_ids(self.db, user_id)
            pending = [b for b in badges if b.id not in earned]
            if not pending:
                break
            ctx = await self.build_context(user_id, stats, context)
            newly = []
            for badge in pending:
                if evaluate_rule(badge.rule, ctx) and await award_badge(self.db, self.redis, user_id, badge):
                    newly.append(badge)
            if not newly:
                break
            unlocked += newly

        return unlocked


async def _emit_badge_earned(redis: object, user_id: int, badge: CatalogBadge) -> None:
    """Broadcast a badge unlock (Redis pub/sub)."""
    if redis is not None:
        try:
            await redis.publish(  # type: ignore[union-attr]
                "pubsub:badge_earned",
                json.dumps({
                    "user_id": user_id,
                    "badge_key": badge.badge_key,
                    "badge_name": badge.name,
                    "category": badge.category,
                    "xp_reward": badge.xp_reward,
                }),
            )
        except Exception:
            logger.warning("Failed to publish badge_earned notification", exc_info=True)

"""XP ledger: append-only grants with clamping, idempotency and level-up detection."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.config import get_settings
from propquest.database import conflict_insert
from propquest.db.models import User, UserStats, XPTransaction
from propquest.gamification.exceptions import NotFound, ValidationError
from propquest.gamification.level_thresholds import level_for_xp, title_for_level

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    """XP-granting actions."""

    LOGIN = "login"
    DAILY_CHECKIN = "daily_checkin"
    PROPERTY_SAVED = "property_saved"
    PROPERTY_COMPARED = "property_compared"
    INQUIRY_SUBMITTED = "inquiry_submitted"
    INQUIRY_ANSWERED = "inquiry_answered"
    LISTING_PUBLISHED = "listing_published"
    PROFILE_COMPLETED = "profile_completed"
    STREAK_MILESTONE = "streak_milestone"
    BADGE_REWARD = "badge_reward"
    PENALTY = "penalty"
    ADMIN_ADJUSTMENT = "admin_adjustment"


# Fixed XP for user-initiated actions recorded through record_action()
ACTION_XP: dict[ActionType, int] = {
    ActionType.LOGIN: 5,
    ActionType.PROPERTY_SAVED: 10,
    ActionType.PROPERTY_COMPARED: 5,
    ActionType.INQUIRY_SUBMITTED: 20,
    ActionType.INQUIRY_ANSWERED: 25,
    ActionType.LISTING_PUBLISHED: 50,
    ActionType.PROFILE_COMPLETED: 30,
}

# Only these may carry a negative amount
_DEBIT_ACTIONS = frozenset({ActionType.PENALTY, ActionType.ADMIN_ADJUSTMENT})


def parse_action_type(value: str | ActionType) -> ActionType:
    """Coerce a raw action type, raising ValidationError if unknown."""
    try:
        return ActionType(value)
    except ValueError:
        raise ValidationError(f"Unknown action_type: {value!r}") from None


def validate_amount(action_type: ActionType, amount: int) -> None:
    """Reject malformed or out-of-range XP requests."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("XP amount must be an integer")
    limit = get_settings().max_xp_per_transaction
    if abs(amount) > limit:
        raise ValidationError(f"XP amount {amount} exceeds the per-transaction limit of {limit}")
    if amount < 0 and action_type not in _DEBIT_ACTIONS:
        raise ValidationError(f"Negative XP is not allowed for action_type {action_type.value!r}")


async def get_user(db: AsyncSession, user_id: int) -> User:
    """Fetch a user or raise NotFound."""
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user


async def get_or_create_stats(
    db: AsyncSession,
    user_id: int,
    *,
    for_update: bool = False,
) -> UserStats:
    """Get or create the progression row for a user.

    With ``for_update`` the row is locked for the rest of the transaction so
    concurrent read-modify-write on the same user serializes.

    Creation is race-safe: concurrent first calls for a user all insert with
    ON CONFLICT DO NOTHING, so exactly one row is created and every caller
    then reads that row. Nothing already pending in the session is lost.
    """
    stmt = select(UserStats).where(UserStats.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    stmt = stmt.execution_options(populate_existing=True)
    stats = (await db.execute(stmt)).scalar_one_or_none()
    if stats is not None:
        return stats

    await get_user(db, user_id)
    now = datetime.now(timezone.utc)
    await db.execute(
        conflict_insert(db, UserStats)
        .values(
            user_id=user_id,
            total_xp=0,
            current_level=1,
            current_streak=0,
            longest_streak=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    # Ours or a concurrent caller's, the row exists now
    return (await db.execute(stmt)).scalar_one()


async def find_transaction(db: AsyncSession, idempotency_key: str) -> XPTransaction | None:
    """Look up a transaction by idempotency key."""
    result = await db.execute(
        select(XPTransaction).where(XPTransaction.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def grant_xp(
    db: AsyncSession,
    redis: object,
    user_id: int,
    action_type: str | ActionType,
    amount: int,
    description: str,
    idempotency_key: str | None = None,
) -> XPTransaction | None:
    """Append an XP transaction and update the user's totals.

    Returns the new transaction, or None if ``idempotency_key`` was already
    used, including by a concurrent grant that committed first. Penalties
    never drive ``total_xp`` below zero: the amount is clamped and the
    clamped value is what gets recorded.

    The caller owns the transaction boundary; nothing is committed here.
    """
    action = parse_action_type(action_type)
    validate_amount(action, amount)

    stats = await get_or_create_stats(db, user_id, for_update=True)
    if idempotency_key is not None and await find_transaction(db, idempotency_key):
        return None

    now = datetime.now(timezone.utc)

    applied = max(amount, -stats.total_xp)
    if applied != amount:
        logger.info(
            "Clamped XP penalty for user %s: requested %d, applied %d", user_id, amount, applied
        )

    stmt = conflict_insert(db, XPTransaction).values(
        user_id=user_id,
        action_type=action.value,
        xp_amount=applied,
        requested_amount=amount,
        description=description,
        idempotency_key=idempotency_key,
        created_at=now,
    )
    if idempotency_key is not None:
        stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"])
    entry_id = (await db.execute(stmt.returning(XPTransaction.id))).scalar_one_or_none()
    if entry_id is None:
        logger.info("XP grant %s for user %s was already applied concurrently", idempotency_key, user_id)
        return None

    entry = await db.get(XPTransaction, entry_id)
    old_level = stats.current_level
    stats.total_xp += applied
    stats.current_level = level_for_xp(stats.total_xp)
    stats.updated_at = now

    await db.flush()

    if stats.current_level > old_level:
        await _emit_level_up(redis, user_id, old_level, stats.current_level)

    return entry


async def ledger_total(db: AsyncSession, user_id: int) -> int:
    """Sum of all applied transaction amounts; equals UserStats.total_xp."""
    result = await db.execute(
        select(func.coalesce(func.sum(XPTransaction.xp_amount), 0)).where(XPTransaction.user_id == user_id)
    )
    return int(result.scalar_one())


async def get_xp_history(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[XPTransaction], int]:
    """Paginated transactions, newest first. Returns (entries, total)."""
    await get_user(db, user_id)
    total_result = await db.execute(
        select(func.count()).select_from(XPTransaction).where(XPTransaction.user_id == user_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(XPTransaction)
        .where(XPTransaction.user_id == user_id)
        .order_by(XPTransaction.created_at.desc(), XPTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def _emit_level_up(
    redis: object,
    user_id: int,
    old_level: int,
    new_level: int,
) -> None:
    """Broadcast a level-up for activity feeds / overlays."""
    title = title_for_level(new_level)
    logger.info("User %s levelled up: %d -> %d (%s)", user_id, old_level, new_level, title)

    if redis is not None:
        try:
            await redis.publish(  # type: ignore[union-attr]
                "pubsub:level_up",
                json.dumps({
                    "user_id": user_id,
                    "old_level": old_level,
                    "new_level": new_level,
                    "title": title,
                }),
            )
        except Exception:
            logger.warning("Failed to publish level_up broadcast", exc_info=True)


async def get_stats(db: AsyncSession, user_id: int) -> UserStats | None:
    """Read-only lookup; None if the user has no progression yet. Raises NotFound for unknown users."""
    stats = await db.get(UserStats, user_id)
    if stats is None:
        await get_user(db, user_id)
    return stats

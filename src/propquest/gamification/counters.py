"""Domain activity counters used by badge rules and leaderboards.

The counters belong to the modules that perform the actions (inquiries,
saved properties, listings); progression only increments and reads them.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.database import conflict_insert
from propquest.db.models import ActivityCounter, DailyCheckin, UserBadge

# Synthetic counters derived from other tables rather than stored
CHECKINS = "daily_checkins"
BADGES = "badges_earned"


async def increment_counter(
    db: AsyncSession,
    user_id: int,
    counter_key: str,
    by: int = 1,
) -> int:
    """Add ``by`` to a counter, creating it on first use. Returns the new value.

    A single upsert, so concurrent first increments never collide.
    """
    now = datetime.now(timezone.utc)
    stmt = conflict_insert(db, ActivityCounter).values(
        user_id=user_id,
        counter_key=counter_key,
        value=by,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "counter_key"],
        set_={
            "value": ActivityCounter.value + by,
            "updated_at": now,
        },
    )
    result = await db.execute(stmt.returning(ActivityCounter.value))
    return result.scalar_one()


async def get_counters(db: AsyncSession, user_id: int) -> dict[str, int]:
    """All counters for a user, including the derived check-in and badge counts."""
    result = await db.execute(
        select(ActivityCounter.counter_key, ActivityCounter.value).where(ActivityCounter.user_id == user_id)
    )
    counts = {row.counter_key: row.value for row in result}

    checkins = await db.execute(
        select(func.count()).select_from(DailyCheckin).where(DailyCheckin.user_id == user_id)
    )
    counts[CHECKINS] = checkins.scalar_one()

    badges = await db.execute(
        select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id)
    )
    counts[BADGES] = badges.scalar_one()
    return counts

"""Streak tracking: consecutive calendar days of activity and milestone bonuses."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from propquest.gamification.xp_service import ActionType, get_or_create_stats, grant_xp

logger = logging.getLogger(__name__)

# --- Streak milestone bonuses (days -> XP), paid once per unbroken streak ---
STREAK_MILESTONES: dict[int, int] = {
    7: 25,
    30: 100,
}


@dataclass(frozen=True)
class StreakUpdate:
    current_streak: int
    longest_streak: int
    last_activity_day: date | None
    streak_started_on: date | None
    changed: bool


@dataclass
class StreakResult:
    current_streak: int
    longest_streak: int
    milestone_xp: int = 0
    milestones: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def advance_streak(
    current_streak: int,
    longest_streak: int,
    last_activity_day: date | None,
    streak_started_on: date | None,
    activity_day: date,
) -> StreakUpdate:
    """Pure streak transition for one activity day.

    Same day (or an older, out-of-order day) is a no-op; the next day
    extends the streak; any gap restarts it at 1.
    """
    if last_activity_day is not None and activity_day <= last_activity_day:
        return StreakUpdate(current_streak, longest_streak, last_activity_day, streak_started_on, changed=False)

    if last_activity_day is not None and activity_day == last_activity_day + timedelta(days=1) and current_streak > 0:
        current = current_streak + 1
        started = streak_started_on or activity_day
    else:
        current = 1
        started = activity_day

    return StreakUpdate(
        current_streak=current,
        longest_streak=max(longest_streak, current),
        last_activity_day=activity_day,
        streak_started_on=started,
        changed=True,
    )


def crossed_milestones(previous_streak: int, new_streak: int) -> list[int]:
    """Milestone thresholds reached by moving from previous_streak to new_streak."""
    return [t for t in sorted(STREAK_MILESTONES) if previous_streak < t <= new_streak]


def milestone_key(user_id: int, streak_started_on: date, threshold: int) -> str:
    """Idempotency key binding a milestone bonus to one unbroken streak."""
    return f"streak:{user_id}:{streak_started_on.isoformat()}:{threshold}"


async def record_activity(
    db: AsyncSession,
    redis: object,
    user_id: int,
    activity_day: date,
) -> StreakResult:
    """Apply one day of activity to the user's streak.

    Milestone bonuses are granted through the XP ledger keyed on the streak's
    start day, so a retried or repeated call never pays a milestone twice.
    The caller commits.
    """
    stats = await get_or_create_stats(db, user_id, for_update=True)
    previous = stats.current_streak
    update = advance_streak(
        stats.current_streak,
        stats.longest_streak,
        stats.last_activity_day,
        stats.streak_started_on,
        activity_day,
    )
    if not update.changed:
        return StreakResult(current_streak=stats.current_streak, longest_streak=stats.longest_streak)

    if update.current_streak == 1 and previous > 1:
        logger.info("Streak reset for user %s after %d days", user_id, previous)

    stats.current_streak = update.current_streak
    stats.longest_streak = update.longest_streak
    stats.last_activity_day = update.last_activity_day
    stats.streak_started_on = update.streak_started_on
    stats.updated_at = datetime.now(timezone.utc)
    await db.flush()

    result = StreakResult(current_streak=update.current_streak, longest_streak=update.longest_streak)
    baseline = previous if update.current_streak > 1 else 0
    for threshold in crossed_milestones(baseline, update.current_streak):
        entry = await grant_xp(
            db,
            redis,
            user_id,
            ActionType.STREAK_MILESTONE,
            STREAK_MILESTONES[threshold],
            f"{threshold}-day streak bonus",
            idempotency_key=milestone_key(user_id, update.streak_started_on, threshold),
        )
        if entry is not None:
            result.milestone_xp += entry.xp_amount
            result.milestones.append(threshold)
            logger.info("Streak milestone %d reached by user %s", threshold, user_id)

    return result

"""Badge evaluator: unlocks, category filtering, and single XP reward per unlock."""

from __future__ import annotations

import asyncio
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.db.models import UserBadge, XPTransaction
from propquest.gamification.badge_service import (
    BadgeEvaluator,
    award_badge,
    get_badge_by_key,
    list_user_badges,
)
from propquest.gamification.counters import increment_counter
from propquest.gamification.exceptions import NotFound
from propquest.gamification.xp_service import ActionType, get_stats, grant_xp, ledger_total


@pytest_asyncio.fixture
async def badge_db(db_session: AsyncSession, make_user):
    searcher = await make_user(db_session, "sam", account_type="searcher")
    agent = await make_user(db_session, "alex", account_type="agent")
    return db_session, searcher, agent


async def _earned_keys(db: AsyncSession, user_id: int) -> set[str]:
    return {b["badge_key"] for b in await list_user_badges(db, user_id)}


async def _reward_rows(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(XPTransaction).where(
            XPTransaction.user_id == user_id,
            XPTransaction.action_type == ActionType.BADGE_REWARD.value,
        )
    )
    return result.scalar_one()


class TestEvaluate:

    @pytest.mark.asyncio
    async def test_nothing_unlocks_without_activity(self, badge_db):
        db, searcher, _ = badge_db
        assert await BadgeEvaluator(db, None).evaluate(searcher.id) == []

    @pytest.mark.asyncio
    async def test_counter_unlocks_badge_with_reward(self, badge_db):
        db, searcher, _ = badge_db
        await increment_counter(db, searcher.id, "property_saved")
        await db.commit()

        unlocked = await BadgeEvaluator(db, None).evaluate(searcher.id)

        assert [b.badge_key for b in unlocked] == ["first_save"]
        assert (await get_stats(db, searcher.id)).total_xp == 15

    @pytest.mark.asyncio
    async def test_repeated_evaluation_unlocks_and_pays_once(self, badge_db):
        db, searcher, _ = badge_db
        await increment_counter(db, searcher.id, "property_saved")
        await db.commit()

        evaluator = BadgeEvaluator(db, None)
        first = await evaluator.evaluate(searcher.id)
        second = await evaluator.evaluate(searcher.id)
        third = await BadgeEvaluator(db, None).evaluate(searcher.id)

        assert len(first) == 1
        assert second == [] and third == []
        assert await _reward_rows(db, searcher.id) == 1
        assert await ledger_total(db, searcher.id) == 15

    @pytest.mark.asyncio
    async def test_other_account_types_are_filtered(self, badge_db):
        db, searcher, agent = badge_db
        await increment_counter(db, searcher.id, "inquiry_answered")
        await increment_counter(db, agent.id, "inquiry_answered")
        await db.commit()

        searcher_unlocks = await BadgeEvaluator(db, None).evaluate(searcher.id)
        agent_unlocks = await BadgeEvaluator(db, None).evaluate(agent.id)

        assert searcher_unlocks == []
        assert [b.badge_key for b in agent_unlocks] == ["first_response"]

    @pytest.mark.asyncio
    async def test_supplied_values_cannot_raise_stored_progress(self, badge_db):
        db, _, agent = badge_db
        unlocked = await BadgeEvaluator(db, None).evaluate(
            agent.id,
            stats={"current_level": 10, "longest_streak": 30},
            context={"inquiry_answered": 10, "badges_earned": 5},
        )
        assert unlocked == []
        assert await get_stats(db, agent.id) is None

    @pytest.mark.asyncio
    async def test_supplied_values_only_fill_untracked_keys(self, badge_db):
        db, _, agent = badge_db
        await increment_counter(db, agent.id, "inquiry_answered", by=2)
        await db.commit()

        ctx = await BadgeEvaluator(db, None).build_context(
            agent.id,
            stats={"current_level": 9, "referrals": 4},
            context={"inquiry_answered": 40, "open_house_visits": 3},
        )

        assert ctx.stats["current_level"] == 1
        assert ctx.stats["referrals"] == 4
        assert ctx.event_counts["inquiry_answered"] == 2
        assert ctx.event_counts["open_house_visits"] == 3

    @pytest.mark.asyncio
    async def test_all_of_needs_every_condition(self, badge_db):
        db, _, agent = badge_db
        evaluator = BadgeEvaluator(db, None)

        await increment_counter(db, agent.id, "inquiry_answered", by=50)
        await db.commit()

        unlocked = await evaluator.evaluate(agent.id)
        assert "top_closer" not in {b.badge_key for b in unlocked}

        await grant_xp(db, None, agent.id, ActionType.ADMIN_ADJUSTMENT, 1000, "promotion")
        await db.commit()
        unlocked = await evaluator.evaluate(agent.id)
        assert "top_closer" in {b.badge_key for b in unlocked}

    @pytest.mark.asyncio
    async def test_badge_xp_can_cascade_into_level_badge(self, badge_db):
        """Badge rewards raise the level, and the level badge unlocks in the same call."""
        db, _, agent = badge_db
        await grant_xp(db, None, agent.id, ActionType.ADMIN_ADJUSTMENT, 990, "almost level 5")
        await increment_counter(db, agent.id, "inquiry_answered")
        await db.commit()

        unlocked = await BadgeEvaluator(db, None).evaluate(agent.id)

        assert [b.badge_key for b in unlocked] == ["first_response", "rising_star"]
        stats = await get_stats(db, agent.id)
        assert stats.total_xp == 990 + 25 + 100
        assert stats.current_level == 5

    @pytest.mark.asyncio
    async def test_unknown_user(self, badge_db):
        db, _, _ = badge_db
        with pytest.raises(NotFound):
            await BadgeEvaluator(db, None).evaluate(777)


class TestAwardBadge:

    @pytest.mark.asyncio
    async def test_award_is_idempotent(self, badge_db):
        db, searcher, _ = badge_db
        badge = await get_badge_by_key(db, "first_save")

        assert await award_badge(db, None, searcher.id, badge) is True
        assert await award_badge(db, None, searcher.id, badge) is False
        assert await _reward_rows(db, searcher.id) == 1

    @pytest.mark.asyncio
    async def test_lost_race_is_not_an_error(self, badge_db, other_session, monkeypatch):
        db, searcher, _ = badge_db
        badge = await get_badge_by_key(db, "first_save")
        other_session.add(UserBadge(user_id=searcher.id, badge_id=badge.id, earned_at=searcher.created_at))
        await other_session.commit()

        async def not_yet(*_args):
            return False

        monkeypatch.setattr("propquest.gamification.badge_service.has_badge", not_yet)
        assert await award_badge(db, None, searcher.id, badge) is False
        assert await _reward_rows(db, searcher.id) == 0

    @pytest.mark.asyncio
    async def test_concurrent_awards_have_one_winner(self, badge_db, other_session):
        db, searcher, _ = badge_db
        badge = await get_badge_by_key(db, "first_save")

        results = await asyncio.gather(
            award_badge(db, None, searcher.id, badge),
            award_badge(other_session, None, searcher.id, badge),
        )

        assert sorted(results) == [False, True]
        rows = await db.execute(
            select(func.count()).select_from(UserBadge).where(UserBadge.user_id == searcher.id)
        )
        assert rows.scalar_one() == 1
        assert await _reward_rows(db, searcher.id) == 1
        assert await ledger_total(db, searcher.id) == badge.xp_reward

    @pytest.mark.asyncio
    async def test_unknown_badge_key(self, badge_db):
        db, _, _ = badge_db
        with pytest.raises(NotFound):
            await get_badge_by_key(db, "moon_landing")

    @pytest.mark.asyncio
    async def test_earned_badges_listed(self, badge_db):
        db, searcher, _ = badge_db
        await award_badge(db, None, searcher.id, await get_badge_by_key(db, "first_inquiry"))
        assert await _earned_keys(db, searcher.id) == {"first_inquiry"}

"""Progression API endpoint tests."""

from __future__ import annotations

from datetime import date

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from propquest.gamification.claim_cache import MemoryClaimCache
from propquest.gamification.exceptions import StorageUnavailable
from propquest.gamification.progression import ProgressionFacade


@pytest.fixture
def server_day(monkeypatch) -> date:
    day = date(2026, 4, 1)
    monkeypatch.setattr("propquest.gamification.progression.authoritative_today", lambda: day)
    return day


@pytest_asyncio.fixture
async def api_user(client: AsyncClient, db_session, make_user) -> int:
    user = await make_user(db_session, "robin", account_type="agent")
    return user.id


class TestCatalog:

    @pytest.mark.asyncio
    async def test_levels(self, client: AsyncClient):
        response = await client.get("/api/v1/levels")
        assert response.status_code == 200
        levels = response.json()["levels"]
        assert len(levels) == 10
        assert levels[0] == {"level": 1, "title": "Newcomer", "xp_required": 0, "cumulative": 0}

    @pytest.mark.asyncio
    async def test_badges(self, client: AsyncClient):
        response = await client.get("/api/v1/badges")
        assert response.status_code == 200
        keys = [b["badge_key"] for b in response.json()["badges"]]
        assert len(keys) == 16
        assert keys[0] == "welcome_aboard"


class TestXPEndpoints:

    @pytest.mark.asyncio
    async def test_grant_and_history(self, client: AsyncClient, api_user: int):
        response = await client.post(
            f"/api/v1/users/{api_user}/xp",
            json={"action_type": "inquiry_answered", "amount": 120, "description": "answered"},
        )
        assert response.status_code == 200
        assert response.json()["total_xp"] == 120
        assert response.json()["current_level"] == 2

        response = await client.post(
            f"/api/v1/users/{api_user}/xp",
            json={"action_type": "penalty", "amount": -500, "description": "spam"},
        )
        assert response.json()["xp_amount"] == -120
        assert response.json()["total_xp"] == 0

        history = (await client.get(f"/api/v1/users/{api_user}/xp/history")).json()
        assert history["total"] == 2
        assert history["entries"][0]["requested_amount"] == -500

    @pytest.mark.asyncio
    async def test_unknown_user_is_404(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/users/999/xp", json={"action_type": "login", "amount": 5},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_amount_is_422(self, client: AsyncClient, api_user: int):
        response = await client.post(
            f"/api/v1/users/{api_user}/xp", json={"action_type": "login", "amount": -5},
        )
        assert response.status_code == 422
        assert "Negative XP" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_unknown_action_is_422(self, client: AsyncClient, api_user: int):
        response = await client.post(
            f"/api/v1/users/{api_user}/xp", json={"action_type": "mining", "amount": 5},
        )
        assert response.status_code == 422


class TestActions:

    @pytest.mark.asyncio
    async def test_record_action_unlocks_badges(self, client: AsyncClient, api_user: int, server_day: date):
        response = await client.post(
            f"/api/v1/users/{api_user}/actions",
            json={"action_type": "inquiry_answered", "activity_day": "2026-04-01"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["xp_amount"] == 25
        assert data["streak"]["current_streak"] == 1
        assert [b["badge_key"] for b in data["badges_unlocked"]] == ["first_response"]

        earned = (await client.get(f"/api/v1/users/{api_user}/badges")).json()
        assert earned["total_earned"] == 1

    @pytest.mark.asyncio
    async def test_record_activity(self, client: AsyncClient, api_user: int, server_day: date):
        for day in ("2026-04-01", "2026-04-02"):
            response = await client.post(f"/api/v1/users/{api_user}/activity", json={"activity_day": day})
        assert response.status_code == 200
        assert response.json()["current_streak"] == 2

    @pytest.mark.asyncio
    async def test_future_activity_day_rejected(self, client: AsyncClient, api_user: int, server_day: date):
        response = await client.post(f"/api/v1/users/{api_user}/activity", json={"activity_day": "2026-04-08"})
        assert response.status_code == 422

        response = await client.post(
            f"/api/v1/users/{api_user}/actions",
            json={"action_type": "login", "activity_day": "2026-05-01"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_evaluate_cannot_claim_unearned_progress(self, client: AsyncClient, api_user: int):
        response = await client.post(
            f"/api/v1/users/{api_user}/badges/evaluate",
            json={"stats": {"current_level": 10}, "context": {"inquiry_answered": 10}},
        )
        assert response.status_code == 200
        assert response.json()["unlocked"] == []

        progression = (await client.get(f"/api/v1/users/{api_user}/progression")).json()
        assert progression["total_xp"] == 0
        assert progression["badges_earned"] == 0

    @pytest.mark.asyncio
    async def test_progression_view(self, client: AsyncClient, api_user: int):
        await client.post(f"/api/v1/users/{api_user}/xp", json={"action_type": "admin_adjustment", "amount": 1000})
        response = await client.get(f"/api/v1/users/{api_user}/progression")
        assert response.status_code == 200
        data = response.json()
        assert data["level"] == 5
        assert data["title"] == "Insider"
        assert data["profile_frame"] == "silver"


class TestDailyEndpoints:

    @pytest.mark.asyncio
    async def test_prompt_claim_flow(self, client: AsyncClient, api_user: int):
        headers = {"X-Session-Id": "tab-1"}
        prompt = (await client.get(f"/api/v1/users/{api_user}/daily/prompt", headers=headers)).json()
        assert prompt["show"] is True

        claim = await client.post(f"/api/v1/users/{api_user}/daily/claim")
        assert claim.status_code == 200
        assert claim.json()["already_claimed"] is False
        assert claim.json()["xp_earned"] == 5

        again = (await client.post(f"/api/v1/users/{api_user}/daily/claim")).json()
        assert again["already_claimed"] is True
        assert again["xp_earned"] == 0

        other_tab = await client.get(f"/api/v1/users/{api_user}/daily/prompt", headers={"X-Session-Id": "tab-2"})
        assert other_tab.json()["show"] is False
        assert other_tab.json()["reason"] == "already_claimed"

        status = (await client.get(f"/api/v1/users/{api_user}/daily/status")).json()
        assert status["has_checked_in_today"] is True
        assert status["today_checkin"]["xp_earned"] == 5

    @pytest.mark.asyncio
    async def test_prompt_shown_then_suppressed(self, client: AsyncClient, api_user: int):
        headers = {"X-Session-Id": "tab-9"}
        response = await client.post(f"/api/v1/users/{api_user}/daily/prompt/shown", headers=headers)
        assert response.status_code == 204

        prompt = (await client.get(f"/api/v1/users/{api_user}/daily/prompt", headers=headers)).json()
        assert prompt["reason"] == "already_shown"

    @pytest.mark.asyncio
    async def test_prompt_shown_requires_session(self, client: AsyncClient, api_user: int):
        response = await client.post(f"/api/v1/users/{api_user}/daily/prompt/shown")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_dismiss(self, client: AsyncClient, api_user: int):
        response = await client.post(f"/api/v1/users/{api_user}/daily/dismiss", headers={"X-Session-Id": "tab-3"})
        assert response.status_code == 204
        prompt = (await client.get(f"/api/v1/users/{api_user}/daily/prompt")).json()
        assert prompt["reason"] == "dismissed"

    @pytest.mark.asyncio
    async def test_claim_unknown_user_is_404(self, client: AsyncClient):
        response = await client.post("/api/v1/users/4040/daily/claim")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_cache_write_failure_is_503(self, client: AsyncClient, api_user: int, monkeypatch):
        async def unavailable(*_args, **_kwargs):
            raise StorageUnavailable("Claim cache write failed")

        monkeypatch.setattr(MemoryClaimCache, "mark_dismissed", unavailable)
        response = await client.post(f"/api/v1/users/{api_user}/daily/dismiss")
        assert response.status_code == 503
        assert response.json()["retryable"] is True


class TestLeaderboardEndpoint:

    @pytest.mark.asyncio
    async def test_top_xp(self, client: AsyncClient, api_user: int):
        await client.post(f"/api/v1/users/{api_user}/xp", json={"action_type": "admin_adjustment", "amount": 40})
        response = await client.get("/api/v1/leaderboards/top_xp", params={"user_id": api_user})
        assert response.status_code == 200
        data = response.json()
        assert data["entries"][0]["display_name"] == "robin"
        assert data["entries"][0]["is_current_user"] is True
        assert data["current_user"]["rank"] == 1

    @pytest.mark.asyncio
    async def test_empty_board(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboards/top_agents")
        assert response.status_code == 200
        assert response.json()["entries"] == []

    @pytest.mark.asyncio
    async def test_unknown_category_is_422(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboards/top_miners")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_limit_is_422(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboards/top_xp", params={"limit": 0})
        assert response.status_code == 422


class TestDatabaseOutage:

    @pytest.mark.asyncio
    async def test_operational_error_is_retryable_503(self, client: AsyncClient, api_user: int, monkeypatch):
        async def unreachable(*_args, **_kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(ProgressionFacade, "get_view_state", unreachable)
        response = await client.get(f"/api/v1/users/{api_user}/progression")
        assert response.status_code == 503
        assert response.json() == {"detail": "Database unavailable", "retryable": True}

"""Progression API endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.database import get_session
from propquest.dependencies import get_progression
from propquest.gamification.badge_service import list_user_badges, load_catalog
from propquest.gamification.level_thresholds import LEVEL_THRESHOLDS
from propquest.gamification.progression import ProgressionFacade
from propquest.gamification.schemas import (
    AllBadgesResponse,
    AllLevelsResponse,
    BadgeResponse,
    CheckinStatusResponse,
    ClaimResponse,
    EarnedBadgeResponse,
    EvaluateBadgesRequest,
    EvaluateBadgesResponse,
    GrantXPRequest,
    GrantXPResponse,
    LeaderboardResponse,
    LevelEntry,
    ProgressionResponse,
    PromptDecisionResponse,
    RecordActionRequest,
    RecordActionResponse,
    RecordActivityRequest,
    StreakResponse,
    UserBadgesResponse,
    XPHistoryEntry,
    XPHistoryResponse,
)
from propquest.gamification.xp_service import get_xp_history

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── Catalog ──


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels():
    """Get all level definitions."""
    return AllLevelsResponse(
        levels=[
            LevelEntry(
                level=t["level"],
                title=t["title"],
                xp_required=t["xp_required"],
                cumulative=t["cumulative"],
            )
            for t in LEVEL_THRESHOLDS
        ]
    )


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """Get all active badge definitions."""
    badges = await load_catalog(db)
    return AllBadgesResponse(badges=[BadgeResponse(**b.to_dict()) for b in badges])


# ── XP & view state ──


@router.get("/users/{user_id}/progression", response_model=ProgressionResponse)
async def get_progression_state(
    user_id: int,
    progression: ProgressionFacade = Depends(get_progression),
):
    """Level, title, progress-to-next-level, profile frame and streaks."""
    return ProgressionResponse(**await progression.get_view_state(user_id))


@router.post("/users/{user_id}/xp", response_model=GrantXPResponse)
async def grant_user_xp(
    user_id: int,
    body: GrantXPRequest,
    progression: ProgressionFacade = Depends(get_progression),
):
    """Append an XP transaction (grant or penalty)."""
    result = await progression.grant_xp(
        user_id, body.action_type, body.amount, body.description, body.idempotency_key,
    )
    return GrantXPResponse(**result)


@router.get("/users/{user_id}/xp/history", response_model=XPHistoryResponse)
async def xp_history(
    user_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """Get XP transaction history (paginated)."""
    entries, total = await get_xp_history(db, user_id, page, per_page)
    return XPHistoryResponse(
        entries=[
            XPHistoryEntry(
                action_type=e.action_type,
                xp_amount=e.xp_amount,
                requested_amount=e.requested_amount,
                description=e.description,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


# ── Actions & streaks ──


@router.post("/users/{user_id}/actions", response_model=RecordActionResponse)
async def record_action(
    user_id: int,
    body: RecordActionRequest,
    progression: ProgressionFacade = Depends(get_progression),
):
    """Record a user action: XP, domain counter, streak and badge evaluation."""
    return RecordActionResponse(**await progression.record_action(user_id, body.action_type, body.activity_day))


@router.post("/users/{user_id}/activity", response_model=StreakResponse)
async def record_activity(
    user_id: int,
    body: RecordActivityRequest,
    progression: ProgressionFacade = Depends(get_progression),
):
    """Record a day of activity for the streak tracker."""
    result = await progression.record_activity(user_id, body.activity_day)
    return StreakResponse(**result.to_dict())


# ── Daily claim ──


@router.get("/users/{user_id}/daily/status", response_model=CheckinStatusResponse)
async def daily_status(
    user_id: int,
    progression: ProgressionFacade = Depends(get_progression),
):
    """Whether today's reward has been claimed."""
    return CheckinStatusResponse(**await progression.daily.checkin_status(user_id))


@router.get("/users/{user_id}/daily/prompt", response_model=PromptDecisionResponse)
async def daily_prompt(
    user_id: int,
    client_day: date | None = Query(None),
    x_session_id: str | None = Header(None),
    progression: ProgressionFacade = Depends(get_progression),
):
    """Should the daily reward prompt be displayed?"""
    decision = await progression.daily.should_prompt(user_id, session_id=x_session_id, client_day=client_day)
    return PromptDecisionResponse(**decision.to_dict())


@router.post("/users/{user_id}/daily/prompt/shown", status_code=204)
async def daily_prompt_shown(
    user_id: int,
    x_session_id: str = Header(...),
    client_day: date | None = Query(None),
    progression: ProgressionFacade = Depends(get_progression),
):
    """Remember that this session displayed the prompt."""
    await progression.daily.mark_prompt_shown(x_session_id, client_day=client_day)


@router.post("/users/{user_id}/daily/dismiss", status_code=204)
async def daily_dismiss(
    user_id: int,
    x_session_id: str | None = Header(None),
    client_day: date | None = Query(None),
    progression: ProgressionFacade = Depends(get_progression),
):
    """User deferred the prompt for today and this session."""
    await progression.daily.dismiss(user_id, session_id=x_session_id, client_day=client_day)


@router.post("/users/{user_id}/daily/claim", response_model=ClaimResponse)
async def daily_claim(
    user_id: int,
    client_day: date | None = Query(None),
    progression: ProgressionFacade = Depends(get_progression),
):
    """Claim today's reward. A lost race returns already_claimed=true."""
    result = await progression.claim_daily(user_id, client_day=client_day)
    return ClaimResponse(**result.to_dict())


# ── Badges ──


@router.get("/users/{user_id}/badges", response_model=UserBadgesResponse)
async def get_user_badges(user_id: int, db: AsyncSession = Depends(get_session)):
    """Get a user's earned badges."""
    earned = await list_user_badges(db, user_id)
    return UserBadgesResponse(
        earned=[EarnedBadgeResponse(**b) for b in earned],
        total_earned=len(earned),
    )


@router.post("/users/{user_id}/badges/evaluate", response_model=EvaluateBadgesResponse)
async def evaluate_badges(
    user_id: int,
    body: EvaluateBadgesRequest | None = None,
    progression: ProgressionFacade = Depends(get_progression),
):
    """Run the badge evaluator and return newly unlocked badges."""
    body = body or EvaluateBadgesRequest()
    unlocked = await progression.evaluate_badges(user_id, context=body.context)
    return EvaluateBadgesResponse(unlocked=[BadgeResponse(**b.to_dict()) for b in unlocked])


# ── Leaderboards ──


@router.get("/leaderboards/{category}", response_model=LeaderboardResponse)
async def leaderboard(
    category: str,
    limit: int | None = Query(None),
    user_id: int | None = Query(None),
    progression: ProgressionFacade = Depends(get_progression),
):
    """Ranked entries for a category plus the requesting user's rank."""
    return LeaderboardResponse(**await progression.get_leaderboard(category, limit, user_id))

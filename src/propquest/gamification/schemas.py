"""Pydantic request/response models for progression endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


# --- XP ---


class GrantXPRequest(BaseModel):
    action_type: str
    amount: int
    description: str = Field("", max_length=256)
    idempotency_key: str | None = Field(None, max_length=256)


class GrantXPResponse(BaseModel):
    granted: bool
    xp_amount: int
    requested_amount: int
    total_xp: int
    current_level: int


class XPHistoryEntry(BaseModel):
    action_type: str
    xp_amount: int
    requested_amount: int
    description: str | None = None
    created_at: datetime


class XPHistoryResponse(BaseModel):
    entries: list[XPHistoryEntry]
    total: int
    page: int
    per_page: int


# --- Actions & streaks ---


class RecordActionRequest(BaseModel):
    action_type: str
    activity_day: date | None = None


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    milestone_xp: int = 0
    milestones: list[int] = []


class RecordActivityRequest(BaseModel):
    activity_day: date | None = None


class BadgeResponse(BaseModel):
    badge_key: str
    name: str
    description: str
    icon: str
    category: str
    xp_reward: int


class RecordActionResponse(BaseModel):
    action_type: str
    xp_amount: int
    streak: StreakResponse
    badges_unlocked: list[BadgeResponse]


# --- Daily claim ---


class PromptDecisionResponse(BaseModel):
    show: bool
    reason: str
    day: date


class ClaimResponse(BaseModel):
    xp_earned: int
    streak_bonus: int
    current_streak: int
    already_claimed: bool
    checkin_date: date
    bonus_multiplier: float = 1.0


class TodayCheckin(BaseModel):
    checkin_date: date
    xp_earned: int
    streak_bonus: int
    streak_count: int
    bonus_multiplier: float


class CheckinStatusResponse(BaseModel):
    has_checked_in_today: bool
    current_streak: int
    today_checkin: TodayCheckin | None = None


# --- Badges ---


class EarnedBadgeResponse(BadgeResponse):
    earned_at: datetime


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_earned: int


class AllBadgesResponse(BaseModel):
    badges: list[BadgeResponse]


class EvaluateBadgesRequest(BaseModel):
    # Extra domain counts only; stored stats and counters cannot be overridden
    context: dict[str, int] | None = None


class EvaluateBadgesResponse(BaseModel):
    unlocked: list[BadgeResponse]


# --- Levels & view state ---


class LevelEntry(BaseModel):
    level: int
    title: str
    xp_required: int
    cumulative: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


class ProgressResponse(BaseModel):
    current: int
    required: int
    percentage: float


class ProgressionResponse(BaseModel):
    user_id: int
    total_xp: int
    level: int
    level_title: str
    next_level: int
    is_max_level: bool
    progress: ProgressResponse
    title: str
    profile_frame: str
    current_streak: int
    longest_streak: int
    last_activity_day: date | None = None
    badges_earned: int


# --- Leaderboards ---


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    display_name: str
    score: int
    level: int
    badge_count: int
    is_current_user: bool = False


class LeaderboardResponse(BaseModel):
    category: str
    title: str
    entries: list[LeaderboardEntry]
    total: int
    current_user: LeaderboardEntry | None = None

"""Badge catalog seed data."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from propquest.db.models import Badge
from propquest.gamification.badge_rules import dump_rule, parse_rule
from propquest.gamification.badge_service import BADGE_CATEGORIES
from propquest.gamification.exceptions import ValidationError

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Universal
    {
        "badge_key": "welcome_aboard",
        "name": "Welcome Aboard",
        "description": "Log in for the first time",
        "icon": "door-open",
        "category": "universal",
        "xp_reward": 10,
        "unlock_rule": {"kind": "event_count", "event": "login", "minimum": 1},
        "sort_order": 1,
    },
    {
        "badge_key": "profile_complete",
        "name": "All Set",
        "description": "Complete your profile",
        "icon": "user-check",
        "category": "universal",
        "xp_reward": 20,
        "unlock_rule": {"kind": "event_count", "event": "profile_completed", "minimum": 1},
        "sort_order": 2,
    },
    {
        "badge_key": "regular_visitor",
        "name": "Regular Visitor",
        "description": "Claim the daily reward 10 times",
        "icon": "calendar-check",
        "category": "universal",
        "xp_reward": 50,
        "unlock_rule": {"kind": "event_count", "event": "daily_checkins", "minimum": 10},
        "sort_order": 3,
    },
    {
        "badge_key": "week_warrior",
        "name": "Week Warrior",
        "description": "Keep a 7-day activity streak",
        "icon": "flame",
        "category": "universal",
        "xp_reward": 50,
        "unlock_rule": {"kind": "stat_threshold", "stat": "longest_streak", "minimum": 7},
        "sort_order": 4,
    },
    {
        "badge_key": "monthly_devotee",
        "name": "Monthly Devotee",
        "description": "Keep a 30-day activity streak",
        "icon": "fire",
        "category": "universal",
        "xp_reward": 200,
        "unlock_rule": {"kind": "stat_threshold", "stat": "longest_streak", "minimum": 30},
        "sort_order": 5,
    },
    {
        "badge_key": "rising_star",
        "name": "Rising Star",
        "description": "Reach level 5",
        "icon": "star",
        "category": "universal",
        "xp_reward": 100,
        "unlock_rule": {"kind": "stat_threshold", "stat": "current_level", "minimum": 5},
        "sort_order": 6,
    },
    {
        "badge_key": "estate_legend",
        "name": "Estate Legend",
        "description": "Reach the maximum level",
        "icon": "crown",
        "category": "universal",
        "xp_reward": 0,
        "unlock_rule": {"kind": "stat_threshold", "stat": "current_level", "minimum": 10},
        "sort_order": 7,
    },
    # Searchers
    {
        "badge_key": "first_save",
        "name": "Dream Home",
        "description": "Save your first property",
        "icon": "heart",
        "category": "searcher",
        "xp_reward": 15,
        "unlock_rule": {"kind": "event_count", "event": "property_saved", "minimum": 1},
        "sort_order": 10,
    },
    {
        "badge_key": "collector",
        "name": "Collector",
        "description": "Save 25 properties",
        "icon": "bookmark",
        "category": "searcher",
        "xp_reward": 75,
        "unlock_rule": {"kind": "event_count", "event": "property_saved", "minimum": 25},
        "sort_order": 11,
    },
    {
        "badge_key": "sharp_eye",
        "name": "Sharp Eye",
        "description": "Compare properties 10 times",
        "icon": "scale",
        "category": "searcher",
        "xp_reward": 40,
        "unlock_rule": {"kind": "event_count", "event": "property_compared", "minimum": 10},
        "sort_order": 12,
    },
    {
        "badge_key": "first_inquiry",
        "name": "Serious Buyer",
        "description": "Submit your first investment inquiry",
        "icon": "mail",
        "category": "searcher",
        "xp_reward": 25,
        "unlock_rule": {"kind": "event_count", "event": "inquiry_submitted", "minimum": 1},
        "sort_order": 13,
    },
    # Agents
    {
        "badge_key": "first_response",
        "name": "First Response",
        "description": "Answer your first inquiry",
        "icon": "reply",
        "category": "agent",
        "xp_reward": 25,
        "unlock_rule": {"kind": "event_count", "event": "inquiry_answered", "minimum": 1},
        "sort_order": 20,
    },
    {
        "badge_key": "responsive_agent",
        "name": "Responsive Agent",
        "description": "Answer 10 inquiries",
        "icon": "messages",
        "category": "agent",
        "xp_reward": 100,
        "unlock_rule": {"kind": "event_count", "event": "inquiry_answered", "minimum": 10},
        "sort_order": 21,
    },
    {
        "badge_key": "top_closer",
        "name": "Top Closer",
        "description": "Answer 50 inquiries and reach level 5",
        "icon": "trophy",
        "category": "agent",
        "xp_reward": 250,
        "unlock_rule": {
            "kind": "all_of",
            "rules": [
                {"kind": "event_count", "event": "inquiry_answered", "minimum": 50},
                {"kind": "stat_threshold", "stat": "current_level", "minimum": 5},
            ],
        },
        "sort_order": 22,
    },
    # Homeowners
    {
        "badge_key": "first_listing",
        "name": "On the Market",
        "description": "Publish your first listing",
        "icon": "home",
        "category": "homeowner",
        "xp_reward": 30,
        "unlock_rule": {"kind": "event_count", "event": "listing_published", "minimum": 1},
        "sort_order": 30,
    },
    {
        "badge_key": "committed_owner",
        "name": "Committed Owner",
        "description": "Publish 3 listings and keep a 7-day streak",
        "icon": "key",
        "category": "homeowner",
        "xp_reward": 120,
        "unlock_rule": {
            "kind": "all_of",
            "rules": [
                {"kind": "event_count", "event": "listing_published", "minimum": 3},
                {"kind": "stat_threshold", "stat": "longest_streak", "minimum": 7},
            ],
        },
        "sort_order": 31,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert the badge catalog. Returns number of badges seeded."""
    result = await db.execute(select(Badge))
    existing = {b.badge_key: b for b in result.scalars()}

    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        data = dict(badge_data)
        if data["category"] not in BADGE_CATEGORIES:
            raise ValidationError(f"Badge {data['badge_key']!r} has unknown category {data['category']!r}")
        data["unlock_rule"] = dump_rule(parse_rule(data["unlock_rule"]))
        badge = existing.get(data["badge_key"])
        if badge is None:
            db.add(Badge(**data, is_active=True))
        else:
            for column, value in data.items():
                setattr(badge, column, value)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded

"""Level thresholds and computation.

Cumulative thresholds are strictly increasing; level 10 is terminal.
"""

from __future__ import annotations

LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "title": "Newcomer", "xp_required": 0, "cumulative": 0},
    {"level": 2, "title": "House Hunter", "xp_required": 100, "cumulative": 100},
    {"level": 3, "title": "Property Scout", "xp_required": 150, "cumulative": 250},
    {"level": 4, "title": "Market Explorer", "xp_required": 250, "cumulative": 500},
    {"level": 5, "title": "Deal Seeker", "xp_required": 500, "cumulative": 1000},
    {"level": 6, "title": "Neighborhood Expert", "xp_required": 1000, "cumulative": 2000},
    {"level": 7, "title": "Investment Analyst", "xp_required": 1500, "cumulative": 3500},
    {"level": 8, "title": "Portfolio Builder", "xp_required": 2000, "cumulative": 5500},
    {"level": 9, "title": "Realty Master", "xp_required": 3000, "cumulative": 8500},
    {"level": 10, "title": "Estate Legend", "xp_required": 4000, "cumulative": 12500},
]

MAX_LEVEL: int = LEVEL_THRESHOLDS[-1]["level"]


def level_for_xp(total_xp: int) -> int:
    """Count of thresholds not exceeding total_xp, capped at the max level."""
    reached = sum(1 for t in LEVEL_THRESHOLDS if t["cumulative"] <= total_xp)
    return min(max(reached, 1), MAX_LEVEL)


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP."""
    level = level_for_xp(total_xp)
    current = LEVEL_THRESHOLDS[level - 1]
    is_max = level == MAX_LEVEL
    next_level = current if is_max else LEVEL_THRESHOLDS[level]

    xp_into_level = total_xp - current["cumulative"]
    xp_for_level = next_level["cumulative"] - current["cumulative"]

    return {
        "level": current["level"],
        "title": current["title"],
        "xp_into_level": xp_into_level,
        "xp_for_level": xp_for_level,
        "next_level": next_level["level"],
        "next_title": next_level["title"],
        "is_max_level": is_max,
    }


def title_for_level(level: int) -> str:
    """Display title for a level number (clamped to the defined range)."""
    level = min(max(level, 1), MAX_LEVEL)
    return LEVEL_THRESHOLDS[level - 1]["title"]

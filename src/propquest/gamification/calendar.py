"""Calendar-day policy shared by streaks, the check-in constraint and cache keys.

The durable ``daily_checkins.checkin_date`` is always the day in the
configured ``checkin_timezone``. A client-reported local day is only ever
used to key advisory cache markers.
"""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from propquest.config import get_settings
from propquest.gamification.exceptions import ValidationError

# A client-reported day may differ from the server day by a timezone offset only
MAX_CLIENT_DAY_SKEW = 1


def resolve_zone(name: str) -> tzinfo:
    """Map a zone name to a tzinfo; UTC never needs the tz database."""
    if name.upper() in ("UTC", "Z"):
        return timezone.utc
    return ZoneInfo(name)


def authoritative_today(now: datetime | None = None) -> date:
    """The calendar day the durable store attributes a claim to."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now.astimezone(resolve_zone(get_settings().checkin_timezone)).date()


def day_key(day: date) -> str:
    """Cache key fragment for a calendar day, e.g. '2026-10-17'."""
    return day.isoformat()


def check_client_day(day: date, today: date) -> date:
    """Accept a client-reported activity day only if it is within a day of ``today``."""
    if abs((day - today).days) > MAX_CLIENT_DAY_SKEW:
        raise ValidationError(f"activity_day {day.isoformat()} is too far from the current day {today.isoformat()}")
    return day

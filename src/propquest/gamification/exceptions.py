"""Progression error taxonomy."""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for progression engine errors."""


class NotFound(ProgressionError):
    """Unknown user, badge or category target."""


class Conflict(ProgressionError):
    """A uniqueness-guarded write lost a race.

    Claim and badge paths translate this into an idempotent "already done"
    result; it only escapes for writes that have no such translation.
    """


class StorageUnavailable(ProgressionError):
    """The advisory cache layer cannot be read or written."""


class ValidationError(ProgressionError):
    """Malformed action type, amount, rule or leaderboard request."""

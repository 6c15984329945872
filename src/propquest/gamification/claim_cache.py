"""Advisory cache layer for the daily claim prompt.

Three markers live here: "claimed today" per user, "prompt shown" per
session, and "dismissed" per user-day and per session. None of them is
authoritative. The durable ``daily_checkins`` row is the only source of
truth; these markers exist to suppress redundant prompts cheaply.

Every backend raises StorageUnavailable when it cannot be read or written,
and the guard treats that as "already claimed" (fail closed).
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from redis.exceptions import RedisError

from propquest.gamification.exceptions import StorageUnavailable


def claimed_key(user_id: int, day_key: str) -> str:
    return f"daily:claimed:{user_id}:{day_key}"


def prompt_shown_key(session_id: str, day_key: str) -> str:
    return f"daily:prompt_shown:{session_id}:{day_key}"


def dismissed_key(user_id: int, day_key: str) -> str:
    return f"daily:dismissed:{user_id}:{day_key}"


def session_dismissed_key(session_id: str) -> str:
    return f"daily:dismissed:session:{session_id}"


@dataclass(frozen=True)
class ClaimMarkers:
    claimed: bool = False
    dismissed: bool = False
    prompt_shown: bool = False


class ClaimCache(ABC):
    """Storage for advisory claim markers."""

    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def get_markers(self, user_id: int, day_key: str, session_id: str | None) -> ClaimMarkers:
        """Read all markers relevant to one prompt decision."""

    @abstractmethod
    async def mark_claimed(self, user_id: int, day_key: str) -> None:
        """Record that the user's reward for ``day_key`` is known to be claimed."""

    @abstractmethod
    async def mark_prompt_shown(self, session_id: str, day_key: str) -> None:
        """Record that the prompt was displayed in this session."""

    @abstractmethod
    async def mark_dismissed(self, user_id: int, day_key: str, session_id: str | None) -> None:
        """Record that the user deferred the prompt for today and this session."""


class RedisClaimCache(ClaimCache):
    """Markers stored as expiring Redis keys."""

    def __init__(self, redis: object | None, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self.redis = redis

    def _client(self) -> object:
        if self.redis is None:
            raise StorageUnavailable("Claim cache backend is not connected")
        return self.redis

    async def get_markers(self, user_id: int, day_key: str, session_id: str | None) -> ClaimMarkers:
        redis = self._client()
        keys = [claimed_key(user_id, day_key), dismissed_key(user_id, day_key)]
        if session_id:
            keys += [session_dismissed_key(session_id), prompt_shown_key(session_id, day_key)]
        try:
            pipe = redis.pipeline()  # type: ignore[attr-defined]
            for key in keys:
                pipe.exists(key)
            found = await pipe.execute()
        except RedisError as exc:
            raise StorageUnavailable("Claim cache read failed") from exc

        found = [bool(v) for v in found] + [False, False]
        return ClaimMarkers(
            claimed=found[0],
            dismissed=found[1] or found[2],
            prompt_shown=found[3],
        )

    async def _set(self, *keys: str) -> None:
        redis = self._client()
        try:
            pipe = redis.pipeline()  # type: ignore[attr-defined]
            for key in keys:
                pipe.set(key, "1", ex=self.ttl_seconds)
            await pipe.execute()
        except RedisError as exc:
            raise StorageUnavailable("Claim cache write failed") from exc

    async def mark_claimed(self, user_id: int, day_key: str) -> None:
        await self._set(claimed_key(user_id, day_key))

    async def mark_prompt_shown(self, session_id: str, day_key: str) -> None:
        await self._set(prompt_shown_key(session_id, day_key))

    async def mark_dismissed(self, user_id: int, day_key: str, session_id: str | None) -> None:
        keys = [dismissed_key(user_id, day_key)]
        if session_id:
            keys.append(session_dismissed_key(session_id))
        await self._set(*keys)


class MemoryClaimCache(ClaimCache):
    """In-process markers for single-worker deployments and local runs.

    Session markers are rarely read back once their day is over, so expired
    entries are purged on write, at most once per ``SWEEP_INTERVAL_SECONDS``.
    """

    SWEEP_INTERVAL_SECONDS = 60.0

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(ttl_seconds)
        self._clock = clock
        self._expires: dict[str, float] = {}
        self._next_sweep = 0.0

    @property
    def marker_count(self) -> int:
        """Markers held, expired ones included until the next sweep."""
        return len(self._expires)

    def _has(self, key: str) -> bool:
        expires = self._expires.get(key)
        if expires is None:
            return False
        if expires <= self._clock():
            del self._expires[key]
            return False
        return True

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        self._expires = {key: expires for key, expires in self._expires.items() if expires > now}
        self._next_sweep = now + min(self.SWEEP_INTERVAL_SECONDS, self.ttl_seconds)

    def _set(self, *keys: str) -> None:
        now = self._clock()
        self._sweep(now)
        deadline = now + self.ttl_seconds
        for key in keys:
            self._expires[key] = deadline

    async def get_markers(self, user_id: int, day_key: str, session_id: str | None) -> ClaimMarkers:
        dismissed = self._has(dismissed_key(user_id, day_key))
        prompt_shown = False
        if session_id:
            dismissed = dismissed or self._has(session_dismissed_key(session_id))
            prompt_shown = self._has(prompt_shown_key(session_id, day_key))
        return ClaimMarkers(
            claimed=self._has(claimed_key(user_id, day_key)),
            dismissed=dismissed,
            prompt_shown=prompt_shown,
        )

    async def mark_claimed(self, user_id: int, day_key: str) -> None:
        self._set(claimed_key(user_id, day_key))

    async def mark_prompt_shown(self, session_id: str, day_key: str) -> None:
        self._set(prompt_shown_key(session_id, day_key))

    async def mark_dismissed(self, user_id: int, day_key: str, session_id: str | None) -> None:
        keys = [dismissed_key(user_id, day_key)]
        if session_id:
            keys.append(session_dismissed_key(session_id))
        self._set(*keys)

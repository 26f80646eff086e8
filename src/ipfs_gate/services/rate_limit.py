"""Fixed-window rate limiting for protected operations."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Final

from ipfs_gate.services.store import StateStore

logger = logging.getLogger(__name__)

DAY_SECONDS: Final[int] = 86_400
_KEY_PREFIX: Final[str] = "ratelimit:"


@dataclass(frozen=True)
class RateLimitEntry:
    """Counter for one identity. `window_reset_at` is epoch milliseconds."""

    identity: str
    count: int
    window_reset_at: int

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> RateLimitEntry:
        return cls(**json.loads(raw))


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: int


class RateLimiter:
    """Allows at most `limit` operations per identity per window.

    The first attempt opens a window of `window_seconds`. Once the window has
    passed, the next attempt replaces the entry with a fresh window.
    """

    def __init__(
        self,
        store: StateStore,
        limit: int,
        window_seconds: int = DAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("Rate limit must allow at least one operation")
        if window_seconds < 1:
            raise ValueError("Rate limit window must be positive")
        self._store = store
        self._limit = limit
        self._window_ms = window_seconds * 1000
        self._window_seconds = window_seconds
        self._clock = clock

    @property
    def limit(self) -> int:
        return self._limit

    def check_and_record(self, identity: str) -> RateLimitDecision:
        """Count one attempt for `identity` and report whether it may proceed."""
        now = int(self._clock() * 1000)

        def _apply(raw: str | None) -> tuple[str | None, RateLimitDecision]:
            entry = RateLimitEntry.from_json(raw) if raw is not None else None
            if entry is None or now > entry.window_reset_at:
                fresh = RateLimitEntry(identity, 1, now + self._window_ms)
                return fresh.to_json(), RateLimitDecision(True, self._limit - 1, fresh.window_reset_at)
            if entry.count >= self._limit:
                return raw, RateLimitDecision(False, 0, entry.window_reset_at)
            bumped = RateLimitEntry(identity, entry.count + 1, entry.window_reset_at)
            return bumped.to_json(), RateLimitDecision(
                True, self._limit - bumped.count, bumped.window_reset_at
            )

        decision = self._store.update(
            f"{_KEY_PREFIX}{identity}",
            _apply,
            ttl_seconds=self._window_seconds + 60,
        )
        if not decision.allowed:
            logger.debug("Rate limit window full for %s", identity)
        return decision

    def reap(self) -> int:
        """Delete entries whose window has passed. Returns the number removed."""
        now = int(self._clock() * 1000)
        removed = 0
        for key, raw in self._store.scan(_KEY_PREFIX):
            try:
                reset_at = RateLimitEntry.from_json(raw).window_reset_at
            except (ValueError, TypeError):
                reset_at = -1
            if now > reset_at and self._store.compare_and_delete(key, raw):
                removed += 1
        return removed

"""
Sliding-window rate limiter for expensive entry points.

Keeps the timestamps of recent requests per identifier in memory. A failure
inside the limiter lets the request through (fail open).
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

from pydantic import BaseModel

from ..core.logging import get_logger

logger = get_logger(__name__)


class RateLimitDecision(BaseModel):
    """Outcome of a rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_after_seconds: float = 0.0


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` requests per ``window_seconds`` per identifier."""

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_prune: float | None = None

    @property
    def tracked_identifiers(self) -> int:
        return len(self._hits)

    def check(self, identifier: str) -> RateLimitDecision:
        try:
            return self._check(identifier)
        except Exception as e:
            logger.error("Rate limiter failed, allowing request", identifier=identifier, error=str(e))
            return RateLimitDecision(allowed=True, limit=self.limit, remaining=self.limit)

    def _prune(self, now: float) -> None:
        """Forget identifiers with no hit inside the window."""
        idle = [key for key, hits in self._hits.items() if not hits or now - hits[-1] >= self.window_seconds]
        for key in idle:
            del self._hits[key]
        self._last_prune = now

    def _check(self, identifier: str) -> RateLimitDecision:
        now = self.clock()
        if self._last_prune is None:
            self._last_prune = now
        elif now - self._last_prune >= self.window_seconds:
            self._prune(now)
        hits = self._hits.setdefault(identifier, deque())
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if len(hits) >= self.limit:
            return RateLimitDecision(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_after_seconds=self.window_seconds - (now - hits[0]),
            )
        hits.append(now)
        return RateLimitDecision(allowed=True, limit=self.limit, remaining=self.limit - len(hits))

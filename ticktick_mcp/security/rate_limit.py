"""
Sliding-window rate limiting.

Usage:
    limiter = SlidingWindowRateLimiter(limit=120, window=60)
    outcome = await limiter.limit("user:123")
    if not outcome.success:
        raise RateLimited()
"""

import asyncio
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RateLimitOutcome:
    """Result of one rate limit check."""

    success: bool
    remaining: int
    retry_after: int = 0


@runtime_checkable
class RateLimiter(Protocol):
    """Anything that can decide whether ``key`` may proceed now."""

    async def limit(self, key: str) -> RateLimitOutcome:
        ...


class SlidingWindowRateLimiter:
    """In-process sliding window limiter.

    Each key keeps the timestamps of its admitted requests within the window;
    rejected requests are not recorded. State is per process, so in a
    multi-instance deployment each instance enforces its own limit.
    """

    def __init__(
        self,
        limit: int,
        window: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = limit
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    async def limit(self, key: str) -> RateLimitOutcome:
        async with self._lock:
            now = self._clock()
            hits = self._hits.setdefault(key, deque())
            window_start = now - self.window
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = max(1, math.ceil(hits[0] + self.window - now))
                return RateLimitOutcome(success=False, remaining=0, retry_after=retry_after)

            hits.append(now)
            return RateLimitOutcome(success=True, remaining=self.max_requests - len(hits))

"""Rate limiting and idempotency enforcement."""

from .idempotency import IdempotencyGuard, normalize_idempotency_key
from .rate_limit import RateLimiter, RateLimitOutcome, SlidingWindowRateLimiter

__all__ = [
    "IdempotencyGuard",
    "RateLimitOutcome",
    "RateLimiter",
    "SlidingWindowRateLimiter",
    "normalize_idempotency_key",
]

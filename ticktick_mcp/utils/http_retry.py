"""Retry helpers shared by the token gateway and the API client."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from ticktick_mcp.core.constants import BACKOFF_JITTER_RATIO

Sleeper = Callable[[float], Awaitable[None]]


def should_retry_status(status: int) -> bool:
    """Return True for responses worth retrying (429 and 5xx)."""
    return status == 429 or status >= 500


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into seconds.

    Accepts both delta-seconds and an HTTP-date. Returns None when the header
    is absent or unparseable, never a negative delay.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    current = now or datetime.now(UTC)
    return max(0.0, (when - current).total_seconds())


def backoff_delay(attempt: int, base: float) -> float:
    """Exponential backoff for a 1-based attempt number with +/-30% jitter."""
    delay = base * (2 ** (attempt - 1))
    jitter = random.uniform(-BACKOFF_JITTER_RATIO, BACKOFF_JITTER_RATIO)
    return max(0.0, delay * (1 + jitter))


def retry_delay(attempt: int, base: float, retry_after: str | None) -> float:
    """Prefer the server's Retry-After hint, else jittered backoff."""
    hinted = parse_retry_after(retry_after)
    if hinted is not None:
        return hinted
    return backoff_delay(attempt, base)


async def default_sleep(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)

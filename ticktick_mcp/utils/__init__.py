"""Utility helpers."""

from .http_retry import (
    backoff_delay,
    default_sleep,
    parse_retry_after,
    retry_delay,
    should_retry_status,
)

__all__ = [
    "backoff_delay",
    "default_sleep",
    "parse_retry_after",
    "retry_delay",
    "should_retry_status",
]

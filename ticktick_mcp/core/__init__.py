"""Core functionality for the TickTick MCP server."""

from .constants import (
    DEFAULT_TASK_LIMIT,
    DUE_FILTERS,
    MAX_TASK_LIMIT,
    TASK_STATUS_ACTIVE,
    TASK_STATUS_COMPLETED,
    VALID_PRIORITIES,
)
from .decorators import track_request
from .exceptions import TickTickMCPError, to_app_error
from .logging import configure_logging, logger

__all__ = [
    # Core
    "TickTickMCPError",
    "configure_logging",
    "logger",
    "to_app_error",
    "track_request",
    # Constants - most commonly used
    "DEFAULT_TASK_LIMIT",
    "DUE_FILTERS",
    "MAX_TASK_LIMIT",
    "TASK_STATUS_ACTIVE",
    "TASK_STATUS_COMPLETED",
    "VALID_PRIORITIES",
]

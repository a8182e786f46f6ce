"""
TickTick MCP Server - OAuth-protected MCP tools for the TickTick to-do API.

This package exposes TickTick projects and tasks as MCP tools behind a local
OAuth 2.1 authorization server that bridges to TickTick's own OAuth flow.
"""

__version__ = "0.1.0"

from ticktick_mcp.config.settings import Settings, get_settings, reset_settings
from ticktick_mcp.core.decorators import track_request
from ticktick_mcp.core.exceptions import (
    AuthRequired,
    TaskNotFound,
    TickTickMCPError,
    ValidationError,
)

__all__ = [
    "AuthRequired",
    "Settings",
    "TaskNotFound",
    "TickTickMCPError",
    "ValidationError",
    "__version__",
    "get_settings",
    "reset_settings",
    "track_request",
]

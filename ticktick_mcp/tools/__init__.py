"""
MCP Tools Package.

This package contains all MCP tool definitions organized by category:
- projects: Connection status and project lookup tools
- tasks: Task listing, lookup and mutation tools

Each module provides a register_*_tools() function to register tools with FastMCP.
"""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastmcp import FastMCP

from ticktick_mcp.tools.projects import register_project_tools
from ticktick_mcp.tools.tasks import register_task_tools

logger = logging.getLogger(__name__)


def register_tools(mcp: "FastMCP") -> None:
    """
    Register all MCP tools with the FastMCP instance.

    Args:
        mcp: FastMCP instance to register tools with
    """
    logger.info("Registering all MCP tools...")

    register_project_tools(mcp)
    register_task_tools(mcp)

    logger.info("All MCP tools registered successfully")


__all__ = [
    "register_project_tools",
    "register_task_tools",
    "register_tools",
]

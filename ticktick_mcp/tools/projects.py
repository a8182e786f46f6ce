"""
Account and project tools for MCP server.

This module contains:
- ticktick_auth_status: TickTick connection status of the caller
- ticktick_list_projects: All projects (lists) of the caller
- ticktick_get_project: One project by id
"""

import logging
from typing import TYPE_CHECKING, Annotated

from fastmcp.tools.tool import ToolResult
from pydantic import Field

if TYPE_CHECKING:
    from fastmcp import FastMCP

from ticktick_mcp.core import track_request
from ticktick_mcp.tools.outputs import (
    AuthStatusOutput,
    GetProjectOutput,
    ListProjectsOutput,
    output_schema,
)
from ticktick_mcp.tools.response import tool_error, tool_success
from ticktick_mcp.tools.schemas import ProjectInput
from ticktick_mcp.tools.session import open_session

logger = logging.getLogger(__name__)

READ_ONLY = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": True,
}


def register_project_tools(mcp: "FastMCP") -> None:
    """
    Register account and project MCP tools.

    Args:
        mcp: FastMCP instance to register tools with
    """

    @mcp.tool(
        annotations={**READ_ONLY, "openWorldHint": False},
        output_schema=output_schema(AuthStatusOutput),
    )
    @track_request("ticktick_auth_status")
    async def ticktick_auth_status() -> ToolResult:
        """
        Check the TickTick OAuth connection status for the current user.

        Reads the stored TickTick grant without calling TickTick.

        Returns:
            Envelope { ok, userId, connected, expiresAt }
        """
        try:
            session = await open_session()
            tokens = await session.context.token_store.load(session.user_id)
            connected = bool(tokens and tokens.access_token)
            expires_at = tokens.expires_at.isoformat() if tokens and tokens.expires_at else None
            message = (
                f"TickTick is connected for user {session.user_id}"
                if connected
                else "TickTick is not connected; re-authorize via your MCP client"
            )
            return tool_success(
                {"userId": session.user_id, "connected": connected, "expiresAt": expires_at},
                message,
            )
        except Exception as e:
            raise tool_error(e) from e

    @mcp.tool(annotations=READ_ONLY, output_schema=output_schema(ListProjectsOutput))
    @track_request("ticktick_list_projects")
    async def ticktick_list_projects() -> ToolResult:
        """
        List all TickTick projects (lists/folders) for the current user.

        Use to discover project IDs before creating or listing tasks.

        Returns:
            Envelope { ok, projects: [{ id, name, color?, closed? }], count }
        """
        try:
            session = await open_session()

            async def _list() -> ToolResult:
                projects = await session.client.list_projects()
                return tool_success(
                    {"projects": projects, "count": len(projects)},
                    f"Found {len(projects)} projects",
                )

            return await session.audited("ticktick_list_projects", _list)
        except Exception as e:
            raise tool_error(e) from e

    @mcp.tool(annotations=READ_ONLY, output_schema=output_schema(GetProjectOutput))
    @track_request("ticktick_get_project")
    async def ticktick_get_project(
        projectId: Annotated[str, Field(description="TickTick project ID")],
    ) -> ToolResult:
        """
        Get a specific TickTick project by its ID.

        Args:
            projectId: The TickTick project ID (use ticktick_list_projects to find IDs)

        Returns:
            Envelope { ok, project }
        """
        try:
            session = await open_session()

            async def _get() -> ToolResult:
                parsed = ProjectInput(projectId=projectId)
                project = await session.client.get_project(parsed.projectId)
                return tool_success({"project": project}, f"Project: {project.get('name')}")

            return await session.audited("ticktick_get_project", _get)
        except Exception as e:
            raise tool_error(e) from e

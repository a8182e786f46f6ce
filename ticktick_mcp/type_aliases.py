"""Common type aliases for the TickTick MCP Server.

TickTick payloads are passed through to tool callers as returned, so they
are kept as plain JSON dictionaries rather than fixed models.
"""

from typing import Any

# TickTick payload types
Task = dict[str, Any]
"""A TickTick task.

Common keys:
- id: str - Task id
- projectId: str - Owning project id
- title: str - Task title
- content: str - Notes
- startDate / dueDate: str - ``YYYY-MM-DDTHH:MM:SS.000+0000``
- timeZone: str - IANA zone the dates were entered in
- status: int - 0 active, 2 completed
- priority: int - 0 none, 1 low, 3 medium, 5 high
"""

Project = dict[str, Any]
"""A TickTick project (list).

Common keys:
- id: str - Project id
- name: str - Display name
- color: str - Hex color
- closed: bool - Archived flag
"""

ProjectData = dict[str, Any]
"""Response of ``/project/{id}/data``.

Expected keys:
- project: Project - The project itself
- tasks: list[Task] - Undone tasks in the project
"""

# Tool response types
ToolPayload = dict[str, Any]
"""Structured result returned to MCP tool callers before JSON encoding."""

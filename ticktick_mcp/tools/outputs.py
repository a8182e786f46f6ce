"""Structured output models advertised as each tool's output schema.

TickTick adds fields over time and may answer writes with an empty body, so
every model accepts extra keys and no TickTick field is required.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


class TickTickProject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None
    color: str | None = None
    sortOrder: float | None = None
    closed: bool | None = None
    groupId: str | None = None
    viewMode: str | None = None
    permission: str | None = None
    kind: str | None = None


class TickTickTask(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    projectId: str | None = None
    title: str | None = None
    content: str | None = None
    desc: str | None = None
    dueDate: str | None = None
    startDate: str | None = None
    status: int | None = None
    priority: int | None = None
    sortOrder: float | None = None
    timeZone: str | None = None
    isAllDay: bool | None = None
    completedTime: str | None = None
    createdTime: str | None = None
    modifiedTime: str | None = None
    tags: list[str] | None = None


class ToolOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    ok: bool
    message: str


class AuthStatusOutput(ToolOutput):
    userId: str
    connected: bool
    expiresAt: str | None = None


class ListProjectsOutput(ToolOutput):
    projects: list[TickTickProject]
    count: int


class GetProjectOutput(ToolOutput):
    project: TickTickProject


class ListTasksOutput(ToolOutput):
    tasks: list[TickTickTask]
    count: int
    total: int
    hasMore: bool


class TaskOutput(ToolOutput):
    task: TickTickTask


class TaskRefOutput(ToolOutput):
    projectId: str
    taskId: str


def output_schema(model: type[ToolOutput]) -> dict[str, Any]:
    """JSON schema for ``mcp.tool(output_schema=...)``."""
    return model.model_json_schema()

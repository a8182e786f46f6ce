"""
Task tools for MCP server.

This module contains task-related MCP tools including:
- ticktick_list_tasks: Filtered, paginated task listing
- ticktick_get_task: One task by id
- ticktick_create_task / ticktick_update_task: Task writes
- ticktick_complete_task / ticktick_delete_task: Task state changes

Every mutating tool takes an ``idempotencyKey``; a key is admitted once per
user and operation, strictly before the TickTick call is made.
"""

import logging
from typing import TYPE_CHECKING, Annotated, Literal

from fastmcp.tools.tool import ToolResult
from pydantic import Field

if TYPE_CHECKING:
    from fastmcp import FastMCP

from ticktick_mcp.core import track_request
from ticktick_mcp.tools.outputs import (
    ListTasksOutput,
    TaskOutput,
    TaskRefOutput,
    output_schema,
)
from ticktick_mcp.tools.response import tool_error, tool_success
from ticktick_mcp.tools.schemas import (
    CreateTaskInput,
    ListTasksInput,
    MutateTaskRefInput,
    TaskRefInput,
    UpdateTaskInput,
)
from ticktick_mcp.tools.session import open_session

logger = logging.getLogger(__name__)

ProjectId = Annotated[str, Field(description="TickTick project ID")]
TaskId = Annotated[str, Field(description="TickTick task ID")]
IdempotencyKeyArg = Annotated[
    str,
    Field(description="Client-provided key for deduplicating mutating requests ([A-Za-z0-9:_-], max 128)"),
]
DateArg = Annotated[
    str | None,
    Field(description='ISO 8601 date or datetime (e.g. "2025-03-15" or "2025-03-15T09:00:00Z")'),
]
PriorityArg = Annotated[
    int | None,
    Field(description="Priority: 0=none, 1=low, 3=medium, 5=high"),
]

READ_ONLY = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": True,
}

MUTATING = {"destructiveHint": False, "idempotentHint": True, "openWorldHint": True}


def register_task_tools(mcp: "FastMCP") -> None:
    """
    Register task-related MCP tools.

    Args:
        mcp: FastMCP instance to register tools with
    """

    @mcp.tool(annotations=READ_ONLY, output_schema=output_schema(ListTasksOutput))
    @track_request("ticktick_list_tasks")
    async def ticktick_list_tasks(
        projectId: Annotated[
            str | None, Field(description="TickTick project ID; omit to search all projects")
        ] = None,
        status: Annotated[
            int | None, Field(description="Task status filter (0=active, 2=completed)")
        ] = None,
        dueFilter: Annotated[
            Literal["today", "tomorrow", "overdue", "this_week"] | None,
            Field(description="Filter tasks by due date"),
        ] = None,
        limit: Annotated[int, Field(description="Maximum tasks to return (1-200)")] = 50,
        offset: Annotated[int, Field(description="Tasks to skip for pagination")] = 0,
    ) -> ToolResult:
        """
        List TickTick tasks, optionally filtered by project, status and due date.

        Without projectId, tasks of the first 25 projects are searched.
        Due date filters compare calendar days in each task's own time zone.

        Returns:
            Envelope { ok, tasks, count, total, hasMore }
        """
        try:
            session = await open_session()

            async def _list() -> ToolResult:
                parsed = ListTasksInput(
                    projectId=projectId,
                    status=status,
                    dueFilter=dueFilter,
                    limit=limit,
                    offset=offset,
                )
                result = await session.client.list_tasks(
                    project_id=parsed.projectId,
                    status=parsed.status,
                    due_filter=parsed.dueFilter,
                    limit=parsed.limit,
                    offset=parsed.offset,
                )
                count = len(result.tasks)
                return tool_success(
                    {
                        "tasks": result.tasks,
                        "count": count,
                        "total": result.total,
                        "hasMore": parsed.offset + count < result.total,
                    },
                    f"Found {result.total} tasks (returning {count} from offset {parsed.offset})",
                )

            return await session.audited("ticktick_list_tasks", _list)
        except Exception as e:
            raise tool_error(e) from e

    @mcp.tool(annotations=READ_ONLY, output_schema=output_schema(TaskOutput))
    @track_request("ticktick_get_task")
    async def ticktick_get_task(projectId: ProjectId, taskId: TaskId) -> ToolResult:
        """
        Get a specific TickTick task.

        Deleted tasks, and active tasks TickTick no longer lists in their
        project, are reported as TASK_NOT_FOUND.

        Returns:
            Envelope { ok, task }
        """
        try:
            session = await open_session()

            async def _get() -> ToolResult:
                parsed = TaskRefInput(projectId=projectId, taskId=taskId)
                task = await session.client.get_task(parsed.projectId, parsed.taskId)
                return tool_success({"task": task}, f"Task: {task.get('title')}")

            return await session.audited("ticktick_get_task", _get)
        except Exception as e:
            raise tool_error(e) from e

    @mcp.tool(
        annotations=MUTATING,
        output_schema=output_schema(TaskOutput),
    )
    @track_request("ticktick_create_task")
    async def ticktick_create_task(
        idempotencyKey: IdempotencyKeyArg,
        projectId: ProjectId,
        title: Annotated[str, Field(description="Task title")],
        content: Annotated[str | None, Field(description="Task notes (markdown)")] = None,
        startDate: DateArg = None,
        dueDate: DateArg = None,
        priority: PriorityArg = None,
    ) -> ToolResult:
        """
        Create a TickTick task.

        Reusing an idempotencyKey within 10 minutes is rejected without
        creating a second task.

        Returns:
            Envelope { ok, task }
        """
        try:
            session = await open_session()

            async def _create() -> ToolResult:
                parsed = CreateTaskInput(
                    idempotencyKey=idempotencyKey,
                    projectId=projectId,
                    title=title,
                    content=content,
                    startDate=startDate,
                    dueDate=dueDate,
                    priority=priority,
                )
                await session.admit("ticktick_create_task", parsed.idempotencyKey)
                task = await session.client.create_task(parsed.projectId, **parsed.task_fields())
                return tool_success({"task": task}, f"Created task {task.get('id')}")

            return await session.audited("ticktick_create_task", _create)
        except Exception as e:
            raise tool_error(e) from e

    @mcp.tool(
        annotations=MUTATING,
        output_schema=output_schema(TaskOutput),
    )
    @track_request("ticktick_update_task")
    async def ticktick_update_task(
        idempotencyKey: IdempotencyKeyArg,
        projectId: ProjectId,
        taskId: TaskId,
        title: Annotated[str | None, Field(description="New task title")] = None,
        content: Annotated[str | None, Field(description="New task notes (markdown)")] = None,
        startDate: DateArg = None,
        dueDate: DateArg = None,
        priority: PriorityArg = None,
    ) -> ToolResult:
        """
        Update fields of a TickTick task. Omitted fields are left unchanged.

        Returns:
            Envelope { ok, task }
        """
        try:
            session = await open_session()

            async def _update() -> ToolResult:
                parsed = UpdateTaskInput(
                    idempotencyKey=idempotencyKey,
                    projectId=projectId,
                    taskId=taskId,
                    title=title,
                    content=content,
                    startDate=startDate,
                    dueDate=dueDate,
                    priority=priority,
                )
                await session.admit("ticktick_update_task", parsed.idempotencyKey)
                task = await session.client.update_task(
                    parsed.projectId, parsed.taskId, **parsed.task_fields()
                )
                return tool_success({"task": task}, f"Updated task {task.get('id', parsed.taskId)}")

            return await session.audited("ticktick_update_task", _update)
        except Exception as e:
            raise tool_error(e) from e

    @mcp.tool(annotations=MUTATING, output_schema=output_schema(TaskRefOutput))
    @track_request("ticktick_complete_task")
    async def ticktick_complete_task(
        idempotencyKey: IdempotencyKeyArg,
        projectId: ProjectId,
        taskId: TaskId,
    ) -> ToolResult:
        """
        Mark a TickTick task as completed.

        Returns:
            Envelope { ok, projectId, taskId }
        """
        try:
            session = await open_session()

            async def _complete() -> ToolResult:
                parsed = MutateTaskRefInput(
                    idempotencyKey=idempotencyKey, projectId=projectId, taskId=taskId
                )
                await session.admit("ticktick_complete_task", parsed.idempotencyKey)
                await session.client.complete_task(parsed.projectId, parsed.taskId)
                return tool_success(
                    {"projectId": parsed.projectId, "taskId": parsed.taskId},
                    f"Completed task {parsed.taskId}",
                )

            return await session.audited("ticktick_complete_task", _complete)
        except Exception as e:
            raise tool_error(e) from e

    @mcp.tool(
        annotations={**MUTATING, "destructiveHint": True},
        output_schema=output_schema(TaskRefOutput),
    )
    @track_request("ticktick_delete_task")
    async def ticktick_delete_task(
        idempotencyKey: IdempotencyKeyArg,
        projectId: ProjectId,
        taskId: TaskId,
    ) -> ToolResult:
        """
        Permanently delete a TickTick task.

        Returns:
            Envelope { ok, projectId, taskId }
        """
        try:
            session = await open_session()

            async def _delete() -> ToolResult:
                parsed = MutateTaskRefInput(
                    idempotencyKey=idempotencyKey, projectId=projectId, taskId=taskId
                )
                await session.admit("ticktick_delete_task", parsed.idempotencyKey)
                await session.client.delete_task(parsed.projectId, parsed.taskId)
                return tool_success(
                    {"projectId": parsed.projectId, "taskId": parsed.taskId},
                    f"Deleted task {parsed.taskId}",
                )

            return await session.audited("ticktick_delete_task", _delete)
        except Exception as e:
            raise tool_error(e) from e

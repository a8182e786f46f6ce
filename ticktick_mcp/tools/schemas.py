"""Input models for the TickTick tools.

Field names follow the tool arguments (camelCase) so validation issues point
at what the caller actually sent.
"""

from datetime import UTC, date, datetime, time
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from ticktick_mcp.core.constants import (
    DEFAULT_TASK_LIMIT,
    IDEMPOTENCY_KEY_MAX_LENGTH,
    IDEMPOTENCY_KEY_PATTERN,
    MAX_TASK_LIMIT,
)

NonEmptyId = Annotated[str, StringConstraints(min_length=1)]

IdempotencyKey = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True,
        min_length=1,
        max_length=IDEMPOTENCY_KEY_MAX_LENGTH,
        pattern=IDEMPOTENCY_KEY_PATTERN,
    ),
]

Priority = Literal[0, 1, 3, 5]
DueFilter = Literal["today", "tomorrow", "overdue", "this_week"]


def normalize_date_input(value: str | None) -> str | None:
    """Parse an ISO-8601 date or datetime into TickTick's UTC format.

    Date-only values mean midnight UTC; naive datetimes are taken as UTC.

    Raises:
        ValueError: If ``value`` is not a valid ISO-8601 date string
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        msg = "Invalid date format; expected ISO/RFC3339 date string"
        raise ValueError(msg)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(text), time())
        except ValueError as e:
            msg = "Invalid date format; expected ISO/RFC3339 date string"
            raise ValueError(msg) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    utc = parsed.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}+0000"


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ProjectInput(_ToolInput):
    projectId: NonEmptyId


class ListTasksInput(_ToolInput):
    projectId: NonEmptyId | None = None
    status: int | None = None
    dueFilter: DueFilter | None = None
    limit: int = Field(default=DEFAULT_TASK_LIMIT, ge=1, le=MAX_TASK_LIMIT)
    offset: int = Field(default=0, ge=0)


class TaskRefInput(_ToolInput):
    projectId: NonEmptyId
    taskId: NonEmptyId


class _TaskFields(_ToolInput):
    content: str | None = None
    startDate: str | None = None
    dueDate: str | None = None
    priority: Priority | None = None

    @field_validator("startDate", "dueDate")
    @classmethod
    def validate_date(cls, v: str | None) -> str | None:
        return normalize_date_input(v)

    def task_fields(self) -> dict:
        """Upstream task fields that were provided."""
        return self.model_dump(
            exclude={"idempotencyKey", "projectId", "taskId"},
            exclude_none=True,
        )


class CreateTaskInput(_TaskFields):
    idempotencyKey: IdempotencyKey
    projectId: NonEmptyId
    title: NonEmptyId


class UpdateTaskInput(_TaskFields):
    idempotencyKey: IdempotencyKey
    projectId: NonEmptyId
    taskId: NonEmptyId
    title: NonEmptyId | None = None


class MutateTaskRefInput(TaskRefInput):
    idempotencyKey: IdempotencyKey

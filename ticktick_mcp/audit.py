"""Best-effort audit trail of tool invocations."""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ticktick_mcp.database.base import AuditEvent, TickTickDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuditLogger:
    """Writes audit events; a failed write is logged and never raised."""

    def __init__(self, database: TickTickDatabase):
        self._database = database

    async def record(
        self,
        user_id: str,
        event_type: str,
        status: str,
        detail: str | None = None,
    ) -> None:
        try:
            await self._database.insert_audit_event(
                AuditEvent(
                    user_id=user_id,
                    event_type=event_type,
                    status=status,
                    detail=detail,
                )
            )
        except Exception as e:
            logger.warning(
                "Audit insert failed for %s (%s, %s): %s",
                event_type,
                user_id,
                status,
                e,
            )


async def run_audited(
    audit: AuditLogger,
    user_id: str,
    event_type: str,
    operation: Callable[[], Awaitable[T]],
) -> T:
    """Run ``operation`` and record its outcome; the outcome is returned or re-raised as is."""
    try:
        result = await operation()
    except Exception as e:
        await audit.record(user_id, event_type, "error", str(e) or "unknown error")
        raise
    await audit.record(user_id, event_type, "success")
    return result

"""Per-invocation tool session: who is calling and with which client."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from fastmcp.server.dependencies import get_access_token

from ticktick_mcp.audit import run_audited
from ticktick_mcp.core.context import AppContext, get_app_context
from ticktick_mcp.core.exceptions import AuthRequired, InternalError, RateLimited
from ticktick_mcp.ticktick.client import TickTickClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def current_user_id() -> str:
    """Local user id carried by the caller's access token."""
    token = get_access_token()
    user_id = token.claims.get("user_id") if token is not None else None
    if not user_id:
        raise AuthRequired()
    return str(user_id)


@dataclass
class ToolSession:
    user_id: str
    context: AppContext

    @property
    def client(self) -> TickTickClient:
        return self.context.clients.get(self.user_id)

    async def admit(self, operation: str, key: str) -> str:
        return await self.context.idempotency.admit(self.user_id, operation, key)

    async def audited(self, event_type: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await run_audited(self.context.audit, self.user_id, event_type, operation)


async def open_session() -> ToolSession:
    """Resolve the caller and spend one unit of their tool rate limit.

    Raises:
        AuthRequired: If the request carries no local user
        RateLimited: If the user exhausted their tool rate limit
    """
    context = get_app_context()
    if context is None:
        raise InternalError("Application context is not initialized")

    user_id = current_user_id()
    outcome = await context.tool_limiter.limit(f"user:{user_id}")
    if not outcome.success:
        logger.info("Tool rate limit hit for user %s", user_id)
        raise RateLimited(details={"userId": user_id, "retryAfter": outcome.retry_after})
    return ToolSession(user_id=user_id, context=context)

"""Decorators for the TickTick MCP server."""

import functools
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from .logging import logger, request_id_ctx

P = ParamSpec("P")
R = TypeVar("R")


def track_request(
    tool_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator to track MCP tool requests with timing and error logging.

    Each invocation gets a short request id that is attached to every log
    record emitted while the tool runs.

    Args:
        tool_name: Name of the tool being tracked

    Returns:
        Decorated function with request tracking
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            token = request_id_ctx.set(uuid.uuid4().hex[:8])
            started = time.perf_counter()

            logger.info("Starting %s request", tool_name)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Arguments: %s", sorted(kwargs))

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    "Failed %s after %.2fs: %s",
                    tool_name,
                    time.perf_counter() - started,
                    e,
                )
                raise
            else:
                logger.info(
                    "Completed %s in %.2fs", tool_name, time.perf_counter() - started
                )
            finally:
                request_id_ctx.reset(token)

            return result

        return wrapper

    return decorator

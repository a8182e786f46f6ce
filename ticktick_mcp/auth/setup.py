"""
Custom route and middleware registration for the FastMCP server.

The OAuth routes themselves come from the provider's ``get_routes``; this
module adds what sits next to them: the health check and the HTTP
middleware stack.
"""

import logging
from typing import TYPE_CHECKING

from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import Response

from ticktick_mcp.auth.middleware import (
    AuthEndpointRateLimitMiddleware,
    ResourceMetadataChallengeMiddleware,
)
from ticktick_mcp.auth.routes import plain_text

if TYPE_CHECKING:
    from fastmcp import FastMCP

    from ticktick_mcp.security.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


def setup_custom_routes(mcp: "FastMCP") -> None:
    """
    Register non-OAuth endpoints with the FastMCP server.

    Registers:
    - /healthz (liveness probe, plain text)
    """

    @mcp.custom_route("/healthz", methods=["GET"])
    async def _healthz(request: Request) -> Response:
        return plain_text("ok")

    logger.info("Custom routes registered (/healthz)")


def build_http_middleware(base_url: str, auth_limiter: "RateLimiter") -> list[Middleware]:
    """Middleware for the HTTP transports, outermost first."""
    return [
        Middleware(AuthEndpointRateLimitMiddleware, limiter=auth_limiter),
        Middleware(ResourceMetadataChallengeMiddleware, base_url=base_url),
    ]

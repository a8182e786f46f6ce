"""
HTTP middleware for the MCP server.

- AuthEndpointRateLimitMiddleware: per-IP limit on the OAuth endpoints
- ResourceMetadataChallengeMiddleware: points 401 challenges at the
  protected resource metadata document
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ticktick_mcp.auth.routes import plain_text
from ticktick_mcp.core.constants import AUTH_RATE_LIMITED_PATHS, MCP_PATH, PROTECTED_RESOURCE_PATH
from ticktick_mcp.security.rate_limit import RateLimiter


def client_ip(request: Request) -> str:
    """Best guess at the caller's address behind a proxy."""
    ip = request.headers.get("cf-connecting-ip")
    if ip:
        return ip.strip()
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class AuthEndpointRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limit the OAuth endpoints by source IP.

    Exhausted callers get a plain-text 429 with a Retry-After header.
    """

    def __init__(self, app, limiter: RateLimiter, paths=AUTH_RATE_LIMITED_PATHS):
        super().__init__(app)
        self.limiter = limiter
        self.paths = tuple(paths)

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path not in self.paths:
            return await call_next(request)

        outcome = await self.limiter.limit(f"auth:{client_ip(request)}")
        if not outcome.success:
            response = plain_text("Too Many Requests", 429)
            response.headers["retry-after"] = str(outcome.retry_after)
            return response
        return await call_next(request)


class ResourceMetadataChallengeMiddleware(BaseHTTPMiddleware):
    """
    Append ``resource_metadata`` to Bearer challenges on 401 responses.

    Challenges that already carry the parameter are left alone.
    """

    def __init__(self, app, base_url: str, mcp_path: str = MCP_PATH):
        super().__init__(app)
        self.metadata_url = f"{base_url.rstrip('/')}{PROTECTED_RESOURCE_PATH}{mcp_path}"

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        if response.status_code != 401:
            return response

        challenge = response.headers.get("www-authenticate")
        if (
            not challenge
            or not challenge.lower().startswith("bearer")
            or "resource_metadata=" in challenge
        ):
            return response

        response.headers["www-authenticate"] = (
            f'{challenge}, resource_metadata="{self.metadata_url}"'
        )
        return response

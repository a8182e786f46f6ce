"""
OAuth bridge endpoints for the MCP server using Starlette.

Implements:
- Authorization endpoint (parks the client request, redirects to TickTick)
- TickTick callback endpoint (completes local authorization)
- Protected Resource Metadata (RFC 9728)

Errors from the bridge are rendered as plain text with the error's status.
"""

import logging
from typing import TYPE_CHECKING

from mcp.server.auth.provider import AuthorizationParams
from mcp.shared.auth import InvalidScopeError
from pydantic import AnyUrl
from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

from ticktick_mcp.auth.bridge import check_client_request
from ticktick_mcp.core.constants import (
    CALLBACK_PATH,
    CODE_CHALLENGE_METHOD,
    MCP_PATH,
    PROTECTED_RESOURCE_PATH,
    SUPPORTED_SCOPES,
)
from ticktick_mcp.core.exceptions import AuthorizationFlowError, InvalidRequest

if TYPE_CHECKING:
    from ticktick_mcp.auth.provider import TickTickOAuthProvider

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "x-frame-options": "DENY",
    "x-content-type-options": "nosniff",
    "referrer-policy": "no-referrer",
}


def plain_text(message: str, status_code: int = 200) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code, headers=SECURITY_HEADERS)


def _error_response(error: AuthorizationFlowError) -> Response:
    return plain_text(error.message, error.status)


def parse_authorization_params(request: Request) -> tuple[str, AuthorizationParams]:
    """Read the client's authorization request from the query string.

    Raises:
        InvalidRequest: If a required parameter is missing or malformed
    """
    query = request.query_params
    client_id = query.get("client_id")
    redirect_uri = query.get("redirect_uri")
    code_challenge = query.get("code_challenge")
    method = query.get("code_challenge_method", CODE_CHALLENGE_METHOD)

    if query.get("response_type") != "code" or not client_id or not redirect_uri:
        raise InvalidRequest()
    if not code_challenge or method != CODE_CHALLENGE_METHOD:
        raise InvalidRequest()

    scope = query.get("scope")
    try:
        params = AuthorizationParams(
            state=query.get("state"),
            scopes=scope.split() if scope else None,
            code_challenge=code_challenge,
            redirect_uri=AnyUrl(redirect_uri),
            redirect_uri_provided_explicitly=True,
            resource=query.get("resource"),
        )
    except PydanticValidationError as e:
        raise InvalidRequest() from e
    return client_id, params


async def authorize(request: Request, provider: "TickTickOAuthProvider") -> Response:
    """Authorization endpoint (GET) - redirects the user to TickTick."""
    try:
        client_id, params = parse_authorization_params(request)
        client = check_client_request(
            await provider.get_client(client_id),
            request.query_params["redirect_uri"],
        )
        try:
            scopes = client.validate_scope(" ".join(params.scopes) if params.scopes else None)
        except InvalidScopeError as e:
            raise InvalidRequest(e.message) from e
        if scopes is None and client.scope:
            scopes = client.scope.split()
        params.scopes = scopes

        upstream_url = await provider.authorize(client, params)
    except AuthorizationFlowError as e:
        logger.info("Rejected authorization request: %s", e.message)
        return _error_response(e)

    return RedirectResponse(upstream_url, status_code=302)


async def callback(request: Request, provider: "TickTickOAuthProvider") -> Response:
    """TickTick redirect target - completes local authorization."""
    query = request.query_params
    try:
        redirect_to = await provider.handle_callback(
            query.get("state"), query.get("code"), query.get("error")
        )
    except AuthorizationFlowError as e:
        logger.warning("Authorization callback failed: %s", e.message)
        return _error_response(e)
    except Exception:
        logger.exception("OAuth callback failed")
        return plain_text("Authorization failed", 502)

    return RedirectResponse(redirect_to, status_code=302)


def protected_resource_document(base_url: str, mcp_path: str = MCP_PATH) -> dict:
    """Protected Resource Metadata (RFC 9728) for the MCP endpoint."""
    return {
        "resource": f"{base_url}{mcp_path}",
        "authorization_servers": [base_url],
        "bearer_methods_supported": ["header"],
        "scopes_supported": list(SUPPORTED_SCOPES),
    }


def build_bridge_routes(
    provider: "TickTickOAuthProvider",
    mcp_path: str | None = None,
) -> list[Route]:
    """Create the bridge routes bound to ``provider``."""
    mcp_path = mcp_path or MCP_PATH
    document = protected_resource_document(provider.public_base_url, mcp_path)

    async def _authorize(request: Request) -> Response:
        return await authorize(request, provider)

    async def _callback(request: Request) -> Response:
        return await callback(request, provider)

    async def _protected_resource(request: Request) -> Response:
        return JSONResponse(document, headers=SECURITY_HEADERS)

    return [
        Route("/authorize", endpoint=_authorize, methods=["GET"]),
        Route(CALLBACK_PATH, endpoint=_callback, methods=["GET"]),
        Route(PROTECTED_RESOURCE_PATH, endpoint=_protected_resource, methods=["GET"]),
        Route(
            f"{PROTECTED_RESOURCE_PATH}{mcp_path}",
            endpoint=_protected_resource,
            methods=["GET"],
        ),
    ]

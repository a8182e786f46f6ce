"""Test doubles for the TickTick HTTP endpoints and shared tool-call helpers."""

import json
from collections.abc import Awaitable
from unittest.mock import AsyncMock

import httpx
import pytest
from fastmcp.exceptions import ToolError

from ticktick_mcp.auth.upstream import UpstreamTokenGateway

BASE_URL = "https://mcp.example.com"
API_BASE_URL = "https://api.ticktick.com/open/v1"
TOKEN_URL = "https://ticktick.com/oauth/token"
USERINFO_URL = "https://api.ticktick.com/open/v1/user"


class UpstreamRecorder:
    """Serves canned responses in order and records every request.

    Entries may be an ``httpx.Response``, an exception to raise, or a
    callable receiving the request.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def add(self, *responses) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            msg = f"Unexpected upstream request: {request.method} {request.url}"
            raise AssertionError(msg)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


def json_response(body, status: int = 200, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=body, headers=headers)


def make_gateway(http: httpx.AsyncClient, sleep=None) -> UpstreamTokenGateway:
    return UpstreamTokenGateway(
        http,
        client_id="client-id",
        client_secret="client-secret",
        token_url=TOKEN_URL,
        userinfo_url=USERINFO_URL,
        sleep=sleep or AsyncMock(),
    )


async def tool_failure(call: Awaitable) -> dict:
    """Await a tool call that must fail and return its error envelope."""
    with pytest.raises(ToolError) as exc_info:
        await call
    return json.loads(str(exc_info.value))

"""Fixtures for the MCP tool tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest


class FakeSession:
    """Stands in for ToolSession; runs operations without auditing."""

    def __init__(self, user_id: str = "u1"):
        self.user_id = user_id
        self.client = MagicMock()
        self.context = MagicMock()
        self.admit = AsyncMock(side_effect=lambda op, key: f"{user_id}:{op}:{key}")
        self.audited_events: list[str] = []

    async def audited(self, event_type, operation):
        self.audited_events.append(event_type)
        return await operation()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def capture_tools():
    """Register tools on a mock FastMCP and return them by name."""

    def _capture(register) -> dict:
        mcp_instance = MagicMock()
        registered_funcs = {}

        def mock_tool_decorator(**kwargs):
            def decorator(func):
                registered_funcs[func.__name__] = func
                return func

            return decorator

        mcp_instance.tool = mock_tool_decorator
        register(mcp_instance)
        return registered_funcs

    return _capture

"""Tests for application context wiring and lifecycle."""

import asyncio

import httpx
import pytest

from ticktick_mcp.core.context import (
    build_app_context,
    cleanup_global_context,
    get_app_context,
    initialize_global_context,
)
from ticktick_mcp.core.exceptions import ConfigurationError

from tests.helpers import BASE_URL


class TestBuildAppContext:
    def test_wires_services_from_settings(self, settings, store, database):
        context = build_app_context(settings, http=httpx.AsyncClient(), store=store, database=database)

        assert context.base_url == BASE_URL
        assert context.store is store
        assert context.database is database
        assert context.bridge.callback_url == f"{BASE_URL}/callback"
        assert context.provider.public_base_url == BASE_URL
        assert context.tool_limiter.max_requests == settings.tool_rate_limit
        assert context.auth_limiter.max_requests == settings.auth_rate_limit
        assert context.cleanup_task is None

    def test_clients_are_per_user(self, settings, store, database):
        context = build_app_context(settings, http=httpx.AsyncClient(), store=store, database=database)

        first = context.clients.get("u1")

        assert context.clients.get("u1") is first
        assert context.clients.get("u2") is not first
        assert first.user_id == "u1"
        assert len(context.clients) == 2

    def test_production_requires_public_base_url(self, settings):
        settings.public_base_url = None

        with pytest.raises(ConfigurationError):
            build_app_context(settings)

    def test_local_development_uses_local_origin(self, settings):
        settings.public_base_url = None
        settings.host = "localhost"

        context = build_app_context(settings)

        assert context.base_url == "http://localhost:8051"


class TestGlobalContext:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent_and_cleanup_resets(self, settings):
        context = await initialize_global_context(settings)

        assert get_app_context() is context
        assert await initialize_global_context(settings) is context
        assert await context.database.ensure_user("ttu_abc")

        await cleanup_global_context()

        assert get_app_context() is None
        assert context.http.is_closed

    @pytest.mark.asyncio
    async def test_cleanup_task_is_cancelled(self, settings):
        settings.cleanup_interval_seconds = 3600
        context = await initialize_global_context(settings)
        task = context.cleanup_task

        assert task is not None
        await asyncio.sleep(0)
        await cleanup_global_context()

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_cleanup_without_context_is_noop(self):
        await cleanup_global_context()

        assert get_app_context() is None

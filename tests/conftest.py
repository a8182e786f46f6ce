"""
Shared pytest fixtures and configuration for all tests.

Every test runs against an in-memory credential store, a temporary SQLite
file and an httpx MockTransport standing in for TickTick. Nothing leaves
the process.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from key_value.aio.stores.memory import MemoryStore

from ticktick_mcp.config import Settings, reset_settings
from ticktick_mcp.core.context import set_app_context
from ticktick_mcp.database import SQLiteDatabase
from ticktick_mcp.storage import AdvisoryLock, PersistedTokenSet, TokenStore
from ticktick_mcp.ticktick.client import TickTickClient

from tests.helpers import API_BASE_URL, BASE_URL, UpstreamRecorder, make_gateway


@pytest.fixture(autouse=True)
def reset_global_state():
    """Each test starts without cached settings or application context."""
    reset_settings()
    set_app_context(None)
    yield
    reset_settings()
    set_app_context(None)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        public_base_url=BASE_URL,
        ticktick_client_id="client-id",
        ticktick_client_secret="client-secret",
        database_path=str(tmp_path / "ticktick.db"),
        cleanup_interval_seconds=0,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
async def database(tmp_path) -> SQLiteDatabase:
    db = SQLiteDatabase(tmp_path / "ticktick.db")
    await db.initialize()
    return db


@pytest.fixture
def token_store(store) -> TokenStore:
    return TokenStore(store, ttl=3600)


@pytest.fixture
def lock(store) -> AdvisoryLock:
    return AdvisoryLock(store, ttl=30)


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


@pytest.fixture
def seed_tokens(token_store) -> Callable:
    """Persist a TickTick grant for a user; expires in an hour unless told otherwise."""

    async def _seed(
        user_id: str = "u1",
        access_token: str = "token-1",
        refresh_token: str | None = "refresh-1",
        expires_in: float = 3600,
    ) -> PersistedTokenSet:
        now = datetime.now(UTC)
        tokens = PersistedTokenSet(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
            scope="tasks:read tasks:write",
            updated_at=now,
        )
        await token_store.save(user_id, tokens)
        return tokens

    return _seed


@pytest.fixture
def make_client(token_store, lock, no_sleep) -> Callable[..., TickTickClient]:
    """Build a TickTickClient whose HTTP goes through an UpstreamRecorder."""

    def _make(upstream: UpstreamRecorder, user_id: str = "u1", **kwargs) -> TickTickClient:
        http = upstream.http()
        kwargs.setdefault("sleep", no_sleep)
        return TickTickClient(
            user_id,
            http=http,
            token_store=token_store,
            lock=lock,
            gateway=make_gateway(http, no_sleep),
            base_url=API_BASE_URL,
            **kwargs,
        )

    return _make

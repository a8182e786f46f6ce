"""Tests for the credential store, token storage and advisory locks."""

from datetime import UTC, datetime

import pytest
from key_value.aio.stores.memory import MemoryStore

from ticktick_mcp.core.constants import TOKENS_COLLECTION
from ticktick_mcp.core.exceptions import ConfigurationError
from ticktick_mcp.storage import AdvisoryLock, PersistedTokenSet, TokenStore, create_credential_store


class TestCreateCredentialStore:
    @pytest.mark.parametrize("url", ["memory://", ""])
    def test_memory(self, url):
        assert isinstance(create_credential_store(url), MemoryStore)

    def test_redis(self):
        from key_value.aio.stores.redis import RedisStore

        assert isinstance(create_credential_store("redis://localhost:6379/0"), RedisStore)

    def test_unknown_scheme(self):
        with pytest.raises(ConfigurationError, match="Unsupported credential store URL scheme"):
            create_credential_store("postgres://db")


class TestTokenStore:
    NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_round_trip_is_per_user(self, token_store):
        tokens = PersistedTokenSet(access_token="a", refresh_token="r", expires_at=self.NOW, updated_at=self.NOW)

        await token_store.save("u1", tokens)

        assert await token_store.load("u1") == tokens
        assert await token_store.load("u2") is None

    @pytest.mark.asyncio
    async def test_malformed_payload_reads_as_missing(self, store):
        token_store = TokenStore(store, ttl=60)
        await store.put(key="u1", value={"refresh_token": "r"}, collection=TOKENS_COLLECTION)

        assert await token_store.load("u1") is None


class TestAdvisoryLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, lock):
        handle = await lock.acquire("refresh:u1")

        assert await lock.is_held("refresh:u1")
        assert await lock.release(handle) is True
        assert not await lock.is_held("refresh:u1")

    @pytest.mark.asyncio
    async def test_release_after_takeover_is_refused(self, lock):
        stale = await lock.acquire("refresh:u1")
        current = await lock.acquire("refresh:u1")

        assert await lock.release(stale) is False
        assert await lock.is_held("refresh:u1")
        assert await lock.release(current) is True

    @pytest.mark.asyncio
    async def test_locks_are_shared_through_the_store(self, store):
        first = AdvisoryLock(store, ttl=30)
        second = AdvisoryLock(store, ttl=30)

        await first.acquire("refresh:u1")

        assert await second.is_held("refresh:u1")

"""Credential store construction and typed access to persisted TickTick tokens."""

import logging
from urllib.parse import urlparse

from key_value.aio.adapters.pydantic import PydanticAdapter
from key_value.aio.protocols import AsyncKeyValue
from key_value.aio.stores.memory import MemoryStore

from ticktick_mcp.core.constants import TOKENS_COLLECTION
from ticktick_mcp.core.exceptions import ConfigurationError
from ticktick_mcp.storage.models import PersistedTokenSet

logger = logging.getLogger(__name__)


def create_credential_store(url: str) -> AsyncKeyValue:
    """Build the key/value backend named by ``url``.

    ``memory://`` keeps everything in-process (single instance only);
    ``redis://`` and ``rediss://`` share state across instances.
    """
    scheme = urlparse(url).scheme.lower()
    if scheme in ("", "memory"):
        logger.info("Using in-memory credential store")
        return MemoryStore()
    if scheme in ("redis", "rediss"):
        from key_value.aio.stores.redis import RedisStore

        logger.info("Using Redis credential store at %s", url.split("@")[-1])
        return RedisStore(url=url)
    msg = f"Unsupported credential store URL scheme: {scheme}"
    raise ConfigurationError(msg)


class TokenStore:
    """Persisted TickTick token sets, one per local user."""

    def __init__(self, store: AsyncKeyValue, *, ttl: int):
        self._ttl = ttl
        # Malformed payloads read as missing rather than failing the request
        self._adapter: PydanticAdapter[PersistedTokenSet] = PydanticAdapter[
            PersistedTokenSet
        ](
            key_value=store,
            pydantic_model=PersistedTokenSet,
            default_collection=TOKENS_COLLECTION,
            raise_on_validation_error=False,
        )

    async def load(self, user_id: str) -> PersistedTokenSet | None:
        return await self._adapter.get(key=user_id)

    async def save(self, user_id: str, tokens: PersistedTokenSet) -> None:
        await self._adapter.put(key=user_id, value=tokens, ttl=self._ttl)

"""Per-user TickTick client instances."""

import logging
from collections import OrderedDict
from collections.abc import Callable

from ticktick_mcp.core.constants import MAX_CACHED_CLIENTS
from ticktick_mcp.ticktick.client import TickTickClient

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Hands out one TickTickClient per local user.

    Each client keeps its own token state, active-id cache and tombstones, so
    nothing about one user's session leaks into another's. Clients of users
    idle the longest are evicted once ``max_clients`` is exceeded; tokens
    live in the credential store, so an evicted user only loses caches.
    """

    def __init__(
        self,
        factory: Callable[[str], TickTickClient],
        max_clients: int = MAX_CACHED_CLIENTS,
    ):
        self._factory = factory
        self._max_clients = max_clients
        self._clients: OrderedDict[str, TickTickClient] = OrderedDict()

    def get(self, user_id: str) -> TickTickClient:
        client = self._clients.get(user_id)
        if client is None:
            client = self._factory(user_id)
            self._clients[user_id] = client
            logger.debug("Created TickTick client for user %s", user_id)
            while len(self._clients) > self._max_clients:
                evicted, _ = self._clients.popitem(last=False)
                logger.debug("Evicted TickTick client for user %s", evicted)
        else:
            self._clients.move_to_end(user_id)
        return client

    def __len__(self) -> int:
        return len(self._clients)

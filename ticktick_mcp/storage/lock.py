"""
Named advisory locks kept in the credential store.

A lock is a short-lived owner marker with a TTL. Holders that crash simply
let the marker expire, so other instances are blocked for at most ``ttl``
seconds. The key/value protocol has no put-if-absent, so two instances racing
on an unheld lock can both believe they own it; callers must tolerate that and
use the lock to narrow races, not to exclude them. Swapping this class for a
lease-based lock does not affect call sites.
"""

import logging
import uuid
from dataclasses import dataclass

from key_value.aio.adapters.pydantic import PydanticAdapter
from key_value.aio.protocols import AsyncKeyValue

from ticktick_mcp.core.constants import LOCKS_COLLECTION
from ticktick_mcp.storage.models import LockRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockHandle:
    """Proof of acquisition, required to release a lock."""

    name: str
    owner: str


class AdvisoryLock:
    """TTL-bounded named locks shared through the credential store."""

    def __init__(self, store: AsyncKeyValue, *, ttl: int):
        self.ttl = ttl
        self._records: PydanticAdapter[LockRecord] = PydanticAdapter[LockRecord](
            key_value=store,
            pydantic_model=LockRecord,
            default_collection=LOCKS_COLLECTION,
            raise_on_validation_error=False,
        )

    async def is_held(self, name: str) -> bool:
        """Check whether any owner currently holds ``name``."""
        return await self._records.get(key=name) is not None

    async def acquire(self, name: str) -> LockHandle:
        """Take ``name`` for this caller, replacing any stale owner."""
        handle = LockHandle(name=name, owner=uuid.uuid4().hex)
        await self._records.put(
            key=name, value=LockRecord(owner=handle.owner), ttl=self.ttl
        )
        logger.debug("Advisory lock acquired: %s", name)
        return handle

    async def release(self, handle: LockHandle) -> bool:
        """Release ``handle`` if it still owns the lock.

        Returns False when the lock expired or was taken over meanwhile.
        """
        current = await self._records.get(key=handle.name)
        if current is None or current.owner != handle.owner:
            logger.warning("Advisory lock expired or taken over: %s", handle.name)
            return False
        await self._records.delete(key=handle.name)
        logger.debug("Advisory lock released: %s", handle.name)
        return True

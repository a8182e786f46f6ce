"""At-most-once admission for mutating tool calls."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from ticktick_mcp.core.exceptions import DuplicateIdempotencyKey, ValidationError
from ticktick_mcp.database.base import TickTickDatabase

logger = logging.getLogger(__name__)


def normalize_idempotency_key(key: str | None) -> str:
    return (key or "").strip()


class IdempotencyGuard:
    """Admits each (user, operation, key) triple once per TTL window.

    Admission must happen strictly before the upstream mutation is issued.
    A rejected duplicate means the caller must not perform the mutation again,
    whether or not the first attempt finished.
    """

    def __init__(
        self,
        database: TickTickDatabase,
        *,
        ttl: int,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._database = database
        self._ttl = timedelta(seconds=ttl)
        self._clock = clock

    async def admit(self, user_id: str, operation: str, key: str | None) -> str:
        """Record the key or raise if it was already used.

        Returns:
            The composite identity ``user:operation:key`` that was admitted

        Raises:
            ValidationError: If the key is missing or blank
            DuplicateIdempotencyKey: If the triple was admitted within the TTL
        """
        normalized = normalize_idempotency_key(key)
        if not normalized:
            raise ValidationError("idempotencyKey is required for mutating operations")

        now = self._clock()
        # Stale markers would otherwise reject a legitimate reuse after the TTL
        await self._database.delete_idempotency_keys_before(now - self._ttl)

        admitted = await self._database.insert_idempotency_key(
            user_id, operation, normalized, now
        )
        if not admitted:
            logger.info("Rejected duplicate idempotency key for %s", operation)
            raise DuplicateIdempotencyKey(
                details={"operation": operation, "idempotencyKey": normalized},
            )
        return f"{user_id}:{operation}:{normalized}"

"""
Base protocol/interface for the relational store.
All database adapters must implement this protocol.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass
class LocalUser:
    """A local account mapped one-to-one to a TickTick account subject."""

    id: str
    subject: str
    created_at: datetime
    updated_at: datetime


@dataclass
class PendingAuthorization:
    """An in-flight TickTick round trip, keyed by the state sent upstream."""

    state: str
    auth_request: dict[str, Any]
    code_verifier: str
    expires_at: datetime
    created_at: datetime | None = None


@dataclass
class AuditEvent:
    """Append-only record of a tool invocation outcome."""

    user_id: str
    event_type: str
    status: str
    detail: str | None = None
    id: int | None = None
    created_at: datetime | None = None


@runtime_checkable
class TickTickDatabase(Protocol):
    """
    Protocol defining the interface for relational storage.
    Holds users, pending OAuth state, idempotency markers and the audit log.
    """

    async def initialize(self) -> None:
        """
        Create the tables if they do not exist.
        This should be called once when the application starts.
        """
        ...

    async def ensure_user(self, subject: str) -> LocalUser:
        """
        Return the user for ``subject``, creating it on first sight.

        Repeated calls with the same subject always return the same id.
        """
        ...

    async def create_pending_authorization(self, pending: PendingAuthorization) -> None:
        """Persist a pending authorization."""
        ...

    async def consume_pending_authorization(
        self,
        state: str,
        now: datetime,
    ) -> PendingAuthorization | None:
        """
        Atomically delete and return the non-expired pending authorization for ``state``.

        A second call for the same state returns None.
        """
        ...

    async def delete_expired_pending_authorizations(self, now: datetime) -> int:
        """Delete pending authorizations whose expiry has passed."""
        ...

    async def insert_idempotency_key(
        self,
        user_id: str,
        operation: str,
        key: str,
        created_at: datetime,
    ) -> bool:
        """
        Insert an idempotency marker.

        Returns:
            False if a marker with the same (user_id, operation, key) already exists
        """
        ...

    async def delete_idempotency_keys_before(self, cutoff: datetime) -> int:
        """Delete idempotency markers created before ``cutoff``."""
        ...

    async def insert_audit_event(self, event: AuditEvent) -> None:
        """Append an audit event."""
        ...

    async def list_audit_events(self, user_id: str, limit: int = 50) -> list[AuditEvent]:
        """Return the most recent audit events for a user, newest first."""
        ...

    async def delete_audit_events_before(self, cutoff: datetime) -> int:
        """Delete audit events created before ``cutoff``."""
        ...

    async def close(self) -> None:
        """Release any held resources."""
        ...

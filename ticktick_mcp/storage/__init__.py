"""Credential store backends, typed token storage and advisory locks."""

from .credential_store import TokenStore, create_credential_store
from .lock import AdvisoryLock, LockHandle
from .models import LockRecord, PersistedTokenSet

__all__ = [
    "AdvisoryLock",
    "LockHandle",
    "LockRecord",
    "PersistedTokenSet",
    "TokenStore",
    "create_credential_store",
]

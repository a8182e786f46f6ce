"""Relational storage for users, OAuth state, idempotency markers and audit events."""

from .base import AuditEvent, LocalUser, PendingAuthorization, TickTickDatabase
from .sqlite_adapter import SQLiteDatabase

__all__ = [
    "AuditEvent",
    "LocalUser",
    "PendingAuthorization",
    "SQLiteDatabase",
    "TickTickDatabase",
]

"""
SQLite adapter implementing the TickTickDatabase protocol.

Blocking sqlite3 calls run in ``asyncio.to_thread`` on a short-lived
connection per operation, so the adapter is safe to share across tasks.
Timestamps are stored as epoch seconds (REAL) to keep comparisons numeric.
"""

import asyncio
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from contextlib import closing
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from ticktick_mcp.core.exceptions import StorageError
from ticktick_mcp.database.base import AuditEvent, LocalUser, PendingAuthorization

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    subject TEXT NOT NULL UNIQUE,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS pending_authorizations (
    state TEXT PRIMARY KEY,
    auth_request_json TEXT NOT NULL,
    code_verifier TEXT NOT NULL,
    expires_at REAL NOT NULL,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS idempotency_keys (
    user_id TEXT NOT NULL,
    operation TEXT NOT NULL,
    key TEXT NOT NULL,
    created_at REAL NOT NULL,
    PRIMARY KEY (user_id, operation, key)
);

CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    status TEXT NOT NULL,
    detail TEXT,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pending_authorizations_expires_at
    ON pending_authorizations(expires_at);
CREATE INDEX IF NOT EXISTS idx_idempotency_keys_created_at
    ON idempotency_keys(created_at);
CREATE INDEX IF NOT EXISTS idx_audit_events_created_at
    ON audit_events(created_at);
CREATE INDEX IF NOT EXISTS idx_audit_events_user
    ON audit_events(user_id, created_at);
"""


def _ts(value: datetime) -> float:
    return value.timestamp()


def _dt(value: float) -> datetime:
    return datetime.fromtimestamp(value, UTC)


class SQLiteDatabase:
    """Relational store backed by a single SQLite file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    async def _run(self, func: Callable[[sqlite3.Connection], T]) -> T:
        def _call() -> T:
            with closing(self._connect()) as conn, conn:
                return func(conn)

        try:
            return await asyncio.to_thread(_call)
        except sqlite3.Error as e:
            msg = f"SQLite operation failed: {e}"
            raise StorageError(msg) from e

    async def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        def _init(conn: sqlite3.Connection) -> None:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

        await self._run(_init)
        logger.info("SQLite database ready at %s", self._path)

    # ========== Users ==========

    async def ensure_user(self, subject: str) -> LocalUser:
        now = _ts(datetime.now(UTC))
        new_id = str(uuid.uuid4())

        def _ensure(conn: sqlite3.Connection) -> sqlite3.Row:
            conn.execute(
                """
                INSERT INTO users (id, subject, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(subject) DO UPDATE SET updated_at = excluded.updated_at
                """,
                (new_id, subject, now, now),
            )
            return conn.execute(
                "SELECT id, subject, created_at, updated_at FROM users WHERE subject = ?",
                (subject,),
            ).fetchone()

        row = await self._run(_ensure)
        return self._user_from_row(row)

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> LocalUser:
        return LocalUser(
            id=row["id"],
            subject=row["subject"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # ========== Pending Authorizations ==========

    async def create_pending_authorization(self, pending: PendingAuthorization) -> None:
        created_at = pending.created_at or datetime.now(UTC)

        def _create(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO pending_authorizations
                    (state, auth_request_json, code_verifier, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    pending.state,
                    json.dumps(pending.auth_request),
                    pending.code_verifier,
                    _ts(pending.expires_at),
                    _ts(created_at),
                ),
            )

        await self._run(_create)

    async def consume_pending_authorization(
        self,
        state: str,
        now: datetime,
    ) -> PendingAuthorization | None:
        # Single statement: two concurrent callbacks cannot both receive the row
        def _consume(conn: sqlite3.Connection) -> sqlite3.Row | None:
            rows = conn.execute(
                """
                DELETE FROM pending_authorizations
                WHERE state = ? AND expires_at > ?
                RETURNING state, auth_request_json, code_verifier, expires_at, created_at
                """,
                (state, _ts(now)),
            ).fetchall()
            return rows[0] if rows else None

        row = await self._run(_consume)
        if row is None:
            return None
        return PendingAuthorization(
            state=row["state"],
            auth_request=json.loads(row["auth_request_json"]),
            code_verifier=row["code_verifier"],
            expires_at=_dt(row["expires_at"]),
            created_at=_dt(row["created_at"]),
        )

    async def delete_expired_pending_authorizations(self, now: datetime) -> int:
        return await self._delete(
            "DELETE FROM pending_authorizations WHERE expires_at <= ?", _ts(now)
        )

    # ========== Idempotency ==========

    async def insert_idempotency_key(
        self,
        user_id: str,
        operation: str,
        key: str,
        created_at: datetime,
    ) -> bool:
        def _insert(conn: sqlite3.Connection) -> bool:
            try:
                conn.execute(
                    """
                    INSERT INTO idempotency_keys (user_id, operation, key, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (user_id, operation, key, _ts(created_at)),
                )
            except sqlite3.IntegrityError:
                return False
            return True

        return await self._run(_insert)

    async def delete_idempotency_keys_before(self, cutoff: datetime) -> int:
        return await self._delete(
            "DELETE FROM idempotency_keys WHERE created_at < ?", _ts(cutoff)
        )

    # ========== Audit ==========

    async def insert_audit_event(self, event: AuditEvent) -> None:
        created_at = event.created_at or datetime.now(UTC)

        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO audit_events (user_id, event_type, status, detail, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event.user_id, event.event_type, event.status, event.detail, _ts(created_at)),
            )

        await self._run(_insert)

    async def list_audit_events(self, user_id: str, limit: int = 50) -> list[AuditEvent]:
        def _list(conn: sqlite3.Connection) -> list[sqlite3.Row]:
            return conn.execute(
                """
                SELECT id, user_id, event_type, status, detail, created_at
                FROM audit_events
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()

        rows = await self._run(_list)
        return [
            AuditEvent(
                id=row["id"],
                user_id=row["user_id"],
                event_type=row["event_type"],
                status=row["status"],
                detail=row["detail"],
                created_at=_dt(row["created_at"]),
            )
            for row in rows
        ]

    async def delete_audit_events_before(self, cutoff: datetime) -> int:
        return await self._delete(
            "DELETE FROM audit_events WHERE created_at < ?", _ts(cutoff)
        )

    async def _delete(self, sql: str, *params: Any) -> int:
        def _exec(conn: sqlite3.Connection) -> int:
            return conn.execute(sql, params).rowcount

        return await self._run(_exec)

    async def close(self) -> None:
        # Connections are per-operation; nothing is held between calls
        return None

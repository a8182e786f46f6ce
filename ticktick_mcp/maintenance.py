"""Periodic cleanup of expired rows in the relational store."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from ticktick_mcp.config.settings import Settings
from ticktick_mcp.database.base import TickTickDatabase
from ticktick_mcp.utils.http_retry import Sleeper, default_sleep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    """Rows removed by one sweep."""

    pending_authorizations: int
    audit_events: int
    idempotency_keys: int

    @property
    def total(self) -> int:
        return self.pending_authorizations + self.audit_events + self.idempotency_keys


async def run_cleanup(
    database: TickTickDatabase,
    settings: Settings,
    now: datetime | None = None,
) -> CleanupReport:
    """Delete expired pending authorizations, old audit events and stale idempotency keys."""
    now = now or datetime.now(UTC)
    report = CleanupReport(
        pending_authorizations=await database.delete_expired_pending_authorizations(now),
        audit_events=await database.delete_audit_events_before(
            now - timedelta(days=settings.audit_retention_days)
        ),
        idempotency_keys=await database.delete_idempotency_keys_before(
            now - timedelta(seconds=settings.idempotency_ttl)
        ),
    )
    if report.total:
        logger.info(
            "Cleanup removed %d pending authorizations, %d audit events, %d idempotency keys",
            report.pending_authorizations,
            report.audit_events,
            report.idempotency_keys,
        )
    return report


async def periodic_cleanup(
    database: TickTickDatabase,
    settings: Settings,
    sleep: Sleeper = default_sleep,
) -> None:
    """Run :func:`run_cleanup` forever; cancel the task to stop it."""
    interval = settings.cleanup_interval_seconds
    logger.info("Background cleanup every %ds", interval)
    while True:
        await sleep(interval)
        try:
            await run_cleanup(database, settings)
        except Exception:
            logger.exception("Scheduled cleanup failed")

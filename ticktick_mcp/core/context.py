"""Application context and lifecycle management for the TickTick MCP server."""

import asyncio
import contextlib
import functools
from dataclasses import dataclass
from typing import Optional

import httpx
from key_value.aio.protocols import AsyncKeyValue
from mcp.server.auth.settings import ClientRegistrationOptions, RevocationOptions

from ticktick_mcp.audit import AuditLogger
from ticktick_mcp.auth.bridge import OAuthBridge
from ticktick_mcp.auth.provider import TickTickOAuthProvider
from ticktick_mcp.auth.upstream import UpstreamTokenGateway
from ticktick_mcp.config import Settings, get_settings
from ticktick_mcp.core.constants import CALLBACK_PATH
from ticktick_mcp.database.base import TickTickDatabase
from ticktick_mcp.database.sqlite_adapter import SQLiteDatabase
from ticktick_mcp.maintenance import periodic_cleanup
from ticktick_mcp.security.idempotency import IdempotencyGuard
from ticktick_mcp.security.rate_limit import RateLimiter, SlidingWindowRateLimiter
from ticktick_mcp.storage.credential_store import TokenStore, create_credential_store
from ticktick_mcp.storage.lock import AdvisoryLock
from ticktick_mcp.ticktick.client import TickTickClient
from ticktick_mcp.ticktick.registry import ClientRegistry

from .logging import logger

# Global context storage
_app_context: Optional["AppContext"] = None
_context_lock: asyncio.Lock | None = None


@dataclass
class AppContext:
    """Shared services of the TickTick MCP server."""

    settings: Settings
    base_url: str
    http: httpx.AsyncClient
    store: AsyncKeyValue
    database: TickTickDatabase
    token_store: TokenStore
    gateway: UpstreamTokenGateway
    bridge: OAuthBridge
    provider: TickTickOAuthProvider
    auth_limiter: RateLimiter
    tool_limiter: RateLimiter
    idempotency: IdempotencyGuard
    audit: AuditLogger
    clients: ClientRegistry
    cleanup_task: asyncio.Task | None = None


def _create_client(
    user_id: str,
    *,
    settings: Settings,
    http: httpx.AsyncClient,
    token_store: TokenStore,
    lock: AdvisoryLock,
    gateway: UpstreamTokenGateway,
) -> TickTickClient:
    return TickTickClient(
        user_id,
        http=http,
        token_store=token_store,
        lock=lock,
        gateway=gateway,
        base_url=settings.ticktick_base_url,
        timeout=settings.api_timeout,
        max_attempts=settings.max_attempts,
        backoff_base=settings.api_backoff_base,
        lock_wait=settings.refresh_lock_wait,
        active_cache_ttl=settings.active_task_cache_ttl,
        max_projects=settings.ticktick_max_projects_fetch,
    )


def build_app_context(
    settings: Settings,
    *,
    http: httpx.AsyncClient | None = None,
    store: AsyncKeyValue | None = None,
    database: TickTickDatabase | None = None,
) -> AppContext:
    """Wire every service from ``settings``; nothing touches the network or disk yet."""
    base_url = settings.resolve_base_url(f"http://{settings.host}:{settings.port}")
    http = http or httpx.AsyncClient()
    store = store or create_credential_store(settings.credential_store_url)
    database = database or SQLiteDatabase(settings.database_path)

    token_store = TokenStore(store, ttl=settings.token_store_ttl)
    gateway = UpstreamTokenGateway.from_settings(settings, http)
    bridge = OAuthBridge(
        database=database,
        token_store=token_store,
        gateway=gateway,
        client_id=settings.ticktick_client_id,
        auth_url=settings.ticktick_auth_url,
        scope=settings.ticktick_oauth_scope,
        callback_url=f"{base_url}{CALLBACK_PATH}",
        pending_ttl=settings.pending_authorization_ttl,
        identity_source=settings.ticktick_identity_source,
    )
    scopes = settings.get_scopes_list()
    provider = TickTickOAuthProvider(
        base_url=base_url,
        store=store,
        bridge=bridge,
        client_registration_options=ClientRegistrationOptions(
            enabled=True,
            valid_scopes=scopes,
            default_scopes=scopes,
        ),
        revocation_options=RevocationOptions(enabled=True),
        access_token_lifetime=settings.access_token_lifetime,
        authorization_code_lifetime=settings.authorization_code_lifetime,
        refresh_token_lifetime=settings.refresh_token_lifetime,
    )

    lock = AdvisoryLock(store, ttl=settings.refresh_lock_ttl)
    clients = ClientRegistry(
        functools.partial(
            _create_client,
            settings=settings,
            http=http,
            token_store=token_store,
            lock=lock,
            gateway=gateway,
        )
    )

    return AppContext(
        settings=settings,
        base_url=base_url,
        http=http,
        store=store,
        database=database,
        token_store=token_store,
        gateway=gateway,
        bridge=bridge,
        provider=provider,
        auth_limiter=SlidingWindowRateLimiter(
            settings.auth_rate_limit, settings.auth_rate_window
        ),
        tool_limiter=SlidingWindowRateLimiter(
            settings.tool_rate_limit, settings.tool_rate_window
        ),
        idempotency=IdempotencyGuard(database, ttl=settings.idempotency_ttl),
        audit=AuditLogger(database),
        clients=clients,
    )


def set_app_context(context: Optional["AppContext"]) -> None:
    """Store the application context globally."""
    global _app_context
    _app_context = context


def get_app_context() -> Optional["AppContext"]:
    """Get the stored application context."""
    return _app_context


async def initialize_global_context(settings: Settings | None = None) -> AppContext:
    """Initialize the global application context once.

    This should be called at application startup, not per-request.

    Returns:
        AppContext: The initialized context
    """
    global _app_context, _context_lock

    if _context_lock is None:
        _context_lock = asyncio.Lock()

    async with _context_lock:
        if _app_context is not None:
            logger.info("Using existing application context (singleton)")
            return _app_context

        logger.info("Initializing global application context...")
        settings = settings or get_settings()
        context = build_app_context(settings)

        await context.database.initialize()

        if settings.cleanup_interval_seconds > 0:
            context.cleanup_task = asyncio.create_task(
                periodic_cleanup(context.database, settings),
                name="ticktick-mcp-cleanup",
            )
        else:
            logger.info("Background cleanup disabled")

        _app_context = context
        logger.info("Application context ready (base URL %s)", context.base_url)
        return context


async def cleanup_global_context() -> None:
    """Clean up the global application context.

    This should be called at application shutdown.
    """
    global _app_context

    if _app_context is None:
        logger.info("No global context to clean up")
        return

    logger.info("Starting cleanup of global application context...")

    task = _app_context.cleanup_task
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    await _app_context.http.aclose()
    await _app_context.database.close()

    _app_context = None
    logger.info("Global application context cleanup completed")

"""Configuration settings for the TickTick MCP Server using Pydantic Settings.

This module provides type-safe configuration management with automatic validation,
environment variable loading, and documentation generation.
"""

import logging
from typing import Any
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ticktick_mcp.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

LOCAL_HOSTNAMES = ("localhost", "127.0.0.1", "::1")


class Settings(BaseSettings):
    """Central configuration management with Pydantic validation.

    All settings are loaded from environment variables with automatic type conversion
    and validation. Default values are provided for non-critical settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
        validate_default=True,
    )

    # ========================================
    # Debug Settings
    # ========================================
    debug: bool = Field(
        default=False,
        alias="MCP_DEBUG",
        description="Enable debug mode with verbose logging",
    )

    # ========================================
    # Server Settings
    # ========================================
    host: str = Field(
        default="0.0.0.0",
        description="Server host address",
    )

    port: int = Field(
        default=8051,
        ge=1024,
        le=65535,
        description="Server port number",
    )

    transport: str = Field(
        default="http",
        description="Transport mode (http, streamable-http, sse, stdio)",
    )

    public_base_url: str | None = Field(
        default=None,
        description="Public origin of this server, used for OAuth redirects and metadata",
    )

    # ========================================
    # TickTick OAuth Settings
    # ========================================
    ticktick_client_id: str = Field(
        default="",
        description="OAuth client id registered with TickTick",
    )

    ticktick_client_secret: str = Field(
        default="",
        description="OAuth client secret registered with TickTick",
    )

    ticktick_auth_url: str = Field(
        default="https://ticktick.com/oauth/authorize",
        description="TickTick authorization endpoint",
    )

    ticktick_token_url: str = Field(
        default="https://ticktick.com/oauth/token",
        description="TickTick token endpoint",
    )

    ticktick_oauth_scope: str = Field(
        default="tasks:read tasks:write",
        description="Space-separated scopes requested from TickTick",
    )

    ticktick_userinfo_url: str = Field(
        default="https://api.ticktick.com/open/v1/user",
        description="TickTick endpoint returning the account behind an access token",
    )

    ticktick_identity_source: str = Field(
        default="userinfo",
        description="How local users are derived from TickTick accounts (userinfo or token_hash)",
    )

    # ========================================
    # TickTick API Settings
    # ========================================
    ticktick_base_url: str = Field(
        default="https://api.ticktick.com/open/v1",
        description="Base URL of the TickTick Open API",
    )

    ticktick_max_projects_fetch: int = Field(
        default=25,
        ge=1,
        le=200,
        description="Maximum projects scanned when listing tasks without a project",
    )

    # ========================================
    # Timeout and Retry Settings
    # ========================================
    token_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for a single token exchange attempt",
    )

    userinfo_timeout: float = Field(
        default=8.0,
        gt=0,
        description="Timeout in seconds for a single user identity lookup",
    )

    api_timeout: float = Field(
        default=8.0,
        gt=0,
        description="Timeout in seconds for a single TickTick API request",
    )

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts for retryable upstream calls",
    )

    token_backoff_base: float = Field(
        default=0.2,
        ge=0,
        description="Base delay in seconds for token endpoint backoff",
    )

    api_backoff_base: float = Field(
        default=0.15,
        ge=0,
        description="Base delay in seconds for API request backoff",
    )

    refresh_lock_ttl: int = Field(
        default=30,
        ge=1,
        description="Seconds before an abandoned refresh lock expires",
    )

    refresh_lock_wait: float = Field(
        default=0.3,
        ge=0,
        description="Seconds to wait before re-reading tokens when the refresh lock is held",
    )

    active_task_cache_ttl: float = Field(
        default=5.0,
        ge=0,
        description="Seconds an active task id set stays cached",
    )

    # ========================================
    # Storage Settings
    # ========================================
    credential_store_url: str = Field(
        default="memory://",
        description="Credential store backend (memory:// or redis://host:port/db)",
    )

    database_path: str = Field(
        default="data/ticktick_mcp.db",
        description="SQLite database file for users, OAuth state, idempotency and audit",
    )

    token_store_ttl: int = Field(
        default=60 * 60 * 24 * 30,
        ge=60,
        description="Seconds persisted TickTick tokens are kept",
    )

    # ========================================
    # Local OAuth Server Settings
    # ========================================
    oauth_scopes: str = Field(
        default="tasks:read,tasks:write",
        description="Comma-separated scopes clients may request",
    )

    access_token_lifetime: int = Field(
        default=3600,
        ge=60,
        description="Lifetime in seconds of locally issued access tokens",
    )

    authorization_code_lifetime: int = Field(
        default=300,
        ge=30,
        description="Lifetime in seconds of locally issued authorization codes",
    )

    refresh_token_lifetime: int = Field(
        default=60 * 60 * 24 * 30,
        ge=60,
        description="Lifetime in seconds of locally issued refresh tokens",
    )

    # ========================================
    # Security Settings
    # ========================================
    pending_authorization_ttl: int = Field(
        default=600,
        ge=30,
        description="Seconds an in-flight TickTick authorization stays valid",
    )

    idempotency_ttl: int = Field(
        default=600,
        ge=1,
        description="Seconds an idempotency key blocks a repeated mutation",
    )

    auth_rate_limit: int = Field(
        default=30,
        ge=1,
        description="Requests per window allowed per client IP on OAuth endpoints",
    )

    auth_rate_window: int = Field(
        default=60,
        ge=1,
        description="Window in seconds for OAuth endpoint rate limiting",
    )

    tool_rate_limit: int = Field(
        default=120,
        ge=1,
        description="Tool invocations per window allowed per user",
    )

    tool_rate_window: int = Field(
        default=60,
        ge=1,
        description="Window in seconds for tool rate limiting",
    )

    # ========================================
    # Maintenance Settings
    # ========================================
    audit_retention_days: int = Field(
        default=90,
        ge=1,
        description="Days audit events are retained",
    )

    cleanup_interval_seconds: int = Field(
        default=3600,
        ge=0,
        description="Seconds between maintenance sweeps (0 disables the sweep)",
    )

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Normalize the public base URL."""
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        return v.rstrip("/")

    @field_validator("transport")
    @classmethod
    def validate_transport(cls, v: str) -> str:
        """Validate transport mode."""
        valid = {"http", "streamable-http", "sse", "stdio"}
        if v.lower() not in valid:
            msg = f"Invalid transport: {v}. Must be one of {sorted(valid)}"
            raise ValueError(msg)
        return v.lower()

    @field_validator("ticktick_identity_source")
    @classmethod
    def validate_identity_source(cls, v: str) -> str:
        """Validate identity source."""
        if v.lower() not in ("userinfo", "token_hash"):
            msg = f"Invalid identity source: {v}. Must be 'userinfo' or 'token_hash'"
            raise ValueError(msg)
        return v.lower()

    def get_scopes_list(self) -> list[str]:
        """Get the scopes clients may request as a list."""
        return [s.strip() for s in self.oauth_scopes.split(",") if s.strip()]

    def get_ticktick_scopes_list(self) -> list[str]:
        """Get the scopes requested from TickTick as a list."""
        return self.ticktick_oauth_scope.split()

    def resolve_base_url(self, request_origin: str | None = None) -> str:
        """Return the public origin used to build OAuth URLs.

        A request origin is only trusted for local development; any other
        deployment must configure PUBLIC_BASE_URL explicitly.
        """
        if request_origin:
            hostname = urlparse(request_origin).hostname or ""
            if hostname in LOCAL_HOSTNAMES:
                return (self.public_base_url or request_origin).rstrip("/")
        if not self.public_base_url:
            msg = "PUBLIC_BASE_URL must be configured in production"
            raise ConfigurationError(msg)
        return self.public_base_url

    def has_ticktick_credentials(self) -> bool:
        """Check if TickTick OAuth client credentials are configured."""
        return bool(self.ticktick_client_id and self.ticktick_client_secret)

    def to_dict(self) -> dict[str, Any]:
        """Export non-secret settings for debugging."""
        return {
            "debug": self.debug,
            "host": self.host,
            "port": self.port,
            "transport": self.transport,
            "public_base_url": self.public_base_url,
            "ticktick_base_url": self.ticktick_base_url,
            "ticktick_identity_source": self.ticktick_identity_source,
            "credential_store_url": self.credential_store_url.split("@")[-1],
            "database_path": self.database_path,
            "has_ticktick_credentials": self.has_ticktick_credentials(),
            "cleanup_interval_seconds": self.cleanup_interval_seconds,
        }


# Singleton pattern with proper typing
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
        logger.info("Settings initialized from environment")
        logger.debug("Credential store: %s", _settings_instance.credential_store_url.split("@")[-1])
        if not _settings_instance.has_ticktick_credentials():
            logger.warning(
                "TICKTICK_CLIENT_ID/TICKTICK_CLIENT_SECRET are missing. "
                "TickTick authorization will fail.",
            )
    return _settings_instance


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings_instance
    _settings_instance = None

"""TickTick OAuth token endpoint client.

Performs the authorization-code and refresh-token grants with a per-attempt
timeout, bounded retries on 429/5xx and transport failures, and a single
decode step that turns TickTick's loosely-spelled responses into a TokenSet.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx

from ticktick_mcp.config.settings import Settings
from ticktick_mcp.core.constants import TOKEN_EXPIRY_SKEW_SECONDS
from ticktick_mcp.core.exceptions import (
    TokenExchangeFailed,
    TokenRefreshFailed,
    UpstreamApiError,
    UpstreamNetworkError,
    UpstreamTimeoutError,
)
from ticktick_mcp.storage.models import PersistedTokenSet
from ticktick_mcp.utils.http_retry import (
    Sleeper,
    default_sleep,
    retry_delay,
    should_retry_status,
)

logger = logging.getLogger(__name__)


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _first(body: Mapping[str, Any], names: tuple[str, ...], convert) -> Any:
    for name in names:
        value = convert(body.get(name))
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class TokenSet:
    """Normalized token endpoint response."""

    access_token: str
    refresh_token: str | None = None
    token_type: str | None = None
    scope: str | None = None
    expires_in: float | None = None

    # Snake case wins over camel case when both are present
    FIELD_NAMES = {
        "access_token": ("access_token", "accessToken"),
        "refresh_token": ("refresh_token", "refreshToken"),
        "token_type": ("token_type", "tokenType"),
        "scope": ("scope",),
        "expires_in": ("expires_in", "expiresIn"),
    }

    @classmethod
    def decode(cls, body: Mapping[str, Any]) -> "TokenSet":
        """Build a TokenSet from a raw response body.

        Raises:
            ValueError: If no access token is present under any known name
        """
        names = cls.FIELD_NAMES
        access_token = _first(body, names["access_token"], _as_str)
        if not access_token:
            msg = "TickTick token response is missing access token"
            raise ValueError(msg)
        return cls(
            access_token=access_token,
            refresh_token=_first(body, names["refresh_token"], _as_str),
            token_type=_first(body, names["token_type"], _as_str),
            scope=_first(body, names["scope"], _as_str),
            expires_in=_first(body, names["expires_in"], _as_number),
        )

    def to_persisted(
        self,
        now: datetime,
        *,
        previous_refresh_token: str | None = None,
        default_scope: str = "",
    ) -> PersistedTokenSet:
        """Convert to the stored form, keeping the old refresh token unless rotated."""
        expires_at = None
        if self.expires_in is not None:
            skewed = max(0.0, self.expires_in - TOKEN_EXPIRY_SKEW_SECONDS)
            expires_at = now + timedelta(seconds=skewed)
        return PersistedTokenSet(
            access_token=self.access_token,
            refresh_token=self.refresh_token or previous_refresh_token,
            expires_at=expires_at,
            scope=self.scope or default_scope,
            updated_at=now,
        )


@dataclass(frozen=True)
class UserIdentity:
    """The TickTick account behind an access token."""

    username: str


def _parse_body(response: httpx.Response) -> tuple[dict[str, Any], str]:
    raw = response.text
    if not raw:
        return {}, raw
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}, raw
    return (parsed if isinstance(parsed, dict) else {}), raw


class UpstreamTokenGateway:
    """Client for TickTick's token and user identity endpoints."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        client_id: str,
        client_secret: str,
        token_url: str,
        userinfo_url: str,
        token_timeout: float = 10.0,
        userinfo_timeout: float = 8.0,
        max_attempts: int = 3,
        backoff_base: float = 0.2,
        sleep: Sleeper = default_sleep,
    ):
        self._http = http
        self._client_id = client_id
        self._auth = httpx.BasicAuth(client_id, client_secret)
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.token_timeout = token_timeout
        self.userinfo_timeout = userinfo_timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http: httpx.AsyncClient,
        *,
        sleep: Sleeper = default_sleep,
    ) -> "UpstreamTokenGateway":
        return cls(
            http,
            client_id=settings.ticktick_client_id,
            client_secret=settings.ticktick_client_secret,
            token_url=settings.ticktick_token_url,
            userinfo_url=settings.ticktick_userinfo_url,
            token_timeout=settings.token_timeout,
            userinfo_timeout=settings.userinfo_timeout,
            max_attempts=settings.max_attempts,
            backoff_base=settings.token_backoff_base,
            sleep=sleep,
        )

    async def exchange_code(self, code: str, verifier: str, redirect_uri: str) -> TokenSet:
        """Exchange an authorization code and its PKCE verifier for tokens."""
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": verifier,
            "client_id": self._client_id,
        }
        return await self._token_grant(form, action="exchange", error_cls=TokenExchangeFailed)

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Redeem a refresh token. The response may rotate the refresh token."""
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
        }
        return await self._token_grant(form, action="refresh", error_cls=TokenRefreshFailed)

    async def get_user_identity(self, access_token: str) -> UserIdentity:
        """Resolve the TickTick account that owns ``access_token``."""
        response = await self._send(
            "GET",
            self.userinfo_url,
            timeout=self.userinfo_timeout,
            action="user lookup",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        body, raw = _parse_body(response)
        if not response.is_success:
            raise UpstreamApiError(
                f"TickTick user lookup failed ({response.status_code})",
                status=response.status_code,
                details={"responseBody": raw},
            )
        username = _first(body, ("username", "userName", "id"), _as_str)
        if not username:
            raise UpstreamApiError(
                "TickTick user lookup returned no account identifier",
                details={"body": body},
            )
        return UserIdentity(username=username)

    async def _token_grant(
        self,
        form: dict[str, str],
        *,
        action: str,
        error_cls: type[UpstreamApiError],
    ) -> TokenSet:
        response = await self._send(
            "POST",
            self.token_url,
            timeout=self.token_timeout,
            action=f"token {action}",
            data=form,
            auth=self._auth,
        )
        body, raw = _parse_body(response)
        status = response.status_code

        # TickTick sometimes reports grant errors with a 200
        if response.is_success and not body.get("error"):
            try:
                return TokenSet.decode(body)
            except ValueError as e:
                raise error_cls(str(e), details={"status": status, "body": body}) from e

        raise error_cls(
            f"TickTick token {action} failed ({status}): {body.get('error') or 'unknown'}",
            details={"status": status, "body": body, "responseBody": raw},
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send with retries; returns the first non-retryable or final response."""
        for attempt in range(1, self.max_attempts + 1):
            last_attempt = attempt == self.max_attempts
            try:
                response = await self._http.request(
                    method, url, timeout=httpx.Timeout(timeout), **kwargs
                )
            except httpx.TimeoutException as e:
                logger.warning("TickTick %s attempt %d timed out", action, attempt)
                if last_attempt:
                    raise UpstreamTimeoutError(f"TickTick {action} timed out") from e
                await self._sleep(retry_delay(attempt, self.backoff_base, None))
                continue
            except httpx.TransportError as e:
                logger.warning("TickTick %s attempt %d failed: %s", action, attempt, e)
                if last_attempt:
                    raise UpstreamNetworkError(
                        f"TickTick {action} failed due to network error",
                        details={"cause": str(e)},
                    ) from e
                await self._sleep(retry_delay(attempt, self.backoff_base, None))
                continue

            if should_retry_status(response.status_code) and not last_attempt:
                delay = retry_delay(
                    attempt, self.backoff_base, response.headers.get("retry-after")
                )
                logger.info(
                    "TickTick %s returned %d, retrying in %.2fs",
                    action,
                    response.status_code,
                    delay,
                )
                await self._sleep(delay)
                continue
            return response

        # range() is never empty because max_attempts >= 1
        raise UpstreamNetworkError(f"TickTick {action} retries exhausted")

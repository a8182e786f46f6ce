"""OAuth bridge between MCP clients and TickTick.

An MCP client's /authorize request is parked as a PendingAuthorization under a
random ``state`` while the user signs in at TickTick. The /callback handler
consumes that row exactly once, exchanges the upstream code with the stored
PKCE verifier, maps the TickTick account to a local user and persists the
TickTick grant before the local authorization server issues its own code.
"""

import base64
import hashlib
import logging
import secrets
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

from mcp.shared.auth import OAuthClientInformationFull
from pydantic import AnyUrl, ValidationError

from ticktick_mcp.auth.storage import ClientAuthorizationRequest
from ticktick_mcp.auth.upstream import UpstreamTokenGateway
from ticktick_mcp.core.constants import (
    CODE_CHALLENGE_METHOD,
    CODE_VERIFIER_BYTES,
    STATE_BYTES,
)
from ticktick_mcp.core.exceptions import (
    InvalidOrExpiredState,
    MissingCallbackParameters,
    RedirectMismatch,
    TokenExchangeFailed,
    UnknownClient,
    UpstreamApiError,
    UpstreamDenied,
    UpstreamTokenError,
)
from ticktick_mcp.database.base import LocalUser, PendingAuthorization, TickTickDatabase
from ticktick_mcp.storage.credential_store import TokenStore

logger = logging.getLogger(__name__)

# Receives the parked client request and the local user, returns the client redirect
CompletionCallback = Callable[[ClientAuthorizationRequest, LocalUser], Awaitable[str]]


def _b64url(digest: bytes) -> str:
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def pkce_challenge(verifier: str) -> str:
    """S256 code challenge for ``verifier``."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def subject_from_username(username: str) -> str:
    digest = hashlib.sha256(f"ticktick-user:{username}".encode()).digest()
    return f"ttu_{_b64url(digest)[:32]}"


def subject_from_access_token(access_token: str) -> str:
    digest = hashlib.sha256(f"ticktick:{access_token}".encode()).digest()
    return f"tt_{_b64url(digest)[:32]}"


def check_client_request(
    client: OAuthClientInformationFull | None,
    redirect_uri: str,
) -> OAuthClientInformationFull:
    """Ensure the client is registered and ``redirect_uri`` is allow-listed for it."""
    if client is None:
        raise UnknownClient()
    registered = {str(uri) for uri in (client.redirect_uris or [])}
    try:
        normalized = str(AnyUrl(redirect_uri))
    except ValidationError:
        normalized = None
    if normalized not in registered:
        raise RedirectMismatch(details={"redirectUri": redirect_uri})
    return client


class OAuthBridge:
    """Runs the TickTick leg of the local authorization flow."""

    def __init__(
        self,
        *,
        database: TickTickDatabase,
        token_store: TokenStore,
        gateway: UpstreamTokenGateway,
        client_id: str,
        auth_url: str,
        scope: str,
        callback_url: str,
        pending_ttl: int = 600,
        identity_source: str = "userinfo",
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._database = database
        self._token_store = token_store
        self._gateway = gateway
        self._client_id = client_id
        self.auth_url = auth_url
        self.scope = scope
        self.callback_url = callback_url
        self._pending_ttl = timedelta(seconds=pending_ttl)
        self.identity_source = identity_source
        self._clock = clock

    async def begin_authorization(self, request: ClientAuthorizationRequest) -> str:
        """Park ``request`` and return the TickTick authorize URL to redirect to.

        The caller has already checked the client and its redirect URI with
        :func:`check_client_request`.
        """
        state = secrets.token_hex(STATE_BYTES)
        verifier = secrets.token_hex(CODE_VERIFIER_BYTES)
        now = self._clock()

        await self._database.create_pending_authorization(
            PendingAuthorization(
                state=state,
                auth_request=request.model_dump(mode="json"),
                code_verifier=verifier,
                expires_at=now + self._pending_ttl,
                created_at=now,
            )
        )
        logger.info("Started TickTick authorization for client %s", request.client_id)

        query = urlencode(
            {
                "client_id": self._client_id,
                "redirect_uri": self.callback_url,
                "response_type": "code",
                "scope": self.scope,
                "state": state,
                "code_challenge": pkce_challenge(verifier),
                "code_challenge_method": CODE_CHALLENGE_METHOD,
            }
        )
        return f"{self.auth_url}?{query}"

    async def complete_authorization(
        self,
        state: str | None,
        code: str | None,
        upstream_error: str | None,
        on_complete: CompletionCallback,
    ) -> str:
        """Finish the TickTick round trip and return the redirect to the MCP client.

        Raises:
            UpstreamDenied: TickTick returned an ``error`` instead of a code
            MissingCallbackParameters: ``state`` or ``code`` is absent
            InvalidOrExpiredState: No live pending authorization for ``state``
            UpstreamTokenError: The exchange or identity lookup failed
        """
        if upstream_error:
            raise UpstreamDenied(upstream_error)
        if not state or not code:
            raise MissingCallbackParameters()

        pending = await self._database.consume_pending_authorization(state, self._clock())
        if pending is None:
            raise InvalidOrExpiredState()
        request = ClientAuthorizationRequest.model_validate(pending.auth_request)

        try:
            tokens = await self._gateway.exchange_code(
                code, pending.code_verifier, self.callback_url
            )
        except TokenExchangeFailed as e:
            logger.warning("TickTick code exchange failed: %s", e.message)
            raise UpstreamTokenError(e.message, details=e.details) from e
        except UpstreamApiError as e:
            raise UpstreamTokenError("Authorization failed", details=e.details) from e

        subject = await self._derive_subject(tokens.access_token)
        user = await self._database.ensure_user(subject)
        await self._token_store.save(
            user.id,
            tokens.to_persisted(self._clock(), default_scope=self.scope),
        )
        logger.info("Linked TickTick account to local user %s", user.id)

        return await on_complete(request, user)

    async def _derive_subject(self, access_token: str) -> str:
        if self.identity_source == "token_hash":
            return subject_from_access_token(access_token)
        try:
            identity = await self._gateway.get_user_identity(access_token)
        except UpstreamApiError as e:
            logger.warning("TickTick user lookup failed: %s", e.message)
            raise UpstreamTokenError("Authorization failed", details=e.details) from e
        return subject_from_username(identity.username)

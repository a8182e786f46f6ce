"""Local OAuth authorization server backed by the credential store.

MCP clients register, authorize and exchange tokens against this provider.
Authorization is delegated to TickTick through the OAuth bridge; once the
user comes back, a local authorization code bound to the local user id is
issued and redeemed through the SDK token endpoint with PKCE verification.
"""

import logging
import secrets
import time
from collections.abc import Callable

from fastmcp.server.auth import OAuthProvider
from fastmcp.server.auth.auth import AccessToken
from key_value.aio.adapters.pydantic import PydanticAdapter
from key_value.aio.protocols import AsyncKeyValue
from mcp.server.auth.provider import (
    AuthorizationCode,
    AuthorizationParams,
    RefreshToken,
    TokenError,
    construct_redirect_uri,
)
from mcp.server.auth.settings import ClientRegistrationOptions, RevocationOptions
from mcp.shared.auth import OAuthClientInformationFull, OAuthToken
from pydantic import AnyUrl
from starlette.routing import Route

from ticktick_mcp.auth.bridge import OAuthBridge
from ticktick_mcp.auth.routes import build_bridge_routes
from ticktick_mcp.auth.storage import (
    ClientAuthorizationRequest,
    StoredAccessToken,
    StoredAuthCode,
    StoredRefreshToken,
)
from ticktick_mcp.core.constants import (
    ACCESS_TOKENS_COLLECTION,
    AUTH_CODES_COLLECTION,
    CLIENTS_COLLECTION,
    PROTECTED_RESOURCE_PATH,
    REFRESH_TOKENS_COLLECTION,
)
from ticktick_mcp.database.base import LocalUser

logger = logging.getLogger(__name__)


class TickTickOAuthProvider(OAuthProvider):
    """OAuth provider whose users are TickTick accounts.

    Clients, authorization codes, access tokens and refresh tokens are kept
    in the credential store with per-entity TTLs, so a Redis backend shares
    them across instances.
    """

    def __init__(
        self,
        *,
        base_url: str,
        store: AsyncKeyValue,
        bridge: OAuthBridge,
        issuer_url: str | None = None,
        service_documentation_url: str | None = None,
        client_registration_options: ClientRegistrationOptions | None = None,
        revocation_options: RevocationOptions | None = None,
        required_scopes: list[str] | None = None,
        access_token_lifetime: int = 3600,
        authorization_code_lifetime: int = 300,
        refresh_token_lifetime: int | None = 60 * 60 * 24 * 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize OAuth provider.

        Args:
            base_url: Public origin of this server
            store: Credential store holding the OAuth entities
            bridge: Runs the TickTick leg of authorization
            issuer_url: OAuth issuer URL (defaults to base_url)
            service_documentation_url: URL to service documentation
            client_registration_options: DCR configuration
            revocation_options: Token revocation configuration
            required_scopes: Scopes required for all requests
            access_token_lifetime: Seconds a local access token stays valid
            authorization_code_lifetime: Seconds a local code stays redeemable
            refresh_token_lifetime: Seconds a local refresh token lives (None = forever)
            clock: Epoch seconds source
        """
        super().__init__(
            base_url=base_url,
            issuer_url=issuer_url,
            service_documentation_url=service_documentation_url,
            client_registration_options=client_registration_options,
            revocation_options=revocation_options,
            required_scopes=required_scopes,
        )
        self.bridge = bridge
        self.access_token_lifetime = access_token_lifetime
        self.authorization_code_lifetime = authorization_code_lifetime
        self.refresh_token_lifetime = refresh_token_lifetime
        self._clock = clock

        self._clients = PydanticAdapter[OAuthClientInformationFull](
            key_value=store,
            pydantic_model=OAuthClientInformationFull,
            default_collection=CLIENTS_COLLECTION,
            raise_on_validation_error=False,
        )
        self._codes = PydanticAdapter[StoredAuthCode](
            key_value=store,
            pydantic_model=StoredAuthCode,
            default_collection=AUTH_CODES_COLLECTION,
            raise_on_validation_error=False,
        )
        self._access_tokens = PydanticAdapter[StoredAccessToken](
            key_value=store,
            pydantic_model=StoredAccessToken,
            default_collection=ACCESS_TOKENS_COLLECTION,
            raise_on_validation_error=False,
        )
        self._refresh_tokens = PydanticAdapter[StoredRefreshToken](
            key_value=store,
            pydantic_model=StoredRefreshToken,
            default_collection=REFRESH_TOKENS_COLLECTION,
            raise_on_validation_error=False,
        )

    @property
    def public_base_url(self) -> str:
        return str(self.base_url).rstrip("/")

    # ========== Client Management ==========

    async def get_client(self, client_id: str) -> OAuthClientInformationFull | None:
        """Retrieve a registered client."""
        return await self._clients.get(key=client_id)

    async def register_client(self, client_info: OAuthClientInformationFull) -> None:
        """Store a dynamic client registration."""
        if not client_info.client_id:
            msg = "client_id is required"
            raise ValueError(msg)
        await self._clients.put(key=client_info.client_id, value=client_info)
        logger.info("Registered client: %s", client_info.client_id)

    # ========== Authorization Flow ==========

    async def authorize(
        self,
        client: OAuthClientInformationFull,
        params: AuthorizationParams,
    ) -> str:
        """Park the client's request and return the TickTick authorize URL."""
        request = ClientAuthorizationRequest(
            client_id=client.client_id or "",
            redirect_uri=str(params.redirect_uri),
            redirect_uri_provided_explicitly=params.redirect_uri_provided_explicitly,
            state=params.state,
            scopes=list(params.scopes or []),
            code_challenge=params.code_challenge,
            resource=params.resource,
        )
        return await self.bridge.begin_authorization(request)

    async def handle_callback(
        self,
        state: str | None,
        code: str | None,
        error: str | None,
    ) -> str:
        """Finish the TickTick round trip; returns the redirect to the MCP client."""
        return await self.bridge.complete_authorization(
            state, code, error, on_complete=self.complete_authorization
        )

    async def complete_authorization(
        self,
        request: ClientAuthorizationRequest,
        user: LocalUser,
    ) -> str:
        """Issue a local authorization code for ``user`` and build the client redirect."""
        code = f"authcode_{secrets.token_urlsafe(32)}"
        stored = StoredAuthCode(
            code=code,
            client_id=request.client_id,
            user_id=user.id,
            redirect_uri=request.redirect_uri,
            redirect_uri_provided_explicitly=request.redirect_uri_provided_explicitly,
            scopes=request.scopes,
            code_challenge=request.code_challenge,
            resource=request.resource,
            expires_at=self._clock() + self.authorization_code_lifetime,
        )
        await self._codes.put(key=code, value=stored, ttl=self.authorization_code_lifetime)
        logger.info("Issued authorization code for client: %s", request.client_id)
        return construct_redirect_uri(request.redirect_uri, code=code, state=request.state)

    async def load_authorization_code(
        self,
        client: OAuthClientInformationFull,
        authorization_code: str,
    ) -> AuthorizationCode | None:
        """Load an authorization code issued to ``client``."""
        stored = await self._codes.get(key=authorization_code)
        if not stored:
            return None

        if self._clock() > stored.expires_at:
            await self._codes.delete(key=authorization_code)
            return None

        if stored.client_id != client.client_id:
            return None

        return AuthorizationCode(
            code=stored.code,
            client_id=stored.client_id,
            redirect_uri=AnyUrl(stored.redirect_uri),
            redirect_uri_provided_explicitly=stored.redirect_uri_provided_explicitly,
            scopes=stored.scopes,
            expires_at=stored.expires_at,
            code_challenge=stored.code_challenge,
            resource=stored.resource,
        )

    # ========== Token Exchange ==========

    async def exchange_authorization_code(
        self,
        client: OAuthClientInformationFull,
        authorization_code: AuthorizationCode,
    ) -> OAuthToken:
        """Redeem a code (single use) for local tokens."""
        stored = await self._codes.get(key=authorization_code.code)
        await self._codes.delete(key=authorization_code.code)
        if stored is None:
            raise TokenError("invalid_grant", "Authorization code was already used")

        token = await self._issue_tokens(
            client_id=client.client_id or "",
            user_id=stored.user_id,
            scopes=authorization_code.scopes,
            resource=stored.resource,
        )
        logger.info("Issued tokens for client: %s", client.client_id)
        return token

    async def load_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: str,
    ) -> RefreshToken | None:
        """Load a refresh token issued to ``client``."""
        stored = await self._refresh_tokens.get(key=refresh_token)
        if not stored:
            return None

        if stored.client_id != client.client_id:
            return None

        if stored.expires_at and self._clock() > stored.expires_at:
            await self._refresh_tokens.delete(key=refresh_token)
            return None

        return RefreshToken(
            token=stored.token,
            client_id=stored.client_id,
            scopes=stored.scopes,
            expires_at=int(stored.expires_at) if stored.expires_at else None,
        )

    async def exchange_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: RefreshToken,
        scopes: list[str],
    ) -> OAuthToken:
        """Rotate a refresh token into a new token pair."""
        if not set(scopes).issubset(set(refresh_token.scopes)):
            raise TokenError("invalid_scope", "Requested scopes exceed original scopes")

        stored = await self._refresh_tokens.get(key=refresh_token.token)
        await self._refresh_tokens.delete(key=refresh_token.token)
        if stored is None:
            raise TokenError("invalid_grant", "Refresh token was already used")

        token = await self._issue_tokens(
            client_id=client.client_id or "",
            user_id=stored.user_id,
            scopes=scopes or refresh_token.scopes,
            resource=stored.resource,
        )
        logger.info("Refreshed tokens for client: %s", client.client_id)
        return token

    async def _issue_tokens(
        self,
        *,
        client_id: str,
        user_id: str,
        scopes: list[str],
        resource: str | None,
    ) -> OAuthToken:
        now = self._clock()
        access_token = f"access_{secrets.token_urlsafe(32)}"
        refresh_token = f"refresh_{secrets.token_urlsafe(32)}"

        await self._access_tokens.put(
            key=access_token,
            value=StoredAccessToken(
                token=access_token,
                client_id=client_id,
                user_id=user_id,
                scopes=scopes,
                resource=resource,
                expires_at=now + self.access_token_lifetime,
                created_at=now,
            ),
            ttl=self.access_token_lifetime,
        )

        refresh_expires_at = (
            now + self.refresh_token_lifetime if self.refresh_token_lifetime else None
        )
        await self._refresh_tokens.put(
            key=refresh_token,
            value=StoredRefreshToken(
                token=refresh_token,
                client_id=client_id,
                user_id=user_id,
                scopes=scopes,
                resource=resource,
                expires_at=refresh_expires_at,
            ),
            ttl=self.refresh_token_lifetime,
        )

        return OAuthToken(
            access_token=access_token,
            token_type="Bearer",
            expires_in=self.access_token_lifetime,
            refresh_token=refresh_token,
            scope=" ".join(scopes),
        )

    # ========== Token Validation ==========

    async def load_access_token(self, token: str) -> AccessToken | None:
        """Load and validate an access token; the local user id rides in claims."""
        stored = await self._access_tokens.get(key=token)
        if not stored:
            return None

        if self._clock() > stored.expires_at:
            await self._access_tokens.delete(key=token)
            return None

        return AccessToken(
            token=stored.token,
            client_id=stored.client_id,
            scopes=stored.scopes,
            expires_at=int(stored.expires_at),
            resource=stored.resource,
            claims={"sub": stored.user_id, "user_id": stored.user_id},
        )

    # ========== Revocation ==========

    async def revoke_token(self, token: AccessToken | RefreshToken) -> None:
        """Revoke a token."""
        if isinstance(token, RefreshToken):
            await self._refresh_tokens.delete(key=token.token)
            logger.info("Revoked refresh token for client: %s", token.client_id)
        else:
            await self._access_tokens.delete(key=token.token)
            logger.info("Revoked access token for client: %s", token.client_id)

    # ========== Routes ==========

    def get_routes(self, mcp_path: str | None = None) -> list[Route]:
        """SDK routes with /authorize and protected-resource metadata swapped out."""
        routes = []
        for route in super().get_routes(mcp_path):
            if isinstance(route, Route) and (
                route.path == "/authorize" or route.path.startswith(PROTECTED_RESOURCE_PATH)
            ):
                continue
            routes.append(route)
        routes.extend(build_bridge_routes(self, mcp_path))
        return routes

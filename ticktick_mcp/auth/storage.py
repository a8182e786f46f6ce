"""Pydantic models for OAuth entity storage.

These models define the structure of the local authorization server's
entities (authorization codes, access tokens, refresh tokens) as kept in
the credential store, plus the client's authorization request that is parked
while the user is away at TickTick. Registered clients are stored as the
SDK's own ``OAuthClientInformationFull``.
"""

import time

from pydantic import BaseModel, Field


class ClientAuthorizationRequest(BaseModel):
    """The MCP client's original /authorize request."""

    client_id: str
    redirect_uri: str
    redirect_uri_provided_explicitly: bool = True
    state: str | None = None
    scopes: list[str] = Field(default_factory=list)
    code_challenge: str
    resource: str | None = None


class StoredAuthCode(BaseModel):
    """Local authorization code issued after a completed TickTick round trip."""

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    redirect_uri_provided_explicitly: bool = True
    scopes: list[str] = Field(default_factory=list)
    code_challenge: str
    resource: str | None = None
    expires_at: float


class StoredAccessToken(BaseModel):
    """Local access token presented by MCP clients."""

    token: str
    client_id: str
    user_id: str
    scopes: list[str] = Field(default_factory=list)
    resource: str | None = None
    expires_at: float
    created_at: float = Field(default_factory=time.time)


class StoredRefreshToken(BaseModel):
    """Local refresh token; rotated on every use."""

    token: str
    client_id: str
    user_id: str
    scopes: list[str] = Field(default_factory=list)
    resource: str | None = None
    expires_at: float | None = None  # None = no expiry

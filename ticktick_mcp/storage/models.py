"""Pydantic models for values kept in the credential store."""

import time
from datetime import datetime

from pydantic import BaseModel, Field


class PersistedTokenSet(BaseModel):
    """TickTick grant for one local user.

    The refresh token rotates: whenever TickTick returns a new one it replaces
    the old value in the same write as the access token.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str = ""
    updated_at: datetime


class LockRecord(BaseModel):
    """Owner marker for a named advisory lock."""

    owner: str
    acquired_at: float = Field(default_factory=time.time)

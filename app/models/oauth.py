"""
Domain models for connected-account token persistence.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuth1Credentials(BaseModel):
    """OAuth 1.0a token pair authorized for the legacy upload surface."""

    access_token: str
    access_token_secret: str


class StoredToken(BaseModel):
    """Per-user session record keyed by the external platform user id."""

    user_id: str = Field(..., description="Stable X user identifier.")
    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: Optional[str] = None
    handle: Optional[str] = Field(None, description="X username at connect time.")
    oauth1a: Optional[OAuth1Credentials] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def is_expired(self, *, now: Optional[datetime] = None, leeway_seconds: float = 0) -> bool:
        current = now or _utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return current.timestamp() + leeway_seconds >= expires_at.timestamp()


class TokenGrant(BaseModel):
    """Token endpoint response for code exchange and refresh."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    scope: Optional[str] = None
    token_type: str = "bearer"


class AuthorizationRequest(BaseModel):
    """Everything needed to send the user to the consent screen."""

    authorization_url: str
    code_verifier: str
    state: str
    code_challenge: str


class UserIdentity(BaseModel):
    id: str
    display_name: str
    handle: str
    avatar_url: Optional[str] = None


class OAuth1AccessGrant(BaseModel):
    access_token: str
    access_token_secret: str
    user_id: str
    handle: str


__all__ = [
    "AuthorizationRequest",
    "OAuth1AccessGrant",
    "OAuth1Credentials",
    "StoredToken",
    "TokenGrant",
    "UserIdentity",
]

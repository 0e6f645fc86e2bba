"""Schemas related to OAuth flows."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AuthorizationStartResponse(BaseModel):
    """Consent URL returned to API clients that do not follow redirects."""

    authorization_url: str
    state: Optional[str] = Field(
        None, description="Opaque CSRF token echoed back on the OAuth2 callback."
    )


class ConnectedAccount(BaseModel):
    """Public view of a stored X session. Never includes token material."""

    status: str = "connected"
    platform: str = "x"
    user_id: str
    username: Optional[str] = None
    expires_at: datetime
    media_upload_authorized: bool = False


class ConnectedUsersResponse(BaseModel):
    user_ids: List[str]


class IdentityResponse(BaseModel):
    id: str
    display_name: str
    handle: str
    avatar_url: Optional[str] = None


__all__ = [
    "AuthorizationStartResponse",
    "ConnectedAccount",
    "ConnectedUsersResponse",
    "IdentityResponse",
]

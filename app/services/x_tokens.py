"""
Helpers for retrieving and refreshing X OAuth tokens.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from app.clients.x_oauth2 import XOAuth2Client
from app.core.errors import NotAuthenticated
from app.models.oauth import OAuth1Credentials, StoredToken, TokenGrant, UserIdentity
from app.services.token_store import TokenRepository

logger = logging.getLogger(__name__)


class XTokenService:
    """Manages access to persisted X OAuth tokens."""

    _REFRESH_LEEWAY = timedelta(seconds=30)

    def __init__(self, repository: TokenRepository, oauth_client: XOAuth2Client) -> None:
        self._repository = repository
        self._oauth = oauth_client
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def get(self, user_id: str) -> Optional[StoredToken]:
        return self._repository.get(user_id)

    async def get_valid_token(self, user_id: str) -> StoredToken:
        """Return the user's token, refreshing it first when it has expired."""
        token = self._repository.get(user_id)
        if token is None:
            raise NotAuthenticated(f"No X account connected for user {user_id}.")
        if not token.is_expired(leeway_seconds=self._REFRESH_LEEWAY.total_seconds()):
            return token

        async with self._lock_for(user_id):
            # Another task may have refreshed while we waited on the lock.
            token = self._repository.get(user_id)
            if token is None:
                raise NotAuthenticated(f"No X account connected for user {user_id}.")
            if not token.is_expired(leeway_seconds=self._REFRESH_LEEWAY.total_seconds()):
                return token

            logger.info("Refreshing X access token for user %s", user_id)
            grant = await self._oauth.refresh_access_token(token.refresh_token)
            refreshed = self._apply_grant(token, grant)
            self._repository.save(refreshed)
            return refreshed

    def save_grant(
        self,
        identity: UserIdentity,
        grant: TokenGrant,
        *,
        oauth1a: Optional[OAuth1Credentials] = None,
    ) -> StoredToken:
        """Persist a fresh login, keeping any OAuth 1.0a pair already attached."""
        now = datetime.now(timezone.utc)
        existing = self._repository.get(identity.id)
        token = StoredToken(
            user_id=identity.id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or (existing.refresh_token if existing else ""),
            expires_at=now + timedelta(seconds=grant.expires_in),
            scope=grant.scope,
            handle=identity.handle,
            oauth1a=oauth1a or (existing.oauth1a if existing else None),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._repository.save(token)
        return token

    def attach_oauth1a(self, user_id: str, credentials: OAuth1Credentials) -> StoredToken:
        token = self._repository.get(user_id)
        if token is None:
            raise NotAuthenticated(f"No X account connected for user {user_id}.")
        updated = token.model_copy(
            update={"oauth1a": credentials, "updated_at": datetime.now(timezone.utc)}
        )
        self._repository.save(updated)
        return updated

    def delete(self, user_id: str) -> bool:
        self._locks.pop(user_id, None)
        return self._repository.delete(user_id)

    def list_user_ids(self) -> list[str]:
        return self._repository.list_user_ids()

    @staticmethod
    def _apply_grant(token: StoredToken, grant: TokenGrant) -> StoredToken:
        refreshed_at = datetime.now(timezone.utc)
        return StoredToken(
            user_id=token.user_id,
            access_token=grant.access_token,
            # X rotates refresh tokens; keep the old one only if none came back.
            refresh_token=grant.refresh_token or token.refresh_token,
            expires_at=refreshed_at + timedelta(seconds=grant.expires_in),
            scope=grant.scope or token.scope,
            handle=token.handle,
            oauth1a=token.oauth1a,
            created_at=token.created_at,
            updated_at=refreshed_at,
        )


__all__ = ["XTokenService"]

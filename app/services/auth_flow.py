"""
OAuth 2.0 (PKCE) and OAuth 1.0a account-connection flows for X.

The OAuth2 login establishes the user's primary session. The OAuth 1.0a leg
is optional and only attaches a second token pair used for media uploads; it
requires the OAuth2 login to have completed for the same user.
"""

from __future__ import annotations

import hmac
import logging
from typing import List, Optional

from app.clients.x_oauth1 import XOAuth1Client
from app.clients.x_oauth2 import XOAuth2Client
from app.core.errors import AuthorizationError, PrerequisiteMissing
from app.models.oauth import OAuth1Credentials, StoredToken, UserIdentity
from app.services.token_store import PendingAuthorizationStore
from app.services.x_tokens import XTokenService

logger = logging.getLogger(__name__)


class XAuthService:
    """Drives both authorization handshakes and owns their pending state."""

    def __init__(
        self,
        oauth2_client: XOAuth2Client,
        oauth1_client: XOAuth1Client,
        token_service: XTokenService,
        pending: PendingAuthorizationStore,
    ) -> None:
        self._oauth2 = oauth2_client
        self._oauth1 = oauth1_client
        self._tokens = token_service
        self._pending = pending

    def initiate_oauth2_login(self) -> tuple[str, str]:
        """Return ``(authorization_url, state)``; the verifier stays server side."""
        request = self._oauth2.generate_authorization_request()
        self._pending.put(request.state, request.code_verifier)
        return request.authorization_url, request.state

    async def complete_oauth2_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        *,
        cookie_state: Optional[str] = None,
    ) -> StoredToken:
        if not code or not state:
            raise AuthorizationError("Missing code or state on the OAuth callback.")
        # Consume before validating so a state value can never be replayed.
        pending = self._pending.consume(state)
        if cookie_state is not None and not hmac.compare_digest(cookie_state, state):
            raise AuthorizationError("OAuth state does not match the browser session.")
        if pending is None:
            raise AuthorizationError("Unknown or expired OAuth state; please sign in again.")

        grant = await self._oauth2.exchange_code_for_token(code, pending.secret)
        identity = await self._oauth2.fetch_user_identity(grant.access_token)
        token = self._tokens.save_grant(identity, grant)
        logger.info("Connected X account %s (@%s)", identity.id, identity.handle)
        return token

    async def initiate_oauth1a_login(self, user_id: str) -> str:
        if self._tokens.get(user_id) is None:
            raise PrerequisiteMissing(
                "Connect your X account before authorizing media uploads."
            )
        oauth_token, oauth_token_secret = await self._oauth1.get_request_token()
        self._pending.put(oauth_token, oauth_token_secret, user_id=user_id)
        return self._oauth1.build_authorization_url(oauth_token)

    async def complete_oauth1a_callback(
        self, oauth_token: Optional[str], oauth_verifier: Optional[str]
    ) -> StoredToken:
        if not oauth_token or not oauth_verifier:
            raise AuthorizationError("Missing oauth_token or oauth_verifier on the callback.")
        pending = self._pending.consume(oauth_token)
        if pending is None:
            raise AuthorizationError("Unknown or expired request token; please retry.")

        grant = await self._oauth1.get_access_token(oauth_token, pending.secret, oauth_verifier)
        if pending.user_id and grant.user_id != pending.user_id:
            raise AuthorizationError(
                "The authorizing X account does not match the connected account."
            )
        if self._tokens.get(grant.user_id) is None:
            raise PrerequisiteMissing(
                "Connect your X account before authorizing media uploads."
            )

        token = self._tokens.attach_oauth1a(
            grant.user_id,
            OAuth1Credentials(
                access_token=grant.access_token,
                access_token_secret=grant.access_token_secret,
            ),
        )
        logger.info("Attached OAuth 1.0a credentials for X account %s", grant.user_id)
        return token

    async def get_identity(self, user_id: str) -> UserIdentity:
        token = await self._tokens.get_valid_token(user_id)
        return await self._oauth2.fetch_user_identity(token.access_token)

    def list_user_ids(self) -> List[str]:
        return self._tokens.list_user_ids()

    def disconnect(self, user_id: str) -> bool:
        removed = self._tokens.delete(user_id)
        if removed:
            logger.info("Disconnected X account %s", user_id)
        return removed


__all__ = ["XAuthService"]

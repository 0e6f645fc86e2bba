"""
X OAuth 2.0 (Authorization Code + PKCE) client.

Builds consent URLs, exchanges authorization codes, refreshes rotating tokens
and resolves the identity behind an access token.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Optional
from urllib.parse import urlencode

import httpx

from app.core.config import XSettings
from app.core.errors import TokenExchangeError, TokenRefreshError, UpstreamAPIError
from app.models.oauth import AuthorizationRequest, TokenGrant, UserIdentity
from app.utils.http import BearerAuth, error_detail


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """32 random bytes, base64url without padding (43 characters)."""
    return _b64url(secrets.token_bytes(32))


def code_challenge_for(verifier: str) -> str:
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    return secrets.token_hex(32)


class XOAuth2Client:
    """PKCE authorization flow against X's OAuth 2.0 server."""

    AUTH_BASE_URL = "https://twitter.com/i/oauth2/authorize"
    TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
    USERINFO_URL = "https://api.twitter.com/2/users/me"

    def __init__(
        self,
        settings: XSettings,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._x = settings
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def generate_authorization_request(self) -> AuthorizationRequest:
        """Create a fresh verifier/state pair and the consent URL bound to them."""
        code_verifier = generate_code_verifier()
        code_challenge = code_challenge_for(code_verifier)
        state = generate_state()

        params = {
            "response_type": "code",
            "client_id": self._x.client_id,
            "redirect_uri": str(self._x.redirect_uri),
            "scope": " ".join(self._x.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return AuthorizationRequest(
            authorization_url=f"{self.AUTH_BASE_URL}?{urlencode(params)}",
            code_verifier=code_verifier,
            code_challenge=code_challenge,
            state=state,
        )

    async def exchange_code_for_token(self, code: str, code_verifier: str) -> TokenGrant:
        payload = {
            "code": code,
            "grant_type": "authorization_code",
            "client_id": self._x.client_id,
            "redirect_uri": str(self._x.redirect_uri),
            "code_verifier": code_verifier,
        }
        try:
            response = await self._post_token(payload)
        except httpx.HTTPError as exc:
            raise TokenExchangeError("Token endpoint unreachable.", detail=str(exc)) from exc

        if response.status_code != httpx.codes.OK:
            raise TokenExchangeError(
                "Failed to exchange authorization code.", detail=response.text
            )
        grant = self._parse_grant(response, TokenExchangeError)
        if not grant.refresh_token:
            raise TokenExchangeError(
                "Token response did not include a refresh token; is offline.access granted?",
                detail=response.text,
            )
        return grant

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Refresh tokens rotate: the returned grant replaces both tokens."""
        payload = {
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
            "client_id": self._x.client_id,
        }
        try:
            response = await self._post_token(payload)
        except httpx.HTTPError as exc:
            raise TokenRefreshError("Token endpoint unreachable.", detail=str(exc)) from exc

        if response.status_code != httpx.codes.OK:
            raise TokenRefreshError(
                "Failed to refresh access token; re-authentication required.",
                detail=response.text,
            )
        return self._parse_grant(response, TokenRefreshError)

    async def fetch_user_identity(self, access_token: str) -> UserIdentity:
        try:
            async with self._client() as client:
                response = await client.get(
                    self.USERINFO_URL,
                    params={"user.fields": "profile_image_url"},
                    auth=BearerAuth(access_token),
                )
        except httpx.HTTPError as exc:
            raise UpstreamAPIError("Identity lookup failed.", detail=str(exc)) from exc

        if response.status_code != httpx.codes.OK:
            raise UpstreamAPIError(
                f"Identity lookup failed: {error_detail(response)}", detail=response.text
            )

        data = response.json().get("data") or {}
        if not data.get("id"):
            raise UpstreamAPIError("Identity response missing user id.", detail=response.text)
        return UserIdentity(
            id=str(data["id"]),
            display_name=data.get("name", ""),
            handle=data.get("username", ""),
            avatar_url=data.get("profile_image_url"),
        )

    async def _post_token(self, payload: dict) -> httpx.Response:
        async with self._client() as client:
            return await client.post(
                self.TOKEN_URL,
                data=payload,
                auth=httpx.BasicAuth(self._x.client_id, self._x.client_secret),
            )

    @staticmethod
    def _parse_grant(response: httpx.Response, error_cls: type) -> TokenGrant:
        try:
            token_payload = response.json()
        except ValueError as exc:
            raise error_cls("Token endpoint returned invalid JSON.", detail=response.text) from exc

        if not token_payload.get("access_token") or not token_payload.get("expires_in"):
            raise error_cls("Incomplete token payload returned from X.", detail=response.text)
        return TokenGrant(
            access_token=token_payload["access_token"],
            refresh_token=token_payload.get("refresh_token"),
            expires_in=int(token_payload["expires_in"]),
            scope=token_payload.get("scope"),
            token_type=token_payload.get("token_type", "bearer"),
        )


__all__ = [
    "XOAuth2Client",
    "code_challenge_for",
    "generate_code_verifier",
    "generate_state",
]

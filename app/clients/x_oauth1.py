"""
X OAuth 1.0a three-legged client.

Only used to obtain a second credential pair for the legacy media-upload
surface. Signatures are HMAC-SHA1 and computed by ``oauthlib``; each call
builds a new signer so every request carries its own nonce and timestamp.
"""

from __future__ import annotations

from typing import Dict, Generator, Mapping, Optional
from urllib.parse import parse_qs, urlencode

import httpx
from oauthlib.oauth1 import SIGNATURE_HMAC, Client as OAuth1Signer

from app.core.config import XSettings
from app.core.errors import RequestTokenError
from app.models.oauth import OAuth1AccessGrant, OAuth1Credentials

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class XOAuth1Client:
    """Request-token / authorize / access-token handshake plus generic signing."""

    REQUEST_TOKEN_URL = "https://api.twitter.com/oauth/request_token"
    AUTHORIZE_URL = "https://api.twitter.com/oauth/authorize"
    ACCESS_TOKEN_URL = "https://api.twitter.com/oauth/access_token"

    def __init__(
        self,
        settings: XSettings,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._consumer_key = settings.api_key
        self._consumer_secret = settings.api_secret
        self._callback_url = settings.oauth1_callback_url
        self._timeout = timeout
        self._transport = transport

    def sign_request(
        self,
        url: str,
        method: str,
        token_pair: Optional[OAuth1Credentials] = None,
        extra_params: Optional[Mapping[str, str]] = None,
        *,
        callback_uri: Optional[str] = None,
        verifier: Optional[str] = None,
    ) -> str:
        """
        Return the ``Authorization`` header value for one request.

        ``extra_params`` are form-body parameters and take part in the
        signature base string; query parameters are read from ``url``.
        """
        signer = OAuth1Signer(
            self._consumer_key,
            client_secret=self._consumer_secret,
            resource_owner_key=token_pair.access_token if token_pair else None,
            resource_owner_secret=token_pair.access_token_secret if token_pair else None,
            callback_uri=callback_uri,
            verifier=verifier,
            signature_method=SIGNATURE_HMAC,
        )
        body = urlencode(dict(extra_params)) if extra_params else None
        headers = {"Content-Type": _FORM_CONTENT_TYPE} if body else {}
        _, signed_headers, _ = signer.sign(url, http_method=method.upper(), body=body, headers=headers)
        return signed_headers["Authorization"]

    async def get_request_token(self) -> tuple[str, str]:
        """Step 1: obtain a temporary ``(oauth_token, oauth_token_secret)``."""
        authorization = self.sign_request(
            self.REQUEST_TOKEN_URL, "POST", callback_uri=self._callback_url
        )
        params = await self._post_signed(self.REQUEST_TOKEN_URL, authorization)

        if params.get("oauth_callback_confirmed", "true") != "true":
            raise RequestTokenError("X did not confirm the OAuth callback URL.")
        token, secret = params.get("oauth_token"), params.get("oauth_token_secret")
        if not token or not secret:
            raise RequestTokenError("Request token response is incomplete.")
        return token, secret

    def build_authorization_url(self, oauth_token: str) -> str:
        """Step 2: the consent page the user is redirected to."""
        return f"{self.AUTHORIZE_URL}?{urlencode({'oauth_token': oauth_token})}"

    async def get_access_token(
        self, oauth_token: str, oauth_token_secret: str, oauth_verifier: str
    ) -> OAuth1AccessGrant:
        """Step 3: trade the verified request token for a long-lived pair."""
        authorization = self.sign_request(
            self.ACCESS_TOKEN_URL,
            "POST",
            OAuth1Credentials(access_token=oauth_token, access_token_secret=oauth_token_secret),
            verifier=oauth_verifier,
        )
        params = await self._post_signed(self.ACCESS_TOKEN_URL, authorization)

        try:
            return OAuth1AccessGrant(
                access_token=params["oauth_token"],
                access_token_secret=params["oauth_token_secret"],
                user_id=params["user_id"],
                handle=params.get("screen_name", ""),
            )
        except KeyError as exc:
            raise RequestTokenError(f"Access token response missing {exc.args[0]}.") from exc

    async def _post_signed(self, url: str, authorization: str) -> Dict[str, str]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    headers={
                        "Authorization": authorization,
                        "Content-Type": _FORM_CONTENT_TYPE,
                    },
                )
        except httpx.HTTPError as exc:
            raise RequestTokenError("OAuth 1.0a endpoint unreachable.", detail=str(exc)) from exc

        if response.status_code != httpx.codes.OK:
            raise RequestTokenError(
                f"OAuth 1.0a call rejected (status {response.status_code}).",
                detail=response.text,
            )
        return {key: values[0] for key, values in parse_qs(response.text).items()}


class OAuth1Auth(httpx.Auth):
    """Sign every outgoing request with a user's OAuth 1.0a token pair."""

    requires_request_body = True

    def __init__(self, oauth_client: XOAuth1Client, token_pair: OAuth1Credentials) -> None:
        self._oauth = oauth_client
        self._token_pair = token_pair

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        extra_params = None
        if request.headers.get("Content-Type", "").startswith(_FORM_CONTENT_TYPE):
            extra_params = {
                key: values[0] for key, values in parse_qs(request.content.decode()).items()
            }
        request.headers["Authorization"] = self._oauth.sign_request(
            str(request.url), request.method, self._token_pair, extra_params
        )
        yield request


__all__ = ["OAuth1Auth", "XOAuth1Client"]

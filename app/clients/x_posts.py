"""X v2 post (tweet) endpoints."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import httpx

from app.core.errors import PostCreationError, UpstreamAPIError
from app.models.posts import Post
from app.utils.http import error_detail

logger = logging.getLogger(__name__)


class XPostsClient:
    """Create posts and read a user's recent timeline."""

    POSTS_URL = "https://api.twitter.com/2/tweets"
    USER_POSTS_URL = "https://api.twitter.com/2/users/{user_id}/tweets"

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def create_post(
        self, auth: httpx.Auth, *, text: str, media_ids: Sequence[str] = ()
    ) -> Post:
        body: dict = {"text": text}
        if media_ids:
            body["media"] = {"media_ids": list(media_ids)}

        logger.info("Creating post (%s chars, %s media)", len(text), len(media_ids))
        try:
            async with self._client() as client:
                response = await client.post(self.POSTS_URL, json=body, auth=auth)
        except httpx.HTTPError as exc:
            raise PostCreationError("Failed to reach the post endpoint.", detail=str(exc)) from exc

        if not response.is_success:
            raise PostCreationError(
                f"X rejected the post: {error_detail(response)}", detail=response.text
            )

        data = (response.json() or {}).get("data") or {}
        if not data.get("id"):
            raise PostCreationError("Post response missing id.", detail=response.text)
        post = Post.from_api(data, media_ids=media_ids)
        logger.info("Post created: %s", post.id)
        return post

    async def list_recent_posts(
        self, auth: httpx.Auth, user_id: str, *, max_results: int = 10
    ) -> List[Post]:
        # The endpoint accepts 5..100; smaller requests are trimmed locally.
        page_size = min(max(max_results, 5), 100)
        try:
            async with self._client() as client:
                response = await client.get(
                    self.USER_POSTS_URL.format(user_id=user_id),
                    params={"max_results": page_size, "tweet.fields": "created_at"},
                    auth=auth,
                )
        except httpx.HTTPError as exc:
            raise UpstreamAPIError("Failed to fetch posts.", detail=str(exc)) from exc

        if not response.is_success:
            raise UpstreamAPIError(
                f"Failed to fetch posts: {error_detail(response)}", detail=response.text
            )
        items = response.json().get("data") or []
        return [Post.from_api(item) for item in items[:max_results]]


__all__ = ["XPostsClient"]

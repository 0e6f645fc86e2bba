"""
Publish posts on behalf of a connected user.

Each platform plugs in as a ``PlatformPublisher``; ``PublishingService`` fans a
submission out to the selected platforms and reports one result per platform,
so a failure on one never stops the others. X is the only platform wired in.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Protocol, Sequence
from urllib.parse import urlparse

import httpx

from app.clients.x_media import MEDIA_TYPES, XMediaUploader, media_category_for
from app.clients.x_oauth1 import OAuth1Auth, XOAuth1Client
from app.clients.x_posts import XPostsClient
from app.core.errors import PostValidationError, PublishingError, UnsupportedPlatform
from app.models.oauth import StoredToken
from app.models.posts import PlatformResult, Post
from app.services.x_tokens import XTokenService
from app.utils.http import BearerAuth

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_POST = 4


def _selection_category(media_url: str) -> str:
    # Only a known video, GIF or subtitle extension counts as such here; the
    # upload itself still falls back to video/mp4 for unknown extensions.
    suffix = PurePosixPath(urlparse(media_url).path).suffix.lower()
    if suffix not in MEDIA_TYPES:
        return "tweet_image"
    return media_category_for(MEDIA_TYPES[suffix])


def validate_media_selection(media_urls: Sequence[str]) -> None:
    """A post carries up to four images, or a single video or GIF."""
    categories = [_selection_category(url) for url in media_urls]
    if "subtitles" in categories:
        raise PostValidationError("Subtitle files cannot be attached to a post directly.")

    singles = [c for c in categories if c in ("amplify_video", "tweet_gif")]
    if singles and len(categories) > 1:
        raise PostValidationError("A video or GIF must be the only media item on a post.")
    if len(categories) > MAX_IMAGES_PER_POST:
        raise PostValidationError(
            f"A post can carry at most {MAX_IMAGES_PER_POST} images."
        )


class XPublisher:
    """Upload each media URL to X, then create the post with the resulting ids."""

    platform = "x"

    def __init__(
        self,
        token_service: XTokenService,
        uploader: XMediaUploader,
        posts_client: XPostsClient,
        oauth1_client: XOAuth1Client,
        *,
        media_upload_auth: str = "oauth2",
    ) -> None:
        self._tokens = token_service
        self._uploader = uploader
        self._posts = posts_client
        self._oauth1 = oauth1_client
        self._media_upload_auth = media_upload_auth

    def _upload_auth(self, token: StoredToken) -> httpx.Auth:
        if self._media_upload_auth == "oauth1a" and token.oauth1a is not None:
            return OAuth1Auth(self._oauth1, token.oauth1a)
        return BearerAuth(token.access_token)

    async def create_post(self, user_id: str, text: str, media_urls: Sequence[str] = ()) -> Post:
        if not text.strip() and not media_urls:
            raise PostValidationError("A post needs text or at least one media item.")
        validate_media_selection(media_urls)

        token = await self._tokens.get_valid_token(user_id)
        upload_auth = self._upload_auth(token)

        # Sequential on purpose: any failure aborts before the post exists.
        media_ids: List[str] = []
        for media_url in media_urls:
            media_ids.append(await self._uploader.upload_from_url(upload_auth, media_url))

        post = await self._posts.create_post(
            BearerAuth(token.access_token), text=text, media_ids=media_ids
        )
        logger.info("Published post %s for user %s", post.id, user_id)
        return post

    async def list_posts(self, user_id: str, max_results: int = 10) -> List[Post]:
        token = await self._tokens.get_valid_token(user_id)
        return await self._posts.list_recent_posts(
            BearerAuth(token.access_token), user_id, max_results=max_results
        )


class PlatformPublisher(Protocol):
    platform: str

    async def create_post(
        self, user_id: str, text: str, media_urls: Sequence[str] = ()
    ) -> Post: ...

    async def list_posts(self, user_id: str, max_results: int = 10) -> List[Post]: ...


class PlatformRegistry:
    """Publishers keyed by platform name."""

    def __init__(self, publishers: Iterable[PlatformPublisher] = ()) -> None:
        self._publishers: Dict[str, PlatformPublisher] = {}
        for publisher in publishers:
            self.register(publisher)

    def register(self, publisher: PlatformPublisher) -> None:
        self._publishers[publisher.platform] = publisher

    def get(self, platform: str) -> PlatformPublisher:
        try:
            return self._publishers[platform]
        except KeyError:
            raise UnsupportedPlatform(
                f"Platform '{platform}' is not supported; choose from {self.supported()}."
            ) from None

    def supported(self) -> List[str]:
        return sorted(self._publishers)


class PublishingService:
    """Fan one submission out to every selected platform."""

    def __init__(self, registry: PlatformRegistry) -> None:
        self._registry = registry

    async def create_post(
        self,
        user_id: str,
        text: str,
        media_urls: Sequence[str] = (),
        *,
        platforms: Sequence[str] = ("x",),
    ) -> List[PlatformResult]:
        selected = list(dict.fromkeys(platforms))
        if not selected:
            raise PostValidationError("Select at least one platform to publish to.")
        # Unknown names fail the whole request before anything is published.
        publishers = [self._registry.get(name) for name in selected]

        results = await asyncio.gather(
            *(self._publish_one(publisher, user_id, text, media_urls) for publisher in publishers)
        )
        return list(results)

    async def _publish_one(
        self,
        publisher: PlatformPublisher,
        user_id: str,
        text: str,
        media_urls: Sequence[str],
    ) -> PlatformResult:
        try:
            post = await publisher.create_post(user_id, text, media_urls)
        except PublishingError as exc:
            logger.warning(
                "Publishing to %s failed for user %s: %s", publisher.platform, user_id, exc.message
            )
            return PlatformResult(
                platform=publisher.platform,
                status="failed",
                error=exc.to_dict(),
                http_status=int(exc.status_code),
            )
        return PlatformResult(platform=publisher.platform, status="published", post=post)

    async def list_posts(
        self, user_id: str, max_results: int = 10, *, platform: str = "x"
    ) -> List[Post]:
        return await self._registry.get(platform).list_posts(user_id, max_results=max_results)


__all__ = [
    "MAX_IMAGES_PER_POST",
    "PlatformPublisher",
    "PlatformRegistry",
    "PublishingService",
    "XPublisher",
    "validate_media_selection",
]

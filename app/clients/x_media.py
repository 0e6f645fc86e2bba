"""
Chunked media upload engine for X.

``upload_from_url`` downloads a remote file to a scratch location and pushes it
through INIT -> APPEND x N -> FINALIZE, then polls STATUS until server-side
processing reaches a terminal state. The scratch file is removed on every exit
path. Callers choose the credential by passing an ``httpx.Auth``
(``BearerAuth`` for OAuth2, ``OAuth1Auth`` for the legacy token pair).
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import tempfile
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

import httpx

from app.core.errors import (
    MediaDownloadError,
    MediaProcessingFailed,
    MediaProcessingTimeout,
    MediaUploadError,
)
from app.models.media import (
    FinalizedMedia,
    MediaDescriptor,
    ProcessingInfo,
    ProcessingState,
    UploadSession,
)
from app.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

# Platform ceiling for a single APPEND segment.
CHUNK_SIZE = 512 * 1024

DEFAULT_MEDIA_TYPE = "video/mp4"
DEFAULT_CHECK_AFTER_SECS = 5
MAX_REDIRECTS = 5

MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".ts": "video/mp2t",
    ".srt": "text/srt",
    ".vtt": "text/vtt",
}


def media_type_for(path: str | os.PathLike[str]) -> str:
    """MIME type from the file extension, falling back to ``video/mp4``."""
    return MEDIA_TYPES.get(Path(path).suffix.lower(), DEFAULT_MEDIA_TYPE)


def media_category_for(media_type: str) -> str:
    if media_type.startswith("video/"):
        return "amplify_video"
    if media_type.startswith("text/"):
        return "subtitles"
    if media_type == "image/gif":
        return "tweet_gif"
    return "tweet_image"


def describe_file(path: Path) -> MediaDescriptor:
    media_type = media_type_for(path)
    return MediaDescriptor(
        media_type=media_type,
        media_category=media_category_for(media_type),
        total_bytes=path.stat().st_size,
    )


class XMediaUploader:
    """Download-then-upload pipeline for X's v2 media endpoints."""

    UPLOAD_URL = "https://api.x.com/2/media/upload"

    def __init__(
        self,
        *,
        processing_timeout: float = 300.0,
        request_timeout: float = 60.0,
        retry_config: Optional[RetryConfig] = None,
        scratch_dir: Optional[str] = None,
        url_validator: Optional[Callable[[str], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._processing_timeout = processing_timeout
        self._request_timeout = request_timeout
        self._retry = retry_config or RetryConfig(sleep=sleep)
        self._scratch_dir = scratch_dir
        self._validate_url = url_validator
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._request_timeout, transport=self._transport)

    async def upload_from_url(
        self,
        auth: httpx.Auth,
        media_url: str,
        *,
        processing_timeout: Optional[float] = None,
    ) -> str:
        """Upload the media behind ``media_url`` and return the platform media id."""
        await self._check_url(media_url)

        scratch = self._scratch_path(media_url)
        try:
            async with self._client() as client:
                await self.download(client, media_url, scratch)
                descriptor = describe_file(scratch)
                session = await self.initialize(client, auth, descriptor)
                deadline = self._deadline_for(session)
                await self.append_chunks(client, auth, session, scratch, deadline=deadline)
                finalized = await self.finalize(client, auth, session, deadline=deadline)
                if finalized.processing_info is not None:
                    await self.wait_for_processing(
                        client,
                        auth,
                        session.media_id,
                        finalized.processing_info,
                        timeout=processing_timeout or self._processing_timeout,
                    )
        finally:
            scratch.unlink(missing_ok=True)

        logger.info("Media uploaded: media_id=%s", session.media_id)
        return session.media_id

    def _scratch_path(self, media_url: str) -> Path:
        suffix = Path(urlparse(media_url).path).suffix.lower()
        if suffix not in MEDIA_TYPES:
            suffix = ""
        fd, name = tempfile.mkstemp(prefix="x-media-", suffix=suffix, dir=self._scratch_dir)
        os.close(fd)
        return Path(name)

    async def _check_url(self, url: str) -> None:
        # The validator resolves DNS synchronously.
        if self._validate_url is not None:
            await asyncio.to_thread(self._validate_url, url)

    async def download(self, client: httpx.AsyncClient, media_url: str, destination: Path) -> int:
        """
        Stream ``media_url`` into ``destination`` and return the byte count.

        Redirects are followed by hand so every hop goes through the URL
        validator before it is requested.
        """
        url = media_url
        for _ in range(MAX_REDIRECTS + 1):
            location = await self._fetch(client, url, destination)
            if location is None:
                break
            await self._check_url(location)
            url = location
        else:
            raise MediaDownloadError(f"Media URL redirected more than {MAX_REDIRECTS} times.")

        written = destination.stat().st_size
        if written == 0:
            raise MediaDownloadError("Downloaded media is empty.")
        return written

    async def _fetch(
        self, client: httpx.AsyncClient, url: str, destination: Path
    ) -> Optional[str]:
        """Write the body to ``destination``, or return the redirect target."""
        logger.info("Downloading media from %s", url)
        try:
            async with client.stream("GET", url, follow_redirects=False) as response:
                if response.is_redirect:
                    return str(response.url.join(response.headers["location"]))
                if not response.is_success:
                    await response.aread()
                    raise MediaDownloadError(
                        f"Media download failed with status {response.status_code}.",
                        detail=response.text,
                    )
                with destination.open("wb") as handle:
                    async for block in response.aiter_bytes():
                        handle.write(block)
        except httpx.HTTPError as exc:
            raise MediaDownloadError("Media download failed.", detail=str(exc)) from exc
        return None

    async def initialize(
        self, client: httpx.AsyncClient, auth: httpx.Auth, descriptor: MediaDescriptor
    ) -> UploadSession:
        logger.info(
            "Initializing upload (%s bytes, %s, %s)",
            descriptor.total_bytes,
            descriptor.media_type,
            descriptor.media_category,
        )
        response = await self._call(
            "init",
            client.post(f"{self.UPLOAD_URL}/initialize", json=descriptor.model_dump(), auth=auth),
        )
        data = self._data(response, "init")
        if not data.get("id"):
            raise MediaUploadError("init", "response missing media id", detail=response.text)
        session = UploadSession(
            media_id=str(data["id"]),
            media_key=data.get("media_key"),
            expires_after_secs=data.get("expires_after_secs"),
        )
        logger.info("Upload initialized: media_id=%s", session.media_id)
        return session

    async def append_chunks(
        self,
        client: httpx.AsyncClient,
        auth: httpx.Auth,
        session: UploadSession,
        path: Path,
        *,
        deadline: Optional[float] = None,
    ) -> int:
        """Send the file in order, one segment per call. Returns the segment count."""
        total_bytes = path.stat().st_size
        total_chunks = math.ceil(total_bytes / CHUNK_SIZE)
        url = f"{self.UPLOAD_URL}/{session.media_id}/append"
        sent = 0

        with path.open("rb") as handle:
            for segment_index in range(total_chunks):
                self._check_deadline(deadline, "append")
                chunk = handle.read(CHUNK_SIZE)
                try:
                    response = await request_with_retry(
                        client.post,
                        url,
                        data={"segment_index": str(segment_index)},
                        files={"media": ("blob", chunk, "application/octet-stream")},
                        auth=auth,
                        retry_config=self._retry,
                    )
                except httpx.HTTPError as exc:
                    raise MediaUploadError(
                        "append", f"chunk {segment_index} failed", detail=str(exc)
                    ) from exc
                if not response.is_success:
                    raise MediaUploadError(
                        "append",
                        f"chunk {segment_index} rejected with status {response.status_code}",
                        detail=response.text,
                        upstream_status=response.status_code,
                    )
                sent += len(chunk)
                logger.info(
                    "Uploaded chunk %s/%s (%.0f%%)",
                    segment_index + 1,
                    total_chunks,
                    sent / total_bytes * 100,
                )
        return total_chunks

    async def finalize(
        self,
        client: httpx.AsyncClient,
        auth: httpx.Auth,
        session: UploadSession,
        *,
        deadline: Optional[float] = None,
    ) -> FinalizedMedia:
        self._check_deadline(deadline, "finalize")
        response = await self._call(
            "finalize",
            client.post(f"{self.UPLOAD_URL}/{session.media_id}/finalize", auth=auth),
        )
        data = self._data(response, "finalize")
        finalized = FinalizedMedia(
            media_id=str(data.get("id") or session.media_id),
            media_key=data.get("media_key"),
            size=data.get("size"),
            processing_info=data.get("processing_info"),
        )
        logger.info("Upload finalized: media_id=%s size=%s", finalized.media_id, finalized.size)
        return finalized

    async def check_status(
        self, client: httpx.AsyncClient, auth: httpx.Auth, media_id: str
    ) -> Optional[ProcessingInfo]:
        response = await self._call(
            "status",
            client.get(
                self.UPLOAD_URL,
                params={"command": "STATUS", "media_id": media_id},
                auth=auth,
            ),
        )
        info = self._data(response, "status").get("processing_info")
        return ProcessingInfo.model_validate(info) if info else None

    async def wait_for_processing(
        self,
        client: httpx.AsyncClient,
        auth: httpx.Auth,
        media_id: str,
        initial: ProcessingInfo,
        *,
        timeout: float,
    ) -> None:
        """Poll STATUS at the pace the server dictates until a terminal state."""
        if initial.state is ProcessingState.SUCCEEDED:
            return
        if initial.state is ProcessingState.FAILED:
            raise MediaProcessingFailed(
                f"Processing failed for media {media_id}.", detail=_error_text(initial)
            )

        started = self._clock()
        while True:
            info = await self.check_status(client, auth, media_id)
            if info is None:
                logger.info("No processing required for media %s", media_id)
                return
            if info.state is ProcessingState.SUCCEEDED:
                logger.info("Media processing completed for %s", media_id)
                return
            if info.state is ProcessingState.FAILED:
                raise MediaProcessingFailed(
                    f"Processing failed for media {media_id}.", detail=_error_text(info)
                )

            remaining = timeout - (self._clock() - started)
            if remaining <= 0:
                raise MediaProcessingTimeout(
                    f"Media {media_id} still {info.state.value} after {timeout:g} seconds."
                )

            # Never sleep past the deadline; the last STATUS call lands on it.
            wait = min(info.check_after_secs or DEFAULT_CHECK_AFTER_SECS, remaining)
            logger.info(
                "Processing %s (%s%%), checking again in %ss",
                info.state.value,
                info.progress_percent or 0,
                wait,
            )
            await self._sleep(wait)

    def _deadline_for(self, session: UploadSession) -> Optional[float]:
        if not session.expires_after_secs:
            return None
        return self._clock() + session.expires_after_secs

    def _check_deadline(self, deadline: Optional[float], phase: str) -> None:
        if deadline is not None and self._clock() >= deadline:
            raise MediaUploadError(
                phase, "upload session expired; restart from initialize"
            )

    @staticmethod
    async def _call(phase: str, request: Awaitable[httpx.Response]) -> httpx.Response:
        try:
            response = await request
        except httpx.HTTPError as exc:
            raise MediaUploadError(phase, "request failed", detail=str(exc)) from exc
        if not response.is_success:
            raise MediaUploadError(
                phase,
                f"rejected with status {response.status_code}",
                detail=response.text,
                upstream_status=response.status_code,
            )
        return response

    @staticmethod
    def _data(response: httpx.Response, phase: str) -> dict:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MediaUploadError(phase, "invalid JSON response", detail=response.text) from exc
        if not isinstance(payload, dict):
            raise MediaUploadError(phase, "unexpected response shape", detail=response.text)
        return payload.get("data", payload)


def _error_text(info: ProcessingInfo) -> Optional[str]:
    if not info.error:
        return None
    return str(info.error.get("message") or info.error)


__all__ = [
    "CHUNK_SIZE",
    "MEDIA_TYPES",
    "XMediaUploader",
    "describe_file",
    "media_category_for",
    "media_type_for",
]

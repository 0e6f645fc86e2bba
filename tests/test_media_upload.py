try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import json
import math
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from app.clients.x_media import CHUNK_SIZE, XMediaUploader
from app.core.errors import (
    MediaDownloadError,
    MediaProcessingFailed,
    MediaProcessingTimeout,
    MediaUploadError,
)
from app.utils.http import BearerAuth, RetryConfig
from app.utils.url_validation import MediaURLValidator

UPLOAD_URL = XMediaUploader.UPLOAD_URL
VIDEO_URL = "https://media.example.com/video.mp4"
TWO_MIB = 2 * 1024 * 1024


def _payload(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


def _multipart_fields(request: httpx.Request) -> Dict[str, bytes]:
    boundary = request.headers["Content-Type"].split("boundary=")[1].encode()
    fields = {}
    for part in request.content.split(b"--" + boundary):
        if not part.startswith(b"\r\n"):
            continue
        headers, _, value = part[2:].partition(b"\r\n\r\n")
        name = re.search(rb'name="([^"]+)"', headers).group(1).decode()
        fields[name] = value[:-2]
    return fields


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeMediaAPI:
    """In-memory stand-in for the media host and X's upload endpoints."""

    def __init__(
        self,
        media: bytes,
        *,
        statuses: Optional[List[dict]] = None,
        finalize_processing: Optional[dict] = None,
        append_responses: Optional[List[object]] = None,
        expires_after_secs: int = 86400,
    ) -> None:
        self.media = media
        self.statuses = list(statuses or [])
        self.finalize_processing = finalize_processing
        self.append_responses = list(append_responses or [])
        self.expires_after_secs = expires_after_secs
        self.calls: List[str] = []
        self.init_body: Optional[dict] = None
        self.segments: List[tuple[int, bytes]] = []
        self.on_append = None
        self.redirects: Dict[str, str] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in self.redirects:
            self.calls.append("redirect")
            return httpx.Response(302, headers={"Location": self.redirects[url]})
        if request.url.host == "169.254.169.254":
            self.calls.append("internal")
            return httpx.Response(200, content=b"secret-role-credentials")
        if url.startswith("https://media.example.com/"):
            self.calls.append("download")
            if url.endswith("missing.mp4"):
                return httpx.Response(404, text="not found")
            return httpx.Response(200, content=self.media)

        if url == f"{UPLOAD_URL}/initialize":
            self.calls.append("init")
            self.init_body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "id": "m-1",
                        "media_key": "7_m-1",
                        "expires_after_secs": self.expires_after_secs,
                    }
                },
            )

        if url == f"{UPLOAD_URL}/m-1/append":
            self.calls.append("append")
            if self.on_append is not None:
                self.on_append()
            if self.append_responses:
                queued = self.append_responses.pop(0)
                if isinstance(queued, Exception):
                    raise queued
                if queued != 200:
                    return httpx.Response(queued, json={"title": "Service Unavailable"})
            fields = _multipart_fields(request)
            self.segments.append((int(fields["segment_index"]), fields["media"]))
            return httpx.Response(204)

        if url == f"{UPLOAD_URL}/m-1/finalize":
            self.calls.append("finalize")
            data = {"id": "m-1", "media_key": "7_m-1", "size": len(self.media)}
            if self.finalize_processing is not None:
                data["processing_info"] = self.finalize_processing
            return httpx.Response(200, json={"data": data})

        if request.url.params.get("command") == "STATUS":
            self.calls.append("status")
            assert request.url.params["media_id"] == "m-1"
            info = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return httpx.Response(200, json={"data": {"id": "m-1", "processing_info": info}})

        raise AssertionError(f"unexpected request {request.method} {url}")


def _uploader(api: FakeMediaAPI, clock: FakeClock, tmp_path: Path, **kwargs) -> XMediaUploader:
    kwargs.setdefault("retry_config", RetryConfig(attempts=3, backoff_seconds=0.5, sleep=clock.sleep))
    return XMediaUploader(
        transport=httpx.MockTransport(api.handler),
        scratch_dir=str(tmp_path),
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )


@pytest.mark.anyio
async def test_two_mib_video_upload_end_to_end(tmp_path: Path) -> None:
    media = _payload(TWO_MIB)
    api = FakeMediaAPI(
        media,
        finalize_processing={"state": "pending", "check_after_secs": 1},
        statuses=[
            {"state": "in_progress", "check_after_secs": 2, "progress_percent": 30},
            {"state": "in_progress", "check_after_secs": 1, "progress_percent": 80},
            {"state": "succeeded", "progress_percent": 100},
        ],
    )
    clock = FakeClock()

    media_id = await _uploader(api, clock, tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert media_id == "m-1"
    assert api.calls == [
        "download", "init", "append", "append", "append", "append",
        "finalize", "status", "status", "status",
    ]
    assert api.init_body == {
        "media_type": "video/mp4",
        "media_category": "amplify_video",
        "total_bytes": TWO_MIB,
    }
    assert [index for index, _ in api.segments] == [0, 1, 2, 3]
    assert len(api.segments[-1][1]) == TWO_MIB - 3 * 512 * 1024
    assert b"".join(chunk for _, chunk in api.segments) == media
    assert clock.sleeps == [2, 1]
    assert list(tmp_path.iterdir()) == []


@pytest.mark.anyio
@pytest.mark.parametrize("size", [1, CHUNK_SIZE - 1, CHUNK_SIZE, CHUNK_SIZE + 1, 3 * CHUNK_SIZE + 17])
async def test_append_count_matches_file_size(tmp_path: Path, size: int) -> None:
    api = FakeMediaAPI(_payload(size))
    clock = FakeClock()

    await _uploader(api, clock, tmp_path).upload_from_url(
        BearerAuth("at"), "https://media.example.com/photo.png"
    )

    assert len(api.segments) == math.ceil(size / CHUNK_SIZE)
    assert [index for index, _ in api.segments] == list(range(len(api.segments)))
    assert sum(len(chunk) for _, chunk in api.segments) == size
    assert api.init_body["media_category"] == "tweet_image"
    assert "status" not in api.calls


@pytest.mark.anyio
async def test_poll_times_out_only_after_bound(tmp_path: Path) -> None:
    api = FakeMediaAPI(
        _payload(1024),
        finalize_processing={"state": "pending", "check_after_secs": 10},
        statuses=[{"state": "in_progress", "check_after_secs": 10}],
    )
    clock = FakeClock()

    with pytest.raises(MediaProcessingTimeout):
        await _uploader(api, clock, tmp_path, processing_timeout=30).upload_from_url(
            BearerAuth("at"), VIDEO_URL
        )

    # Polls at t=0,10,20 wait again; the poll at t=30 is the last one.
    assert api.calls.count("status") == 4
    assert clock.sleeps == [10, 10, 10]
    assert clock.now == 30
    assert list(tmp_path.iterdir()) == []


@pytest.mark.anyio
async def test_long_server_wait_is_capped_at_timeout(tmp_path: Path) -> None:
    api = FakeMediaAPI(
        _payload(1024),
        finalize_processing={"state": "pending", "check_after_secs": 1},
        statuses=[{"state": "in_progress", "check_after_secs": 3600}],
    )
    clock = FakeClock()

    with pytest.raises(MediaProcessingTimeout):
        await _uploader(api, clock, tmp_path, processing_timeout=30).upload_from_url(
            BearerAuth("at"), VIDEO_URL
        )

    assert clock.sleeps == [30]
    assert clock.now <= 30
    assert api.calls.count("status") == 2


@pytest.mark.anyio
async def test_processing_that_finishes_at_the_deadline_succeeds(tmp_path: Path) -> None:
    api = FakeMediaAPI(
        _payload(1024),
        finalize_processing={"state": "pending", "check_after_secs": 1},
        statuses=[
            {"state": "in_progress", "check_after_secs": 600},
            {"state": "succeeded"},
        ],
    )
    clock = FakeClock()

    media_id = await _uploader(api, clock, tmp_path, processing_timeout=45).upload_from_url(
        BearerAuth("at"), VIDEO_URL
    )

    assert media_id == "m-1"
    assert clock.sleeps == [45]


@pytest.mark.anyio
async def test_failed_processing_raises(tmp_path: Path) -> None:
    api = FakeMediaAPI(
        _payload(1024),
        finalize_processing={"state": "in_progress", "check_after_secs": 1},
        statuses=[{"state": "failed", "error": {"message": "InvalidMedia"}}],
    )

    with pytest.raises(MediaProcessingFailed) as exc_info:
        await _uploader(api, FakeClock(), tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert exc_info.value.detail == "InvalidMedia"


@pytest.mark.anyio
async def test_failed_state_at_finalize_skips_polling(tmp_path: Path) -> None:
    api = FakeMediaAPI(_payload(1024), finalize_processing={"state": "failed"})

    with pytest.raises(MediaProcessingFailed):
        await _uploader(api, FakeClock(), tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert "status" not in api.calls


@pytest.mark.anyio
async def test_append_failure_cleans_up_and_names_phase(tmp_path: Path) -> None:
    api = FakeMediaAPI(_payload(TWO_MIB), append_responses=[200, 400])

    with pytest.raises(MediaUploadError) as exc_info:
        await _uploader(api, FakeClock(), tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert exc_info.value.phase == "append"
    assert exc_info.value.upstream_status == 400
    assert api.calls.count("append") == 2
    assert "finalize" not in api.calls
    assert list(tmp_path.iterdir()) == []


@pytest.mark.anyio
async def test_transient_chunk_failures_are_retried(tmp_path: Path) -> None:
    request = httpx.Request("POST", f"{UPLOAD_URL}/m-1/append")
    api = FakeMediaAPI(
        _payload(CHUNK_SIZE + 10),
        append_responses=[503, httpx.ConnectError("reset", request=request)],
    )
    clock = FakeClock()

    media_id = await _uploader(api, clock, tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert media_id == "m-1"
    assert api.calls.count("append") == 4
    assert [index for index, _ in api.segments] == [0, 1]
    assert clock.sleeps == [0.5, 1.0]


@pytest.mark.anyio
async def test_chunk_retries_are_bounded(tmp_path: Path) -> None:
    api = FakeMediaAPI(_payload(1024), append_responses=[503, 503, 503])

    with pytest.raises(MediaUploadError) as exc_info:
        await _uploader(api, FakeClock(), tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert exc_info.value.phase == "append"
    assert exc_info.value.upstream_status == 503
    assert api.calls.count("append") == 3


@pytest.mark.anyio
async def test_expired_session_stops_before_next_chunk(tmp_path: Path) -> None:
    api = FakeMediaAPI(_payload(TWO_MIB), expires_after_secs=5)
    clock = FakeClock()

    def advance() -> None:
        clock.now += 5

    api.on_append = advance

    with pytest.raises(MediaUploadError) as exc_info:
        await _uploader(api, clock, tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert exc_info.value.phase == "append"
    assert "expired" in exc_info.value.message
    assert api.calls.count("append") == 1
    assert list(tmp_path.iterdir()) == []


@pytest.mark.anyio
async def test_download_failure_never_initializes(tmp_path: Path) -> None:
    api = FakeMediaAPI(b"")

    with pytest.raises(MediaDownloadError):
        await _uploader(api, FakeClock(), tmp_path).upload_from_url(
            BearerAuth("at"), "https://media.example.com/missing.mp4"
        )

    assert api.calls == ["download"]
    assert list(tmp_path.iterdir()) == []


@pytest.mark.anyio
async def test_empty_download_is_rejected(tmp_path: Path) -> None:
    api = FakeMediaAPI(b"")

    with pytest.raises(MediaDownloadError):
        await _uploader(api, FakeClock(), tmp_path).upload_from_url(BearerAuth("at"), VIDEO_URL)

    assert "init" not in api.calls


@pytest.mark.anyio
async def test_url_validator_runs_before_download(tmp_path: Path) -> None:
    api = FakeMediaAPI(_payload(10))

    def reject(url: str) -> None:
        raise MediaDownloadError(f"blocked {url}")

    with pytest.raises(MediaDownloadError):
        await _uploader(api, FakeClock(), tmp_path, url_validator=reject).upload_from_url(
            BearerAuth("at"), VIDEO_URL
        )

    assert api.calls == []


@pytest.mark.anyio
async def test_upload_calls_carry_bearer_credential(tmp_path: Path) -> None:
    seen = []
    api = FakeMediaAPI(_payload(10))

    def handler(request: httpx.Request) -> httpx.Response:
        if "api.x.com" in request.url.host:
            seen.append(request.headers.get("Authorization"))
        else:
            assert "Authorization" not in request.headers
        return api.handler(request)

    uploader = XMediaUploader(transport=httpx.MockTransport(handler), scratch_dir=str(tmp_path))
    await uploader.upload_from_url(BearerAuth("secret-at"), VIDEO_URL)

    assert seen and set(seen) == {"Bearer secret-at"}


def _public_validator() -> MediaURLValidator:
    return MediaURLValidator(resolver=lambda host: ["93.184.216.34"])


@pytest.mark.anyio
async def test_redirect_to_internal_address_is_not_followed(tmp_path: Path) -> None:
    api = FakeMediaAPI(_payload(10))
    api.redirects["https://media.example.com/a.png"] = "http://169.254.169.254/latest/meta-data/a.png"

    with pytest.raises(MediaDownloadError):
        await _uploader(
            api, FakeClock(), tmp_path, url_validator=_public_validator()
        ).upload_from_url(BearerAuth("at"), "https://media.example.com/a.png")

    assert api.calls == ["redirect"]
    assert list(tmp_path.iterdir()) == []


@pytest.mark.anyio
async def test_public_redirect_is_validated_and_followed(tmp_path: Path) -> None:
    checked: List[str] = []
    api = FakeMediaAPI(_payload(10))
    api.redirects["https://media.example.com/old.png"] = "/new.png"

    def record(url: str) -> None:
        checked.append(url)

    media_id = await _uploader(api, FakeClock(), tmp_path, url_validator=record).upload_from_url(
        BearerAuth("at"), "https://media.example.com/old.png"
    )

    assert media_id == "m-1"
    assert checked == ["https://media.example.com/old.png", "https://media.example.com/new.png"]
    assert api.calls[:2] == ["redirect", "download"]


@pytest.mark.anyio
async def test_redirect_chain_is_bounded(tmp_path: Path) -> None:
    api = FakeMediaAPI(_payload(10))
    api.redirects["https://media.example.com/loop-a.png"] = "https://media.example.com/loop-b.png"
    api.redirects["https://media.example.com/loop-b.png"] = "https://media.example.com/loop-a.png"

    with pytest.raises(MediaDownloadError) as exc_info:
        await _uploader(api, FakeClock(), tmp_path).upload_from_url(
            BearerAuth("at"), "https://media.example.com/loop-a.png"
        )

    assert "redirected" in exc_info.value.message
    assert "init" not in api.calls


@pytest.mark.anyio
async def test_url_validation_runs_off_the_event_loop_thread(tmp_path: Path) -> None:
    loop_thread = threading.get_ident()
    threads: List[int] = []
    api = FakeMediaAPI(_payload(10))

    def record(url: str) -> None:
        threads.append(threading.get_ident())

    await _uploader(api, FakeClock(), tmp_path, url_validator=record).upload_from_url(
        BearerAuth("at"), VIDEO_URL
    )

    assert threads and loop_thread not in threads

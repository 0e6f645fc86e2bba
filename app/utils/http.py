"""HTTP utilities providing retry/backoff semantics and request auth."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generator, Iterable

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        retry_statuses: Iterable[int] = RETRYABLE_STATUSES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.retry_statuses = frozenset(retry_statuses)
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff: base, 2x base, 4x base, ..."""
        return self.backoff_seconds * (2 ** (attempt - 1))


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """
    Call ``func`` until it returns a non-retryable response or attempts run out.

    Transport errors are re-raised after the final attempt; a retryable status
    on the final attempt is returned to the caller as-is.
    """
    config = retry_config or RetryConfig()
    attempt = 0

    while True:
        attempt += 1
        try:
            response = await func(*args, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= config.attempts:
                raise
            logger.warning("Transport error on attempt %s/%s: %s", attempt, config.attempts, exc)
        else:
            if response.status_code not in config.retry_statuses or attempt >= config.attempts:
                return response
            logger.warning(
                "Retryable status %s on attempt %s/%s",
                response.status_code,
                attempt,
                config.attempts,
            )
        await config.sleep(config.delay_for(attempt))


class BearerAuth(httpx.Auth):
    """Attach an OAuth2 bearer token to every request."""

    def __init__(self, access_token: str) -> None:
        self._access_token = access_token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._access_token}"
        yield request


def error_detail(response: httpx.Response) -> str:
    """Best-effort human readable error out of a platform response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        if payload.get("detail"):
            return str(payload["detail"])
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict):
                return str(first.get("message") or first.get("detail") or first)
        if payload.get("error_description"):
            return str(payload["error_description"])
        if payload.get("title"):
            return str(payload["title"])
    return response.text


__all__ = [
    "BearerAuth",
    "RETRYABLE_STATUSES",
    "RetryConfig",
    "error_detail",
    "request_with_retry",
]

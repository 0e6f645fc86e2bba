"""
Domain errors raised by the OAuth clients, the upload engine and the publisher.

Every error carries a machine-readable ``kind``, a human message and the
upstream response body (when one exists) so the route layer can render a
structured response without knowing where the failure happened.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Dict, Optional


class PublishingError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "publishing_error"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "detail": self.detail}


class AuthorizationError(PublishingError):
    """State mismatch, missing code/verifier or an expired authorization window."""

    kind = "authorization_error"
    status_code = HTTPStatus.BAD_REQUEST


class NotAuthenticated(PublishingError):
    """No completed OAuth2 login exists for the requested user."""

    kind = "not_authenticated"
    status_code = HTTPStatus.UNAUTHORIZED


class TokenExchangeError(PublishingError):
    kind = "token_exchange_error"
    status_code = HTTPStatus.UNAUTHORIZED


class TokenRefreshError(PublishingError):
    kind = "token_refresh_error"
    status_code = HTTPStatus.UNAUTHORIZED


class RequestTokenError(PublishingError):
    """The platform rejected an OAuth 1.0a request-token or access-token call."""

    kind = "request_token_error"
    status_code = HTTPStatus.BAD_GATEWAY


class PrerequisiteMissing(PublishingError):
    """OAuth 1.0a was attempted before the OAuth2 login completed."""

    kind = "prerequisite_missing"
    status_code = HTTPStatus.CONFLICT


class MediaDownloadError(PublishingError):
    kind = "media_download_error"
    status_code = HTTPStatus.BAD_GATEWAY


class MediaUploadError(PublishingError):
    """A chunked-upload call failed. ``phase`` is init, append, finalize or status."""

    kind = "media_upload_error"
    status_code = HTTPStatus.BAD_GATEWAY

    def __init__(
        self,
        phase: str,
        message: str,
        *,
        detail: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ) -> None:
        super().__init__(f"{phase}: {message}", detail=detail)
        self.phase = phase
        self.upstream_status = upstream_status

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["phase"] = self.phase
        return payload


class MediaProcessingFailed(PublishingError):
    kind = "media_processing_failed"
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY


class MediaProcessingTimeout(PublishingError):
    kind = "media_processing_timeout"
    status_code = HTTPStatus.GATEWAY_TIMEOUT


class PostValidationError(PublishingError):
    """The requested post cannot be sent as-is (for example too many media items)."""

    kind = "invalid_post"
    status_code = HTTPStatus.BAD_REQUEST


class UnsupportedPlatform(PostValidationError):
    kind = "unsupported_platform"


class PostCreationError(PublishingError):
    kind = "post_creation_error"
    status_code = HTTPStatus.BAD_GATEWAY


class UpstreamAPIError(PublishingError):
    """A read-only platform call (identity, timelines) failed."""

    kind = "upstream_error"
    status_code = HTTPStatus.BAD_GATEWAY


__all__ = [
    "AuthorizationError",
    "MediaDownloadError",
    "MediaProcessingFailed",
    "MediaProcessingTimeout",
    "MediaUploadError",
    "NotAuthenticated",
    "PostCreationError",
    "PostValidationError",
    "PrerequisiteMissing",
    "PublishingError",
    "RequestTokenError",
    "TokenExchangeError",
    "TokenRefreshError",
    "UnsupportedPlatform",
    "UpstreamAPIError",
]

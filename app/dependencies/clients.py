"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from app.clients import (
    SQLiteStore,
    XMediaUploader,
    XOAuth1Client,
    XOAuth2Client,
    XPostsClient,
)
from app.core.config import AppSettings, get_settings
from app.services import (
    InMemoryTokenRepository,
    PendingAuthorizationStore,
    PlatformRegistry,
    PublishingService,
    SQLiteTokenRepository,
    TokenCipherService,
    TokenRepository,
    XAuthService,
    XPublisher,
    XTokenService,
)
from app.utils.http import RetryConfig
from app.utils.url_validation import MediaURLValidator


@lru_cache()
def _settings() -> AppSettings:
    """Internal helper to cache settings for client factories."""
    return get_settings()


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return _settings()


@lru_cache()
def get_x_oauth2_client() -> XOAuth2Client:
    """Create a singleton X OAuth 2.0 client."""
    return XOAuth2Client(_settings().x)


@lru_cache()
def get_x_oauth1_client() -> XOAuth1Client:
    """Create a singleton X OAuth 1.0a client."""
    return XOAuth1Client(_settings().x)


@lru_cache()
def get_x_posts_client() -> XPostsClient:
    return XPostsClient()


@lru_cache()
def get_media_uploader() -> XMediaUploader:
    """Provide the chunked media upload engine."""
    media = _settings().media
    return XMediaUploader(
        processing_timeout=media.processing_timeout_seconds,
        request_timeout=media.request_timeout_seconds,
        retry_config=RetryConfig(
            attempts=media.chunk_retry_attempts,
            backoff_seconds=media.chunk_retry_backoff_seconds,
        ),
        scratch_dir=media.scratch_dir,
        url_validator=MediaURLValidator() if media.validate_urls else None,
    )


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.x.client_secret
    return TokenCipherService(
        secret=secret, previous_secrets=settings.security.previous_encryption_secrets
    )


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite record store."""
    return SQLiteStore(_settings().storage.sqlite_path)


@lru_cache()
def get_token_repository() -> TokenRepository:
    """Pick the token backend configured for this process."""
    if _settings().storage.token_backend == "sqlite":
        return SQLiteTokenRepository(get_sqlite_store(), get_token_cipher_service())
    return InMemoryTokenRepository()


@lru_cache()
def get_pending_authorization_store() -> PendingAuthorizationStore:
    return PendingAuthorizationStore(ttl_seconds=_settings().oauth.state_ttl_seconds)


@lru_cache()
def get_x_token_service() -> XTokenService:
    """Provide helper for managing X OAuth tokens."""
    return XTokenService(get_token_repository(), get_x_oauth2_client())


@lru_cache()
def get_x_auth_service() -> XAuthService:
    return XAuthService(
        oauth2_client=get_x_oauth2_client(),
        oauth1_client=get_x_oauth1_client(),
        token_service=get_x_token_service(),
        pending=get_pending_authorization_store(),
    )


def get_x_publisher() -> XPublisher:
    """Build the X publisher using configured clients."""
    return XPublisher(
        token_service=get_x_token_service(),
        uploader=get_media_uploader(),
        posts_client=get_x_posts_client(),
        oauth1_client=get_x_oauth1_client(),
        media_upload_auth=_settings().x.media_upload_auth,
    )


def get_platform_registry() -> PlatformRegistry:
    return PlatformRegistry([get_x_publisher()])


def get_publishing_service() -> PublishingService:
    """Fan-out publisher over every registered platform."""
    return PublishingService(get_platform_registry())


__all__ = [
    "get_app_settings",
    "get_media_uploader",
    "get_pending_authorization_store",
    "get_platform_registry",
    "get_publishing_service",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_token_repository",
    "get_x_auth_service",
    "get_x_oauth1_client",
    "get_x_oauth2_client",
    "get_x_posts_client",
    "get_x_publisher",
    "get_x_token_service",
]

"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_app_settings,
    get_media_uploader,
    get_pending_authorization_store,
    get_platform_registry,
    get_publishing_service,
    get_sqlite_store,
    get_token_cipher_service,
    get_token_repository,
    get_x_auth_service,
    get_x_oauth1_client,
    get_x_oauth2_client,
    get_x_posts_client,
    get_x_publisher,
    get_x_token_service,
)

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

"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the OAuth clients and the
media upload engine share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class _Settings(BaseSettings):
    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")


class XSettings(_Settings):
    """Credentials and endpoints for the X (Twitter) platform."""

    client_id: str = Field(..., alias="X_CLIENT_ID")
    client_secret: str = Field(..., alias="X_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., alias="X_REDIRECT_URI")
    api_key: str = Field(..., alias="X_API_KEY", description="OAuth 1.0a consumer key.")
    api_secret: str = Field(..., alias="X_API_SECRET", description="OAuth 1.0a consumer secret.")
    media_callback_url: Optional[AnyHttpUrl] = Field(
        None,
        alias="X_MEDIA_CALLBACK_URL",
        description="OAuth 1.0a callback. Derived from the OAuth2 redirect when omitted.",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("tweet.read", "tweet.write", "users.read", "offline.access", "media.write"),
        alias="X_SCOPES",
    )
    media_upload_auth: Literal["oauth2", "oauth1a"] = Field(
        "oauth2",
        alias="X_MEDIA_UPLOAD_AUTH",
        description="Credential used for chunked uploads when both are available.",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)

    @property
    def oauth1_callback_url(self) -> str:
        if self.media_callback_url:
            return str(self.media_callback_url)
        return str(self.redirect_uri).replace("/callback", "/callback-media")


class OAuthSettings(_Settings):
    """OAuth flow configuration."""

    state_ttl_seconds: int = Field(600, alias="OAUTH_STATE_TTL")
    state_cookie_name: str = Field("oauth_state", alias="OAUTH_STATE_COOKIE")
    cookie_secure: bool = Field(False, alias="OAUTH_COOKIE_SECURE")


class MediaSettings(_Settings):
    """Tuning for the chunked media upload pipeline."""

    processing_timeout_seconds: float = Field(300.0, alias="MEDIA_PROCESSING_TIMEOUT")
    request_timeout_seconds: float = Field(60.0, alias="MEDIA_REQUEST_TIMEOUT")
    chunk_retry_attempts: int = Field(3, alias="MEDIA_CHUNK_RETRY_ATTEMPTS", ge=1)
    chunk_retry_backoff_seconds: float = Field(1.0, alias="MEDIA_CHUNK_RETRY_BACKOFF")
    scratch_dir: Optional[str] = Field(
        None,
        alias="MEDIA_SCRATCH_DIR",
        description="Directory for downloaded media. Defaults to the system temp dir.",
    )
    validate_urls: bool = Field(True, alias="MEDIA_VALIDATE_URLS")


class SecuritySettings(_Settings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_encryption_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Retired secrets still accepted for decryption.",
    )

    @field_validator("previous_encryption_secrets", mode="before")
    @classmethod
    def _split_secrets(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        return _split_csv(value)


class StorageSettings(_Settings):
    """Where connected-account tokens live."""

    token_backend: Literal["memory", "sqlite"] = Field("memory", alias="TOKEN_STORE_BACKEND")
    sqlite_path: str = Field("data/tokens.db", alias="TOKEN_STORE_PATH")


class AppSettings(_Settings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        ("http://localhost:3000",), alias="CORS_ORIGINS"
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    x: XSettings = Field(default_factory=XSettings)
    media: MediaSettings = Field(default_factory=MediaSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    model_config = SettingsConfigDict(
        populate_by_name=True,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        return _split_csv(value)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "MediaSettings",
    "OAuthSettings",
    "SecuritySettings",
    "StorageSettings",
    "XSettings",
    "get_settings",
]

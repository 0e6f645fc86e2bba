"""Service layer exports."""

from .auth_flow import XAuthService
from .publishing import PlatformPublisher, PlatformRegistry, PublishingService, XPublisher
from .token_cipher import TokenCipherService
from .token_store import (
    InMemoryTokenRepository,
    PendingAuthorizationStore,
    SQLiteTokenRepository,
    TokenRepository,
)
from .x_tokens import XTokenService

__all__ = [
    "InMemoryTokenRepository",
    "PendingAuthorizationStore",
    "PlatformPublisher",
    "PlatformRegistry",
    "PublishingService",
    "SQLiteTokenRepository",
    "TokenCipherService",
    "TokenRepository",
    "XAuthService",
    "XPublisher",
    "XTokenService",
]

"""Public schema exports."""

from .auth import (
    AuthorizationStartResponse,
    ConnectedAccount,
    ConnectedUsersResponse,
    IdentityResponse,
)
from .posts import CreatePostRequest, PostListResponse, PublishResponse

__all__ = [
    "AuthorizationStartResponse",
    "ConnectedAccount",
    "ConnectedUsersResponse",
    "CreatePostRequest",
    "IdentityResponse",
    "PostListResponse",
    "PublishResponse",
]

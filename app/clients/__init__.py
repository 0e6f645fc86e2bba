"""Expose constructed client wrappers."""

from .sqlite_store import SQLiteStore
from .x_media import XMediaUploader
from .x_oauth1 import OAuth1Auth, XOAuth1Client
from .x_oauth2 import XOAuth2Client
from .x_posts import XPostsClient

__all__ = [
    "OAuth1Auth",
    "SQLiteStore",
    "XMediaUploader",
    "XOAuth1Client",
    "XOAuth2Client",
    "XPostsClient",
]

"""
Published post representation.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


SHARE_URL_TEMPLATE = "https://twitter.com/i/web/status/{post_id}"


class Post(BaseModel):
    id: str
    text: str
    share_url: str
    media_ids: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: dict, *, media_ids: Optional[List[str]] = None) -> "Post":
        post_id = str(data["id"])
        return cls(
            id=post_id,
            text=data.get("text", ""),
            share_url=SHARE_URL_TEMPLATE.format(post_id=post_id),
            media_ids=list(media_ids or []),
            created_at=data.get("created_at"),
        )


class PlatformResult(BaseModel):
    """Outcome of one platform's share of a multi-platform submission."""

    platform: str
    status: Literal["published", "failed"]
    post: Optional[Post] = None
    error: Optional[Dict[str, Any]] = None
    http_status: int = Field(default=201, exclude=True)


__all__ = ["PlatformResult", "Post", "SHARE_URL_TEMPLATE"]

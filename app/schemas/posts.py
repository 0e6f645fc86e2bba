"""Schemas for post publishing."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from app.models.posts import PlatformResult, Post


class CreatePostRequest(BaseModel):
    """Payload for publishing a post with optional media."""

    user_id: str = Field(..., min_length=1, description="User id of a connected account.")
    text: str = Field("", description="Post text.")
    media_urls: List[str] = Field(
        default_factory=list,
        description="Publicly reachable media URLs uploaded before the post is created.",
    )
    platforms: List[str] = Field(
        default_factory=lambda: ["x"],
        min_length=1,
        description="Platforms to publish to; each reports its own outcome.",
    )


class PublishResponse(BaseModel):
    user_id: str
    results: List[PlatformResult]


class PostListResponse(BaseModel):
    user_id: str
    posts: List[Post]


__all__ = ["CreatePostRequest", "PostListResponse", "PublishResponse"]

# src/medinet/schemas/post.py
"""Post-related Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from medinet.schemas.common import UtcDatetime

PostType = Literal["post", "article", "discussion"]
Visibility = Literal["public", "connections", "private"]
FeedSort = Literal["new", "top", "best", "hot"]


class MediaIn(BaseModel):
    """Media descriptor supplied with a new post."""

    media_type: Literal["image", "video", "document"]
    media_url: str = Field(..., min_length=1, max_length=1000)
    thumbnail_url: str | None = Field(None, max_length=1000)
    file_name: str | None = Field(None, max_length=255)
    file_size: int | None = Field(None, ge=0)
    mime_type: str | None = Field(None, max_length=100)
    width: int | None = Field(None, ge=0)
    height: int | None = Field(None, ge=0)
    duration: int | None = Field(None, ge=0)


class PostCreate(BaseModel):
    """Schema for creating a new post."""

    content: str = Field(..., min_length=1, max_length=10000, description="Post body")
    post_type: PostType = "post"
    visibility: Visibility = "public"
    media: list[MediaIn] = Field(default_factory=list, max_length=20)


class PostUpdate(BaseModel):
    """Partial update; at least one field must be present."""

    content: str | None = Field(None, min_length=1, max_length=10000)
    post_type: PostType | None = None
    visibility: Visibility | None = None
    is_pinned: bool | None = None

    @model_validator(mode="after")
    def _require_change(self) -> "PostUpdate":
        if not self.model_fields_set or all(
            getattr(self, name) is None for name in self.model_fields_set
        ):
            raise ValueError("No valid fields to update")
        return self


class RepostCreate(BaseModel):
    content: str | None = Field(None, max_length=10000, description="Optional quote text")


class AuthorOut(BaseModel):
    """Author fields denormalized onto posts, comments and messages."""

    id: int
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    headline: str | None = None
    current_role: str | None = None
    specialization: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MediaOut(BaseModel):
    id: int
    media_type: str
    media_url: str
    thumbnail_url: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None
    duration: int | None = None
    display_order: int

    model_config = ConfigDict(from_attributes=True)


class PostOut(BaseModel):
    """Schema for post information returned by the API."""

    id: int
    user_id: int
    content: str
    post_type: str
    visibility: str
    parent_post_id: int | None
    is_repost: bool
    upvotes: int
    downvotes: int
    score: int
    comments_count: int
    shares_count: int
    views_count: int
    is_pinned: bool
    is_edited: bool
    edited_at: UtcDatetime | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    author: AuthorOut | None = None
    media: list[MediaOut] = Field(default_factory=list)
    user_vote: str | None = None
    original_post: "PostOut | None" = None

    model_config = ConfigDict(from_attributes=True)

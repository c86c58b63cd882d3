# src/medinet/schemas/comment.py
"""Comment-related Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from medinet.schemas.common import UtcDatetime
from medinet.schemas.post import AuthorOut

CommentSort = Literal["new", "top", "best"]


class CommentCreate(BaseModel):
    """Schema for creating a comment or a reply."""

    post_id: int = Field(..., gt=0)
    content: str = Field(..., min_length=1, max_length=5000)
    parent_comment_id: int | None = Field(None, gt=0, description="Reply target")


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class CommentOut(BaseModel):
    id: int
    post_id: int
    user_id: int
    parent_comment_id: int | None
    content: str
    upvotes: int
    downvotes: int
    score: int
    replies_count: int
    is_edited: bool
    edited_at: UtcDatetime | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    author: AuthorOut | None = None
    user_vote: str | None = None
    replies: list["CommentOut"] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

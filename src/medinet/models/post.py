# src/medinet/models/post.py
"""SQLAlchemy models for posts, their media and share records."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medinet.db.session import Base
from medinet.db.time import utcnow

POST_TYPES = ("post", "article", "discussion")
VISIBILITIES = ("public", "connections", "private")


class Post(Base):
    """Primary content entity produced by users.

    A post with ``parent_post_id`` set is a repost (quote-share) of that post;
    its content may be empty. Counters are denormalized and never negative, and
    ``score`` always equals ``upvotes - downvotes``.
    """

    __tablename__ = "posts"
    __table_args__ = (
        CheckConstraint("post_type IN ('post', 'article', 'discussion')", name="ck_posts_type"),
        CheckConstraint(
            "visibility IN ('public', 'connections', 'private')",
            name="ck_posts_visibility",
        ),
        CheckConstraint(
            "upvotes >= 0 AND downvotes >= 0 AND comments_count >= 0 "
            "AND shares_count >= 0 AND views_count >= 0",
            name="ck_posts_counters",
        ),
        Index("ix_posts_user_created", "user_id", "created_at"),
        Index("ix_posts_created_at", "created_at"),
        Index("ix_posts_score", "score"),
        Index("ix_posts_parent_post_id", "parent_post_id"),
        # At most one repost of a given original per user.
        Index(
            "uq_posts_user_repost",
            "user_id",
            "parent_post_id",
            unique=True,
            sqlite_where=text("parent_post_id IS NOT NULL"),
            postgresql_where=text("parent_post_id IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    post_type: Mapped[str] = mapped_column(String(20), nullable=False, default="post")
    visibility: Mapped[str] = mapped_column(String(20), nullable=False, default="public")

    # Repost linkage; top-level originals have parent_post_id = NULL.
    parent_post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=True,
    )

    upvotes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    downvotes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comments_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    shares_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    views_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    author = relationship("User", lazy="joined")
    original_post: Mapped["Post | None"] = relationship(
        "Post",
        remote_side="Post.id",
        foreign_keys=[parent_post_id],
    )
    media: Mapped[list["PostMedia"]] = relationship(
        back_populates="post",
        order_by="PostMedia.display_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_repost(self) -> bool:
        return self.parent_post_id is not None


class PostMedia(Base):
    """Media descriptor attached to a post (URLs only; uploads happen elsewhere)."""

    __tablename__ = "post_media"
    __table_args__ = (
        CheckConstraint(
            "media_type IN ('image', 'video', 'document')",
            name="ck_post_media_type",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    media_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    post: Mapped[Post] = relationship(back_populates="media")


class Share(Base):
    """Analytics record of a repost; lives and dies with the repost row."""

    __tablename__ = "shares"
    __table_args__ = (UniqueConstraint("user_id", "post_id", name="uq_shares_user_post"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shared_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

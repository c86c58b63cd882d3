# src/medinet/models/reaction.py
"""Models capturing voting interactions on posts and comments."""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from medinet.db.session import Base
from medinet.db.time import utcnow

UPVOTE = "upvote"
DOWNVOTE = "downvote"
REACTION_TYPES = (UPVOTE, DOWNVOTE)


class Reaction(Base):
    """Per-user vote on exactly one post or one comment.

    Uniqueness per (user, target) is enforced with partial unique indexes,
    one per nullable target column.
    """

    __tablename__ = "reactions"
    __table_args__ = (
        CheckConstraint(
            "(post_id IS NOT NULL AND comment_id IS NULL) "
            "OR (post_id IS NULL AND comment_id IS NOT NULL)",
            name="ck_reactions_single_target",
        ),
        CheckConstraint(
            "reaction_type IN ('upvote', 'downvote')",
            name="ck_reactions_type",
        ),
        Index(
            "uq_reactions_user_post",
            "user_id",
            "post_id",
            unique=True,
            sqlite_where=text("comment_id IS NULL"),
            postgresql_where=text("comment_id IS NULL"),
        ),
        Index(
            "uq_reactions_user_comment",
            "user_id",
            "comment_id",
            unique=True,
            sqlite_where=text("post_id IS NULL"),
            postgresql_where=text("post_id IS NULL"),
        ),
        Index(
            "ix_reactions_post_id",
            "post_id",
            sqlite_where=text("post_id IS NOT NULL"),
            postgresql_where=text("post_id IS NOT NULL"),
        ),
        Index(
            "ix_reactions_comment_id",
            "comment_id",
            sqlite_where=text("comment_id IS NOT NULL"),
            postgresql_where=text("comment_id IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=True,
    )
    comment_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("comments.id", ondelete="CASCADE"),
        nullable=True,
    )
    reaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

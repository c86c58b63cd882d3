# src/medinet/models/messaging.py
"""Direct messaging: conversations, messages and message reactions."""

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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medinet.db.session import Base
from medinet.db.time import utcnow

DELIVERY_SENT = "sent"
DELIVERY_DELIVERED = "delivered"
DELIVERY_READ = "read"
DELIVERY_ORDER = {DELIVERY_SENT: 0, DELIVERY_DELIVERED: 1, DELIVERY_READ: 2}

ATTACHMENT_TYPES = ("image", "document", "video", "audio")


class Conversation(Base):
    """A two-party conversation.

    Participants are stored canonicalized (``participant1_id < participant2_id``)
    so each unordered pair maps to exactly one row. Unread counters and the
    soft-delete flag are tracked per participant.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("participant1_id", "participant2_id", name="uq_conversations_pair"),
        CheckConstraint("participant1_id < participant2_id", name="ck_conversations_ordered"),
        CheckConstraint(
            "participant1_unread_count >= 0 AND participant2_unread_count >= 0",
            name="ck_conversations_unread",
        ),
        Index("ix_conversations_p2", "participant2_id"),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant1_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    participant2_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Plain column: messages already reference conversations, avoid the cycle.
    last_message_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    participant1_unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    participant2_unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    participant1_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    participant2_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    participant1 = relationship("User", foreign_keys=[participant1_id], lazy="joined")
    participant2 = relationship("User", foreign_keys=[participant2_id], lazy="joined")

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.participant1_id, self.participant2_id)

    def other_participant_id(self, user_id: int) -> int:
        return self.participant2_id if user_id == self.participant1_id else self.participant1_id

    def unread_count_for(self, user_id: int) -> int:
        if user_id == self.participant1_id:
            return self.participant1_unread_count
        return self.participant2_unread_count


class Message(Base):
    """A single message; soft-deleted rows stay visible to their sender only."""

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "delivery_status IN ('sent', 'delivered', 'read')",
            name="ck_messages_delivery_status",
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_sender", "sender_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    attachment_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    attachment_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    attachment_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    forwarded_from_message_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_status: Mapped[str] = mapped_column(String(20), default=DELIVERY_SENT, nullable=False)

    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    sender = relationship("User", foreign_keys=[sender_id], lazy="joined")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class MessageReaction(Base):
    """Emoji-style reaction on a message, unique per (message, user, type)."""

    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint(
            "message_id",
            "user_id",
            "reaction_type",
            name="uq_message_reactions_triple",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    reaction_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

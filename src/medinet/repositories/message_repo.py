"""Data access helpers for conversations and messages."""
from __future__ import annotations

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from medinet.models import Conversation, Message

__all__ = ["MessageRepository", "not_deleted_for", "visible_message"]


def not_deleted_for(user_id: int) -> ColumnElement[bool]:
    """Conversations the user participates in and has not soft-deleted."""
    return or_(
        and_(Conversation.participant1_id == user_id, Conversation.participant1_deleted.is_(False)),
        and_(Conversation.participant2_id == user_id, Conversation.participant2_deleted.is_(False)),
    )


def visible_message(user_id: int) -> ColumnElement[bool]:
    """Soft-deleted messages remain visible to their sender only."""
    return or_(Message.deleted_at.is_(None), Message.sender_id == user_id)


class MessageRepository:
    """Queries backing the inbox, message history and search."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_conversation(self, user_a: int, user_b: int) -> Conversation | None:
        low, high = sorted((user_a, user_b))
        return self.session.scalars(
            select(Conversation).where(
                Conversation.participant1_id == low,
                Conversation.participant2_id == high,
            )
        ).first()

    def list_conversations(self, user_id: int, limit: int, offset: int) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .where(not_deleted_for(user_id))
            .order_by(Conversation.last_message_at.desc().nulls_last(), Conversation.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).unique())

    def get_messages(self, message_ids: list[int]) -> dict[int, Message]:
        if not message_ids:
            return {}
        rows = self.session.scalars(select(Message).where(Message.id.in_(message_ids))).unique()
        return {message.id: message for message in rows}

    def list_messages(self, conversation_id: int, viewer_id: int, limit: int, offset: int) -> list[Message]:
        """Return one page of history in chronological order.

        Pages are counted from the newest message backwards.
        """
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id, visible_message(viewer_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
            .offset(offset)
        )
        newest_first = list(self.session.scalars(stmt).unique())
        return list(reversed(newest_first))

    def unread_total(self, user_id: int) -> int:
        own_counter = case(
            (Conversation.participant1_id == user_id, Conversation.participant1_unread_count),
            else_=Conversation.participant2_unread_count,
        )
        unread = func.coalesce(func.sum(own_counter), 0)
        return int(self.session.scalar(select(unread).where(not_deleted_for(user_id))) or 0)

    def search(self, user_id: int, query: str, limit: int, offset: int) -> list[Message]:
        """Case-insensitive substring search over the user's live messages."""
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        stmt = (
            select(Message)
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(
                not_deleted_for(user_id),
                Message.deleted_at.is_(None),
                Message.content.ilike(pattern, escape="\\"),
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).unique())

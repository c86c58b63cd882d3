"""Direct messaging state machine.

Conversations are canonicalized pairs with per-participant unread counters and
soft-delete flags. Each message moves ``sent -> delivered -> read`` and never
backwards. Events are published after the owning transaction commits.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medinet.core.errors import ForbiddenError, NotFoundError, ValidationFailed
from medinet.core.settings import settings
from medinet.db.time import as_utc, utcnow
from medinet.models import Conversation, Message, MessageReaction, User
from medinet.models.messaging import (
    DELIVERY_DELIVERED,
    DELIVERY_ORDER,
    DELIVERY_READ,
    DELIVERY_SENT,
)
from medinet.repositories.message_repo import MessageRepository
from medinet.schemas.message import MessageForward, MessageOut, MessageSend
from medinet.schemas.post import AuthorOut
from medinet.services.events import (
    CONVERSATION_READ,
    MESSAGE_CREATED,
    MESSAGE_DELETED,
    MESSAGE_DELIVERED,
    MESSAGE_REACTION_ADDED,
    MESSAGE_REACTION_REMOVED,
    MESSAGE_UPDATED,
    EventBus,
)
from medinet.services.notifications import NotificationService
from medinet.services.social import are_connected, get_user_or_404, is_blocked_either_way

logger = logging.getLogger(__name__)

ATTACHMENT_ONLY_CONTENT = "Attachment"
PREVIEW_LENGTH = 100


def serialize_message(message: Message) -> dict[str, Any]:
    return MessageOut.model_validate(message).model_dump(mode="json")


class MessagingService:
    """Commands and queries for conversations, messages and reactions."""

    def __init__(self, db: Session, bus: EventBus) -> None:
        self.db = db
        self.bus = bus
        self.repo = MessageRepository(db)

    # -- conversations -------------------------------------------------

    def find_or_create_conversation(self, user_a: int, user_b: int) -> Conversation:
        """Return the single conversation for the unordered pair, creating it once."""
        if user_a == user_b:
            raise ValidationFailed("You cannot message yourself")
        conversation = self.repo.find_conversation(user_a, user_b)
        if conversation is not None:
            return conversation

        low, high = sorted((user_a, user_b))
        try:
            with self.db.begin_nested():
                conversation = Conversation(participant1_id=low, participant2_id=high)
                self.db.add(conversation)
        except IntegrityError:
            # Created concurrently by the other participant.
            conversation = self.repo.find_conversation(user_a, user_b)
            if conversation is None:
                raise
        return conversation

    def get_conversation_for(self, user_id: int, conversation_id: int) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if not conversation.has_participant(user_id):
            raise ForbiddenError("You are not a participant in this conversation")
        return conversation

    def serialize_conversation(
        self,
        conversation: Conversation,
        viewer_id: int,
        last_message: Message | None = None,
    ) -> dict[str, Any]:
        other = (
            conversation.participant2
            if viewer_id == conversation.participant1_id
            else conversation.participant1
        )
        if last_message is not None and last_message.is_deleted and last_message.sender_id != viewer_id:
            last_message = None
        return {
            "id": conversation.id,
            "participant1_id": conversation.participant1_id,
            "participant2_id": conversation.participant2_id,
            "last_message_at": as_utc(conversation.last_message_at).isoformat()
            if conversation.last_message_at
            else None,
            "last_message_id": conversation.last_message_id,
            "other_user": AuthorOut.model_validate(other).model_dump(mode="json") if other else None,
            "unread_count": conversation.unread_count_for(viewer_id),
            "last_message": serialize_message(last_message) if last_message else None,
            "created_at": as_utc(conversation.created_at).isoformat(),
        }

    def list_conversations(self, user: User, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        conversations = self.repo.list_conversations(user.id, limit, offset)
        last_messages = self.repo.get_messages(
            [c.last_message_id for c in conversations if c.last_message_id is not None]
        )
        return [
            self.serialize_conversation(c, user.id, last_messages.get(c.last_message_id))
            for c in conversations
        ]

    def get_conversation(self, user: User, conversation_id: int) -> dict[str, Any]:
        conversation = self.get_conversation_for(user.id, conversation_id)
        last = self.db.get(Message, conversation.last_message_id) if conversation.last_message_id else None
        return self.serialize_conversation(conversation, user.id, last)

    def delete_conversation(self, user: User, conversation_id: int) -> None:
        """Hide the conversation for ``user`` only; a new message revives it."""
        conversation = self.get_conversation_for(user.id, conversation_id)
        if user.id == conversation.participant1_id:
            conversation.participant1_deleted = True
        else:
            conversation.participant2_deleted = True
        self.db.commit()

    def unread_total(self, user: User) -> int:
        return self.repo.unread_total(user.id)

    # -- messages ------------------------------------------------------

    def _resolve_target(
        self,
        sender: User,
        recipient_id: int | None,
        conversation_id: int | None,
    ) -> tuple[Conversation | None, int]:
        if conversation_id is not None:
            conversation = self.get_conversation_for(sender.id, conversation_id)
            return conversation, conversation.other_participant_id(sender.id)
        if recipient_id == sender.id:
            raise ValidationFailed("You cannot message yourself")
        try:
            recipient = get_user_or_404(self.db, recipient_id)
        except NotFoundError as exc:
            raise NotFoundError("Recipient not found") from exc
        return None, recipient.id

    def _check_can_message(self, sender: User, recipient_id: int) -> None:
        if is_blocked_either_way(self.db, sender.id, recipient_id):
            raise ForbiddenError("Users are blocked")
        if settings.require_connection_for_messaging and not are_connected(
            self.db, sender.id, recipient_id
        ):
            raise ForbiddenError("You must be connected to message this user")

    def send_message(self, sender: User, payload: MessageSend) -> Message:
        content = (payload.content or "").strip()
        if not content and not payload.attachment_url:
            raise ValidationFailed("Either content or attachment is required")

        conversation, recipient_id = self._resolve_target(
            sender, payload.recipient_id, payload.conversation_id
        )
        return self._deliver(
            sender,
            recipient_id,
            conversation,
            content=content or ATTACHMENT_ONLY_CONTENT,
            attachment_url=payload.attachment_url,
            attachment_type=payload.attachment_type,
            attachment_name=payload.attachment_name,
        )

    def _deliver(
        self,
        sender: User,
        recipient_id: int,
        conversation: Conversation | None,
        *,
        content: str,
        attachment_url: str | None = None,
        attachment_type: str | None = None,
        attachment_name: str | None = None,
        forwarded_from_message_id: int | None = None,
    ) -> Message:
        self._check_can_message(sender, recipient_id)
        if conversation is None:
            conversation = self.find_or_create_conversation(sender.id, recipient_id)

        message = Message(
            conversation_id=conversation.id,
            sender_id=sender.id,
            content=content,
            attachment_url=attachment_url,
            attachment_type=attachment_type,
            attachment_name=attachment_name,
            forwarded_from_message_id=forwarded_from_message_id,
            delivery_status=DELIVERY_SENT,
        )
        self.db.add(message)
        self.db.flush()

        recipient_is_p1 = recipient_id == conversation.participant1_id
        unread_column = (
            Conversation.participant1_unread_count
            if recipient_is_p1
            else Conversation.participant2_unread_count
        )
        self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values(
                {
                    unread_column: unread_column + 1,
                    Conversation.last_message_id: message.id,
                    Conversation.last_message_at: message.created_at,
                    Conversation.participant1_deleted: False,
                    Conversation.participant2_deleted: False,
                }
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(message)
        self.db.refresh(conversation)

        self.bus.publish(
            MESSAGE_CREATED,
            {
                "message_id": message.id,
                "conversation_id": conversation.id,
                "sender_id": sender.id,
                "recipient_id": recipient_id,
            },
        )
        NotificationService(self.db, self.bus).notify(
            user_id=recipient_id,
            notification_type="new_message",
            title=f"New message from {sender.full_name or 'a user'}",
            message=content[:PREVIEW_LENGTH],
            data={
                "message_id": message.id,
                "conversation_id": conversation.id,
                "sender_id": sender.id,
            },
            related_user_id=sender.id,
        )
        return message

    def _get_visible_message(self, user_id: int, message_id: int) -> tuple[Message, Conversation]:
        message = self.db.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        conversation = self.get_conversation_for(user_id, message.conversation_id)
        if message.is_deleted and message.sender_id != user_id:
            raise NotFoundError("Message not found")
        return message, conversation

    def list_messages(
        self,
        user: User,
        conversation_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Message]:
        self.get_conversation_for(user.id, conversation_id)
        return self.repo.list_messages(conversation_id, user.id, limit, offset)

    def _message_payload(self, message: Message, conversation: Conversation) -> dict[str, Any]:
        return {
            "message_id": message.id,
            "conversation_id": conversation.id,
            "sender_id": message.sender_id,
            "recipient_id": conversation.other_participant_id(message.sender_id),
        }

    def edit_message(self, user: User, message_id: int, content: str) -> Message:
        message, conversation = self._get_visible_message(user.id, message_id)
        if message.sender_id != user.id:
            raise ForbiddenError("You can only edit your own messages")
        if message.is_deleted:
            raise ValidationFailed("Cannot edit a deleted message")
        window = timedelta(minutes=settings.message_edit_window_minutes)
        if utcnow() - as_utc(message.created_at) > window:
            raise ValidationFailed("Message edit window expired")

        message.content = content
        message.edited_at = utcnow()
        self.db.commit()
        self.db.refresh(message)
        self.bus.publish(MESSAGE_UPDATED, self._message_payload(message, conversation))
        return message

    def delete_message(self, user: User, message_id: int) -> None:
        """Soft-delete; the sender keeps seeing the message, nobody else does."""
        message, conversation = self._get_visible_message(user.id, message_id)
        if message.sender_id != user.id:
            raise ForbiddenError("You can only delete your own messages")
        if message.is_deleted:
            return
        message.deleted_at = utcnow()
        self.db.commit()
        self.bus.publish(MESSAGE_DELETED, self._message_payload(message, conversation))

    def mark_conversation_read(self, user: User, conversation_id: int) -> int:
        """Mark every incoming message read and zero the viewer's unread counter.

        Idempotent; returns the number of messages that changed.
        """
        conversation = self.get_conversation_for(user.id, conversation_id)
        now = utcnow()
        changed = self.db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.sender_id != user.id,
                Message.is_read.is_(False),
            )
            .values(
                is_read=True,
                read_at=now,
                delivery_status=DELIVERY_READ,
                delivered_at=func.coalesce(Message.delivered_at, now),
            )
            .execution_options(synchronize_session="fetch")
        ).rowcount
        if user.id == conversation.participant1_id:
            conversation.participant1_unread_count = 0
        else:
            conversation.participant2_unread_count = 0
        self.db.commit()

        self.bus.publish(
            CONVERSATION_READ,
            {
                "conversation_id": conversation.id,
                "user_id": user.id,
                "recipient_id": conversation.other_participant_id(user.id),
                "count": int(changed or 0),
            },
        )
        return int(changed or 0)

    def mark_delivered(self, user_id: int, message_id: int) -> tuple[Message, bool]:
        """Acknowledge receipt by the recipient; returns ``(message, changed)``."""
        message, conversation = self._get_visible_message(user_id, message_id)
        if message.sender_id == user_id:
            raise ForbiddenError("Only the recipient can acknowledge delivery")
        if DELIVERY_ORDER[message.delivery_status] >= DELIVERY_ORDER[DELIVERY_DELIVERED]:
            return message, False

        message.delivery_status = DELIVERY_DELIVERED
        message.delivered_at = utcnow()
        self.db.commit()
        self.db.refresh(message)
        self.bus.publish(
            MESSAGE_DELIVERED,
            {
                **self._message_payload(message, conversation),
                "delivered_at": as_utc(message.delivered_at).isoformat(),
            },
        )
        return message, True

    def forward_message(self, user: User, message_id: int, payload: MessageForward) -> Message:
        source, _ = self._get_visible_message(user.id, message_id)
        conversation, recipient_id = self._resolve_target(
            user, payload.recipient_id, payload.conversation_id
        )
        content = (payload.content or "").strip() or source.content
        return self._deliver(
            user,
            recipient_id,
            conversation,
            content=content,
            attachment_url=source.attachment_url,
            attachment_type=source.attachment_type,
            attachment_name=source.attachment_name,
            forwarded_from_message_id=source.id,
        )

    def search(self, user: User, query: str, limit: int = 20, offset: int = 0) -> list[Message]:
        return self.repo.search(user.id, query.strip(), limit, offset)

    # -- reactions -----------------------------------------------------

    def list_reactions(self, user: User, message_id: int) -> list[dict[str, Any]]:
        self._get_visible_message(user.id, message_id)
        return self._grouped_reactions(message_id)

    def _grouped_reactions(self, message_id: int) -> list[dict[str, Any]]:
        rows = (
            self.db.query(MessageReaction)
            .filter(MessageReaction.message_id == message_id)
            .order_by(MessageReaction.created_at, MessageReaction.id)
            .all()
        )
        users: dict[str, list[int]] = defaultdict(list)
        for row in rows:
            users[row.reaction_type].append(row.user_id)
        return [
            {"reaction_type": reaction_type, "count": len(ids), "users": ids}
            for reaction_type, ids in users.items()
        ]

    def add_reaction(
        self,
        user: User,
        message_id: int,
        reaction_type: str,
    ) -> tuple[bool, list[dict[str, Any]]]:
        """Add a reaction; returns ``(created, grouped_reactions)``."""
        message, conversation = self._get_visible_message(user.id, message_id)
        exists = (
            self.db.query(MessageReaction.id)
            .filter(
                MessageReaction.message_id == message.id,
                MessageReaction.user_id == user.id,
                MessageReaction.reaction_type == reaction_type,
            )
            .first()
        )
        if exists is not None:
            return False, self._grouped_reactions(message.id)

        try:
            with self.db.begin_nested():
                self.db.add(
                    MessageReaction(message_id=message.id, user_id=user.id, reaction_type=reaction_type)
                )
        except IntegrityError:
            return False, self._grouped_reactions(message.id)
        self.db.commit()

        reactions = self._grouped_reactions(message.id)
        self.bus.publish(
            MESSAGE_REACTION_ADDED,
            {
                **self._message_payload(message, conversation),
                "user_id": user.id,
                "reaction_type": reaction_type,
                "reactions": reactions,
            },
        )
        return True, reactions

    def remove_reaction(self, user: User, message_id: int, reaction_type: str) -> list[dict[str, Any]]:
        message, conversation = self._get_visible_message(user.id, message_id)
        reaction = (
            self.db.query(MessageReaction)
            .filter(
                MessageReaction.message_id == message.id,
                MessageReaction.user_id == user.id,
                MessageReaction.reaction_type == reaction_type,
            )
            .first()
        )
        if reaction is None:
            raise NotFoundError("Reaction not found")
        self.db.delete(reaction)
        self.db.commit()

        reactions = self._grouped_reactions(message.id)
        self.bus.publish(
            MESSAGE_REACTION_REMOVED,
            {
                **self._message_payload(message, conversation),
                "user_id": user.id,
                "reaction_type": reaction_type,
                "reactions": reactions,
            },
        )
        return reactions

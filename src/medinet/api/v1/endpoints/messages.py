# src/medinet/api/v1/endpoints/messages.py
"""Direct message endpoints for the MediNet API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Response, status

from medinet.schemas.common import envelope, paginate
from medinet.schemas.message import MessageEdit, MessageForward, MessageSend, ReactionCreate
from medinet.services.messaging import MessagingService, serialize_message

from ..dependencies import CurrentUserDep, EventBusDep, SessionDep

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", status_code=status.HTTP_201_CREATED)
def send_message(
    payload: MessageSend,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    """Send a message to a user, creating the conversation on first contact."""
    message = MessagingService(db, bus).send_message(current_user, payload)
    return envelope(serialize_message(message), message="Message sent successfully")


@router.get("/conversations")
def list_conversations(
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    items = MessagingService(db, bus).list_conversations(current_user, limit, offset)
    return envelope(items, pagination=paginate(limit, offset, len(items)))


@router.get("/conversations/{conversation_id}")
def get_conversation(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    return envelope(MessagingService(db, bus).get_conversation(current_user, conversation_id))


@router.delete("/conversations/{conversation_id}")
def delete_conversation(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    MessagingService(db, bus).delete_conversation(current_user, conversation_id)
    return envelope(message="Conversation deleted successfully")


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    """Return one page of history, oldest first within the page."""
    messages = MessagingService(db, bus).list_messages(current_user, conversation_id, limit, offset)
    return envelope(
        [serialize_message(m) for m in messages],
        pagination=paginate(limit, offset, len(messages)),
    )


@router.put("/conversations/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    count = MessagingService(db, bus).mark_conversation_read(current_user, conversation_id)
    return envelope({"conversation_id": conversation_id, "count": count}, message="Conversation marked as read")


@router.get("/unread-count")
def unread_count(current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    return envelope({"count": MessagingService(db, bus).unread_total(current_user)})


@router.get("/search")
def search_messages(
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    messages = MessagingService(db, bus).search(current_user, q, limit, offset)
    return envelope(
        [serialize_message(m) for m in messages],
        pagination=paginate(limit, offset, len(messages)),
    )


@router.put("/{message_id}")
def edit_message(
    message_id: int,
    payload: MessageEdit,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    message = MessagingService(db, bus).edit_message(current_user, message_id, payload.content)
    return envelope(serialize_message(message), message="Message updated successfully")


@router.delete("/{message_id}")
def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    MessagingService(db, bus).delete_message(current_user, message_id)
    return envelope(message="Message deleted successfully")


@router.put("/{message_id}/delivered")
def mark_delivered(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    message, _ = MessagingService(db, bus).mark_delivered(current_user.id, message_id)
    return envelope(serialize_message(message))


@router.post("/{message_id}/forward", status_code=status.HTTP_201_CREATED)
def forward_message(
    message_id: int,
    payload: MessageForward,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    message = MessagingService(db, bus).forward_message(current_user, message_id, payload)
    return envelope(serialize_message(message), message="Message forwarded successfully")


@router.get("/{message_id}/reactions")
def list_reactions(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    return envelope(MessagingService(db, bus).list_reactions(current_user, message_id))


@router.post("/{message_id}/reactions")
def add_reaction(
    message_id: int,
    payload: ReactionCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    response: Response,
) -> dict[str, Any]:
    """Add a reaction; repeating the same reaction is a no-op."""
    created, reactions = MessagingService(db, bus).add_reaction(
        current_user, message_id, payload.reaction_type
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return envelope(
        {"message_id": message_id, "reactions": reactions},
        message="Reaction added" if created else "Reaction already exists",
    )


@router.delete("/{message_id}/reactions/{reaction_type}")
def remove_reaction(
    message_id: int,
    reaction_type: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    reactions = MessagingService(db, bus).remove_reaction(current_user, message_id, reaction_type)
    return envelope({"message_id": message_id, "reactions": reactions}, message="Reaction removed")

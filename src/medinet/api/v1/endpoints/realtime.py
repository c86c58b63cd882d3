# src/medinet/api/v1/endpoints/realtime.py
"""WebSocket endpoint for real-time events.

Clients authenticate with ``?token=<jwt>``, are joined to their own user room
automatically and then send ``{"type": ..., "data": {...}}`` messages to join
post, comment and conversation rooms, emit typing indicators and acknowledge
message delivery. Server pushes are ``{"event": ..., "data": {...}}``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from medinet.core.errors import ServiceError
from medinet.models import Comment, Conversation
from medinet.repositories.post_repo import PostRepository
from medinet.services.events import get_event_bus
from medinet.services.messaging import MessagingService
from medinet.services.realtime import (
    ClientConnection,
    RealtimeHub,
    comment_room,
    conversation_room,
    get_hub,
    post_room,
)

from ..dependencies import SessionFactoryDep, resolve_token_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

TYPING_START = ("message:typing:start", "typing:start")
TYPING_STOP = ("message:typing:stop", "typing:stop")


def _extract_id(data: Any, *keys: str) -> int | None:
    """Accept a bare id or the first present key of a dict."""
    value: Any = data
    if isinstance(data, dict):
        value = next((data[key] for key in keys if data.get(key) is not None), None)
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ClientSession:
    """Handles the client messages of one connection.

    Database lookups open their own short-lived session so an idle socket
    holds no pooled connection.
    """

    def __init__(
        self,
        hub: RealtimeHub,
        connection: ClientConnection,
        session_factory: Callable[[], Session],
    ) -> None:
        self.hub = hub
        self.connection = connection
        self.session_factory = session_factory

    @property
    def user_id(self) -> int:
        return self.connection.user_id

    async def reply(self, event: str, data: dict[str, Any] | None = None) -> None:
        await self.connection.send({"event": event, "data": data or {}})

    async def error(self, message: str) -> None:
        await self.reply("error", {"message": message})

    # Blocking lookups, run in the threadpool.

    def _post_visible(self, post_id: int) -> bool:
        with self.session_factory() as db:
            return PostRepository(db).get_visible(post_id, self.user_id) is not None

    def _comment_visible(self, comment_id: int) -> bool:
        with self.session_factory() as db:
            comment = db.get(Comment, comment_id)
            if comment is None:
                return False
            return PostRepository(db).get_visible(comment.post_id, self.user_id) is not None

    def _is_participant(self, conversation_id: int) -> bool:
        with self.session_factory() as db:
            conversation = db.get(Conversation, conversation_id)
            return conversation is not None and conversation.has_participant(self.user_id)

    def _acknowledge_delivery(self, message_id: int) -> None:
        with self.session_factory() as db:
            MessagingService(db, get_event_bus()).mark_delivered(self.user_id, message_id)

    async def _participant(self, conversation_id: int) -> bool:
        if conversation_id in self.connection.conversations:
            return True
        if await run_in_threadpool(self._is_participant, conversation_id):
            self.connection.conversations.add(conversation_id)
            return True
        return False

    async def _join(self, room: str) -> None:
        await self.hub.join(self.connection, room)
        await self.reply("room:joined", {"room": room})

    async def _leave(self, room: str) -> None:
        await self.hub.leave(self.connection, room)
        await self.reply("room:left", {"room": room})

    async def handle(self, message: Any) -> None:
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            await self.error("Invalid message format")
            return
        kind = message["type"]
        data = message.get("data")

        if kind == "ping":
            await self.reply("pong")
            return

        if kind in ("post:join", "post:leave"):
            post_id = _extract_id(data, "postId", "post_id")
            if post_id is None:
                await self.error("postId is required")
            elif kind == "post:leave":
                await self._leave(post_room(post_id))
            elif await run_in_threadpool(self._post_visible, post_id):
                await self._join(post_room(post_id))
            else:
                await self.error("Post not found")
            return

        if kind in ("comment:join", "comment:leave"):
            comment_id = _extract_id(data, "commentId", "comment_id")
            if comment_id is None:
                await self.error("commentId is required")
            elif kind == "comment:leave":
                await self._leave(comment_room(comment_id))
            elif await run_in_threadpool(self._comment_visible, comment_id):
                await self._join(comment_room(comment_id))
            else:
                await self.error("Comment not found")
            return

        if kind in ("conversation:join", "conversation:leave", *TYPING_START, *TYPING_STOP):
            conversation_id = _extract_id(data, "conversationId", "conversation_id")
            if conversation_id is None:
                await self.error("conversationId is required")
            elif kind == "conversation:leave":
                await self._leave(conversation_room(conversation_id))
            elif not await self._participant(conversation_id):
                await self.error("You are not a participant in this conversation")
            elif kind == "conversation:join":
                await self._join(conversation_room(conversation_id))
            else:
                self.hub.typing(self.connection, conversation_id, kind in TYPING_START)
            return

        if kind == "message:delivered":
            message_id = _extract_id(data, "messageId", "message_id")
            if message_id is None:
                await self.error("messageId is required")
                return
            try:
                await run_in_threadpool(self._acknowledge_delivery, message_id)
            except ServiceError as exc:
                await self.error(exc.message)
            return

        await self.error(f"Unknown message type: {kind}")


def _authenticate(session_factory: Callable[[], Session], token: str | None) -> int | None:
    with session_factory() as db:
        user = resolve_token_user(db, token)
        return user.id if user is not None else None


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    session_factory: SessionFactoryDep,
    token: str | None = Query(None),
) -> None:
    """Authenticate, register with the hub and serve client messages until disconnect."""
    user_id = await run_in_threadpool(_authenticate, session_factory, token)
    if user_id is None:
        await websocket.close(code=4001, reason="Invalid token")
        return

    hub = get_hub()
    await websocket.accept()
    connection = await hub.connect(websocket, user_id)
    session = ClientSession(hub, connection, session_factory)
    logger.info("WebSocket connected: user=%s connection=%s", user_id, connection.id)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                break
            except ValueError:
                await session.error("Invalid JSON")
                continue
            await session.handle(message)
    finally:
        await hub.disconnect(connection)
        logger.info("WebSocket disconnected: user=%s connection=%s", user_id, connection.id)

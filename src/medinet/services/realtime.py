"""Real-time fanout hub: rooms of WebSocket connections fed by the event bus.

The event bus is synchronous and may publish from worker threads, so the hub
only enqueues there; a dispatcher task on the event loop routes each event to
its rooms and forwards it to the cross-process pub/sub adapter. Events that
arrive from other nodes are delivered locally only.

Delivery is at-most-once per connection within a process and best-effort
across processes; nothing is buffered or replayed for disconnected clients.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medinet.core.settings import settings
from medinet.db.session import SessionLocal
from medinet.db.time import utcnow
from medinet.models import User
from medinet.services import events as ev
from medinet.services.events import EVENT_TYPES, WILDCARD, Event, EventBus

logger = logging.getLogger(__name__)

GLOBAL_ROOM = "*"

# Name each event kind carries on the wire.
WIRE_NAMES = {
    ev.POST_CREATED: "post:new",
    ev.POST_UPDATED: "post:updated",
    ev.POST_DELETED: "post:deleted",
    ev.POST_REPOSTED: "post:repost",
    ev.POST_UNREPOSTED: "post:unrepost",
    ev.COMMENT_CREATED: "comment:new",
    ev.COMMENT_REPLIED: "comment:reply",
    ev.COMMENT_UPDATED: "comment:updated",
    ev.COMMENT_DELETED: "comment:deleted",
    ev.VOTE_UPVOTE: "vote:update",
    ev.VOTE_DOWNVOTE: "vote:update",
    ev.VOTE_REMOVED: "vote:update",
    ev.MESSAGE_CREATED: "message:new",
    ev.MESSAGE_UPDATED: "message:updated",
    ev.MESSAGE_DELETED: "message:deleted",
    ev.MESSAGE_DELIVERED: "message:delivered",
    ev.MESSAGE_REACTION_ADDED: "message:reaction:added",
    ev.MESSAGE_REACTION_REMOVED: "message:reaction:removed",
    ev.CONVERSATION_READ: "conversation:read",
    ev.TYPING_STATUS: "typing:status",
    ev.NOTIFICATION_NEW: "notification:new",
    ev.PRESENCE_ONLINE: "user:online",
    ev.PRESENCE_OFFLINE: "user:offline",
}


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def post_room(post_id: int) -> str:
    return f"post:{post_id}"


def comment_room(comment_id: int) -> str:
    return f"comment:{comment_id}"


def conversation_room(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


@dataclass(frozen=True)
class Route:
    """Where an event goes and under which name."""

    event: str
    rooms: tuple[str, ...]
    exclude_user_id: int | None = None


def route_event(event: Event) -> Route | None:
    """Map a bus event to its wire name and target rooms.

    Returns None for events that carry no routable target.
    """
    data = event.data
    kind = event.type
    rooms: list[str] = []
    exclude = None

    if kind == ev.POST_CREATED:
        rooms = [GLOBAL_ROOM]
    elif kind == ev.POST_UPDATED:
        rooms = [post_room(data["post_id"])]
    elif kind == ev.POST_DELETED:
        rooms = [post_room(data["post_id"]), GLOBAL_ROOM]
    elif kind == ev.POST_REPOSTED:
        rooms = [post_room(data["original_post_id"]), GLOBAL_ROOM]
    elif kind == ev.POST_UNREPOSTED:
        rooms = [post_room(data["original_post_id"])]
    elif kind in (ev.COMMENT_CREATED, ev.COMMENT_UPDATED, ev.COMMENT_DELETED):
        rooms = [post_room(data["post_id"])]
    elif kind == ev.COMMENT_REPLIED:
        rooms = [post_room(data["post_id"])]
        if data.get("parent_comment_id"):
            rooms.append(comment_room(data["parent_comment_id"]))
    elif kind in (ev.VOTE_UPVOTE, ev.VOTE_DOWNVOTE, ev.VOTE_REMOVED):
        if data.get("entity_type") == "comment":
            rooms = [comment_room(data["entity_id"])]
        else:
            rooms = [post_room(data["entity_id"])]
    elif kind in (ev.MESSAGE_CREATED, ev.MESSAGE_UPDATED, ev.MESSAGE_DELETED):
        rooms = [conversation_room(data["conversation_id"])]
        if data.get("recipient_id") is not None:
            rooms.append(user_room(data["recipient_id"]))
    elif kind == ev.MESSAGE_DELIVERED:
        rooms = [user_room(data["sender_id"])]
    elif kind in (ev.MESSAGE_REACTION_ADDED, ev.MESSAGE_REACTION_REMOVED):
        rooms = [conversation_room(data["conversation_id"])]
    elif kind == ev.CONVERSATION_READ:
        rooms = [user_room(data["recipient_id"])]
    elif kind == ev.TYPING_STATUS:
        rooms = [conversation_room(data["conversation_id"])]
        exclude = data.get("user_id")
    elif kind == ev.NOTIFICATION_NEW:
        rooms = [user_room(data["user_id"])]
    elif kind in (ev.PRESENCE_ONLINE, ev.PRESENCE_OFFLINE):
        rooms = [GLOBAL_ROOM]
        exclude = data.get("user_id")

    if not rooms:
        return None
    return Route(event=WIRE_NAMES[kind], rooms=tuple(rooms), exclude_user_id=exclude)


def encode_event(event: Event, node_id: str) -> str:
    return json.dumps({"node_id": node_id, "event": event.to_dict()})


def decode_event(raw: str | bytes, node_id: str) -> Event | None:
    """Parse an adapter message; messages published by ``node_id`` itself are skipped."""
    try:
        payload = json.loads(raw)
        if payload.get("node_id") == node_id:
            return None
        body = payload["event"]
        if body["type"] not in EVENT_TYPES:
            return None
        return Event(
            type=body["type"],
            timestamp=datetime.fromisoformat(body["timestamp"]),
            data=dict(body.get("data") or {}),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Dropping malformed pub/sub message: %s", exc)
        return None


class SocketLike(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ClientConnection:
    """One accepted WebSocket and the rooms it joined."""

    def __init__(self, websocket: SocketLike, user_id: int) -> None:
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.rooms: set[str] = set()
        self.conversations: set[int] = set()
        self.closed = False
        self.heartbeat: asyncio.Task[None] | None = None

    async def send(self, message: dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            await self.websocket.send_json(message)
            return True
        except Exception as exc:  # noqa: BLE001 - a dead socket must not stop fanout
            logger.debug("Send to connection %s failed: %s", self.id, exc)
            self.closed = True
            return False


class PresenceStore:
    """Persists online state and last-seen timestamps on the user row."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    def _write(self, user_id: int, **values: Any) -> None:
        try:
            with self.session_factory() as db:
                db.execute(update(User).where(User.id == user_id).values(**values))
                db.commit()
        except SQLAlchemyError as exc:
            logger.warning("Presence update failed for user %s: %s", user_id, exc)

    def set_online(self, user_id: int) -> None:
        self._write(user_id, is_online=True, last_seen_at=utcnow())

    def set_offline(self, user_id: int) -> None:
        self._write(user_id, is_online=False, last_seen_at=utcnow())

    def touch(self, user_id: int) -> None:
        self._write(user_id, last_seen_at=utcnow())


class RedisPubSubAdapter:
    """Cross-process fanout over one Redis channel.

    Uses one connection for publishing and a dedicated one for the
    subscription. Errors are logged; they never propagate to the hub.
    """

    def __init__(
        self,
        url: str,
        channel: str,
        node_id: str,
        on_event: Callable[[Event], Awaitable[None]],
    ) -> None:
        self.url = url
        self.channel = channel
        self.node_id = node_id
        self.on_event = on_event
        self._pub: aioredis.Redis | None = None
        self._sub: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._task: asyncio.Task[None] | None = None

    def _client(self) -> aioredis.Redis:
        return aioredis.Redis.from_url(
            self.url,
            socket_connect_timeout=2.0,
            socket_timeout=5.0,
            health_check_interval=30,
            retry_on_timeout=True,
        )

    async def start(self) -> None:
        """Connect both clients and subscribe; raises if Redis is unreachable."""
        self._pub = self._client()
        self._sub = self._client()
        await asyncio.gather(self._pub.ping(), self._sub.ping())
        self._pubsub = self._sub.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(self.channel)
        self._task = asyncio.create_task(self._listen())
        logger.info("Pub/sub adapter subscribed to %s as node %s", self.channel, self.node_id)

    async def publish(self, event: Event) -> None:
        if self._pub is None:
            return
        try:
            await self._pub.publish(self.channel, encode_event(event, self.node_id))
        except (RedisError, OSError) as exc:
            logger.warning("Pub/sub publish failed for %s: %s", event.type, exc)

    async def _listen(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(timeout=1.0)
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as exc:
                logger.warning("Pub/sub receive failed: %s", exc)
                await asyncio.sleep(1.0)
                continue
            if not message or message.get("type") != "message":
                continue
            event = decode_event(message["data"], self.node_id)
            if event is not None:
                await self.on_event(event)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        try:
            if self._pubsub is not None:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            for client in (self._pub, self._sub):
                if client is not None:
                    await client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("Pub/sub shutdown error: %s", exc)
        self._pub = self._sub = self._pubsub = None


class RealtimeHub:
    """Rooms, connections, presence and typing for one process."""

    def __init__(
        self,
        *,
        adapter_url: str | None = None,
        channel: str | None = None,
        presence: PresenceStore | None = None,
        typing_throttle: float | None = None,
        heartbeat_interval: float | None = None,
        grace_period: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        node_id: str | None = None,
    ) -> None:
        self.node_id = node_id or uuid.uuid4().hex
        self.adapter_url = adapter_url
        self.channel = channel or settings.pubsub_channel
        self.presence = presence or PresenceStore()
        self.typing_throttle = (
            settings.typing_throttle_seconds if typing_throttle is None else typing_throttle
        )
        self.heartbeat_interval = (
            settings.presence_heartbeat_seconds if heartbeat_interval is None else heartbeat_interval
        )
        self.grace_period = settings.presence_grace_seconds if grace_period is None else grace_period
        self._clock = clock

        self._connections: dict[str, ClientConnection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()
        self._typing_last: dict[tuple[int, int], float] = {}

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[Event] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self.adapter: RedisPubSubAdapter | None = None
        self._bus: EventBus | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        """Start the dispatcher and, when configured, the pub/sub adapter."""
        if self._dispatcher is not None and not self._dispatcher.done():
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())

        if self.adapter_url:
            adapter = RedisPubSubAdapter(self.adapter_url, self.channel, self.node_id, self.deliver_local)
            try:
                await adapter.start()
                self.adapter = adapter
            except (RedisError, OSError) as exc:
                logger.warning("Pub/sub adapter unavailable, running single-node: %s", exc)
                await adapter.stop()
                self.adapter = None

    async def stop(self) -> None:
        self.detach()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        for task in list(self._background):
            task.cancel()
        if self.adapter is not None:
            await self.adapter.stop()
            self.adapter = None
        for connection in list(self._connections.values()):
            if connection.heartbeat is not None:
                connection.heartbeat.cancel()
            close = getattr(connection.websocket, "close", None)
            if close is not None:
                try:
                    await close(code=1001)
                except Exception as exc:  # noqa: BLE001 - shutting down regardless
                    logger.debug("Close failed for connection %s: %s", connection.id, exc)
        self._connections.clear()
        self._rooms.clear()
        self._loop = None
        self._queue = None

    def attach(self, bus: EventBus) -> None:
        """Subscribe to every kind published on ``bus``."""
        self.detach()
        self._bus = bus
        self._unsubscribe = bus.subscribe(WILDCARD, self.enqueue)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._bus = None

    # -- dispatch ------------------------------------------------------

    def enqueue(self, event: Event) -> None:
        """Bus handler; safe to call from any thread."""
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, event)

    async def _dispatch_loop(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self.deliver_local(event)
                if self.adapter is not None:
                    await self.adapter.publish(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - one bad event must not stop the hub
                logger.warning("Realtime dispatch failed for %s: %s", event.type, exc)

    async def deliver_local(self, event: Event) -> int:
        """Send ``event`` to every local connection in its rooms, once each."""
        route = route_event(event)
        if route is None:
            return 0

        async with self._lock:
            if GLOBAL_ROOM in route.rooms:
                targets = list(self._connections.values())
            else:
                ids: set[str] = set()
                for room in route.rooms:
                    ids.update(self._rooms.get(room, ()))
                targets = [self._connections[cid] for cid in ids if cid in self._connections]

        message = {"event": route.event, "data": event.to_dict()}
        delivered = 0
        for connection in targets:
            if route.exclude_user_id is not None and connection.user_id == route.exclude_user_id:
                continue
            if await connection.send(message):
                delivered += 1
            else:
                await self._drop(connection)
        return delivered

    async def _drop(self, connection: ClientConnection) -> None:
        async with self._lock:
            self._remove(connection)

    def _remove(self, connection: ClientConnection) -> None:
        self._connections.pop(connection.id, None)
        for room in list(connection.rooms):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(connection.id)
                if not members:
                    del self._rooms[room]
        connection.rooms.clear()
        connection.closed = True

    def publish(self, event_type: str, data: dict[str, Any]) -> None:
        """Publish through the attached bus, or deliver directly when detached."""
        if self._bus is not None:
            self._bus.publish(event_type, data)
            return
        self.enqueue(Event(type=event_type, timestamp=datetime.now().astimezone(), data=data))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # -- connections and rooms -----------------------------------------

    async def connect(self, websocket: SocketLike, user_id: int) -> ClientConnection:
        """Register an accepted socket, join its user room and mark the user online."""
        connection = ClientConnection(websocket, user_id)
        async with self._lock:
            self._connections[connection.id] = connection
            self._join(connection, user_room(user_id))

        await asyncio.to_thread(self.presence.set_online, user_id)
        self.publish(ev.PRESENCE_ONLINE, {"user_id": user_id})
        if self.heartbeat_interval > 0:
            connection.heartbeat = self._spawn(self._heartbeat(connection))
        return connection

    async def _heartbeat(self, connection: ClientConnection) -> None:
        while not connection.closed:
            await asyncio.sleep(self.heartbeat_interval)
            if connection.closed:
                return
            await asyncio.to_thread(self.presence.touch, connection.user_id)

    async def disconnect(self, connection: ClientConnection) -> None:
        """Stop fanout to ``connection`` now; settle presence after the grace period."""
        if connection.heartbeat is not None:
            connection.heartbeat.cancel()
            connection.heartbeat = None
        async with self._lock:
            self._remove(connection)
            if self.connection_count(connection.user_id) == 0:
                self._forget_typing(connection.user_id)
        if self.grace_period > 0:
            self._spawn(self._settle_presence(connection.user_id))
        else:
            await self._settle_presence(connection.user_id)

    async def _settle_presence(self, user_id: int) -> None:
        if self.grace_period > 0:
            await asyncio.sleep(self.grace_period)
        if self.connection_count(user_id) == 0:
            await asyncio.to_thread(self.presence.set_offline, user_id)
            self.publish(ev.PRESENCE_OFFLINE, {"user_id": user_id})
        else:
            await asyncio.to_thread(self.presence.touch, user_id)

    def _join(self, connection: ClientConnection, room: str) -> None:
        self._rooms.setdefault(room, set()).add(connection.id)
        connection.rooms.add(room)

    async def join(self, connection: ClientConnection, room: str) -> None:
        async with self._lock:
            if connection.id in self._connections:
                self._join(connection, room)

    async def leave(self, connection: ClientConnection, room: str) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(connection.id)
                if not members:
                    del self._rooms[room]
            connection.rooms.discard(room)

    def connection_count(self, user_id: int | None = None) -> int:
        if user_id is None:
            return len(self._connections)
        return sum(1 for c in self._connections.values() if c.user_id == user_id)

    def room_members(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    # -- typing --------------------------------------------------------

    def _forget_typing(self, user_id: int) -> None:
        for key in [key for key in self._typing_last if key[0] == user_id]:
            del self._typing_last[key]

    def typing(self, connection: ClientConnection, conversation_id: int, is_typing: bool) -> bool:
        """Emit a typing indicator to the conversation room.

        Starts are throttled per (user, conversation); a stop is always sent
        and resets the throttle. Returns whether an event was emitted.
        """
        key = (connection.user_id, conversation_id)
        now = self._clock()
        if is_typing:
            last = self._typing_last.get(key)
            if last is not None and now - last < self.typing_throttle:
                return False
            self._typing_last[key] = now
        else:
            self._typing_last.pop(key, None)

        self.publish(
            ev.TYPING_STATUS,
            {"conversation_id": conversation_id, "user_id": connection.user_id, "typing": is_typing},
        )
        return True


_hub: RealtimeHub | None = None


def get_hub() -> RealtimeHub:
    """Return the process-wide hub."""
    global _hub
    if _hub is None:
        _hub = RealtimeHub(adapter_url=settings.effective_pubsub_url)
    return _hub

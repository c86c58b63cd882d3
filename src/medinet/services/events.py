"""In-process publish/subscribe bus for domain events.

Command handlers publish after their transaction commits; subscribers (the
real-time hub, tests) receive events synchronously in publication order and
must hand work off rather than block.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

logger = logging.getLogger(__name__)

POST_CREATED = "post:created"
POST_UPDATED = "post:updated"
POST_DELETED = "post:deleted"
POST_REPOSTED = "post:reposted"
POST_UNREPOSTED = "post:unreposted"

COMMENT_CREATED = "comment:created"
COMMENT_REPLIED = "comment:replied"
COMMENT_UPDATED = "comment:updated"
COMMENT_DELETED = "comment:deleted"

VOTE_UPVOTE = "vote:upvote"
VOTE_DOWNVOTE = "vote:downvote"
VOTE_REMOVED = "vote:removed"

MESSAGE_CREATED = "message:created"
MESSAGE_UPDATED = "message:updated"
MESSAGE_DELETED = "message:deleted"
MESSAGE_DELIVERED = "message:delivered"
MESSAGE_REACTION_ADDED = "message:reaction:added"
MESSAGE_REACTION_REMOVED = "message:reaction:removed"
CONVERSATION_READ = "conversation:read"
TYPING_STATUS = "typing:status"

NOTIFICATION_NEW = "notification:new"

PRESENCE_ONLINE = "user:online"
PRESENCE_OFFLINE = "user:offline"

EVENT_TYPES = frozenset(
    {
        POST_CREATED,
        POST_UPDATED,
        POST_DELETED,
        POST_REPOSTED,
        POST_UNREPOSTED,
        COMMENT_CREATED,
        COMMENT_REPLIED,
        COMMENT_UPDATED,
        COMMENT_DELETED,
        VOTE_UPVOTE,
        VOTE_DOWNVOTE,
        VOTE_REMOVED,
        MESSAGE_CREATED,
        MESSAGE_UPDATED,
        MESSAGE_DELETED,
        MESSAGE_DELIVERED,
        MESSAGE_REACTION_ADDED,
        MESSAGE_REACTION_REMOVED,
        CONVERSATION_READ,
        TYPING_STATUS,
        NOTIFICATION_NEW,
        PRESENCE_ONLINE,
        PRESENCE_OFFLINE,
    }
)

WILDCARD = "*"

Handler = Callable[["Event"], None]


@dataclass(frozen=True)
class Event:
    """A published event: kind, generation timestamp and an ids-only payload."""

    type: str
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            "data": dict(self.data),
        }


class EventBus:
    """Synchronous notifier with per-kind and wildcard subscriptions."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._last_timestamp: datetime | None = None

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` (or ``"*"``) and return an unsubscribe."""
        if event_type != WILDCARD and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[event_type]:
                    self._handlers[event_type].remove(handler)

        return unsubscribe

    def _next_timestamp(self) -> datetime:
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def publish(self, event_type: str, data: dict[str, Any] | None = None) -> Event:
        """Build an event and deliver it to every matching subscriber.

        Subscriber failures are logged and never propagate to the publisher,
        whose mutation has already committed.
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")

        with self._lock:
            event = Event(type=event_type, timestamp=self._next_timestamp(), data=dict(data or {}))
            handlers = [*self._handlers.get(event_type, ()), *self._handlers.get(WILDCARD, ())]

        for handler in handlers:
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001 - subscribers must not break publishers
                logger.warning("Event handler failed for %s: %s", event_type, exc)
        return event

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_event_bus = EventBus()


def get_event_bus() -> EventBus:
    """Return the process-wide event bus."""
    return _event_bus

# mypy: ignore-errors
"""Tests for the in-process event bus."""

from datetime import UTC, datetime

import pytest

from medinet.services.events import (
    EVENT_TYPES,
    POST_CREATED,
    VOTE_UPVOTE,
    WILDCARD,
    EventBus,
)


def test_subscribers_receive_events_in_publication_order() -> None:
    bus = EventBus()
    received = []
    bus.subscribe(POST_CREATED, lambda e: received.append(e.data["post_id"]))

    for post_id in (1, 2, 3):
        bus.publish(POST_CREATED, {"post_id": post_id})

    assert received == [1, 2, 3]


def test_wildcard_subscriber_sees_every_kind() -> None:
    bus = EventBus()
    kinds = []
    bus.subscribe(WILDCARD, lambda e: kinds.append(e.type))

    bus.publish(POST_CREATED, {"post_id": 1})
    bus.publish(VOTE_UPVOTE, {"entity_type": "post", "entity_id": 1, "user_id": 2})

    assert kinds == [POST_CREATED, VOTE_UPVOTE]


def test_unknown_event_type_is_rejected() -> None:
    bus = EventBus()
    with pytest.raises(ValueError):
        bus.publish("post:exploded", {})
    with pytest.raises(ValueError):
        bus.subscribe("post:exploded", lambda e: None)


def test_failing_subscriber_does_not_reach_publisher() -> None:
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(POST_CREATED, broken)
    bus.subscribe(POST_CREATED, seen.append)

    event = bus.publish(POST_CREATED, {"post_id": 7})

    assert seen == [event]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(POST_CREATED, seen.append)
    unsubscribe()
    bus.publish(POST_CREATED, {"post_id": 1})
    assert seen == []


def test_timestamps_are_strictly_increasing_with_a_frozen_clock() -> None:
    frozen = datetime(2024, 1, 1, tzinfo=UTC)
    bus = EventBus(clock=lambda: frozen)

    first = bus.publish(POST_CREATED, {"post_id": 1})
    second = bus.publish(POST_CREATED, {"post_id": 2})

    assert second.timestamp > first.timestamp


def test_payload_is_copied_and_serializable() -> None:
    bus = EventBus()
    data = {"post_id": 1}
    event = bus.publish(POST_CREATED, data)
    data["post_id"] = 99

    body = event.to_dict()
    assert body["type"] == POST_CREATED
    assert body["data"] == {"post_id": 1}
    assert datetime.fromisoformat(body["timestamp"]) == event.timestamp


def test_event_kinds_form_a_closed_set() -> None:
    assert "vote:upvote" in EVENT_TYPES
    assert "typing:status" in EVENT_TYPES
    assert WILDCARD not in EVENT_TYPES

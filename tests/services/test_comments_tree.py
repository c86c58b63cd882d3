# mypy: ignore-errors
"""Tests for comment sorting and tree assembly."""

from datetime import timedelta

import pytest

from medinet.core.errors import NotFoundError, ValidationFailed
from medinet.db.time import utcnow
from medinet.models import Comment, Post
from medinet.schemas.comment import CommentCreate
from medinet.services import comments as comments_module
from medinet.services.comments import (
    CommentService,
    comment_order,
    build_forest,
    sort_comments,
    wilson_lower_bound,
)
from medinet.services.events import EventBus


@pytest.fixture
def service(db_session) -> CommentService:
    return CommentService(db_session, EventBus())


def test_wilson_bound_prefers_volume_over_a_lucky_ratio() -> None:
    assert wilson_lower_bound(0, 0) == 0.0
    assert wilson_lower_bound(100, 10) > wilson_lower_bound(2, 0)
    assert 0.0 < wilson_lower_bound(5, 5) < 0.5


def test_sort_strategies_break_ties_by_recency() -> None:
    now = utcnow()
    old = Comment(id=1, post_id=1, user_id=1, content="old", upvotes=5, downvotes=0, score=5, created_at=now - timedelta(hours=2))
    new = Comment(id=2, post_id=1, user_id=1, content="new", upvotes=0, downvotes=0, score=0, created_at=now)
    tied = Comment(id=3, post_id=1, user_id=1, content="tied", upvotes=5, downvotes=0, score=5, created_at=now - timedelta(hours=1))

    assert [c.id for c in sort_comments([old, new, tied], "new")] == [2, 3, 1]
    assert [c.id for c in sort_comments([old, new, tied], "top")] == [3, 1, 2]
    assert [c.id for c in sort_comments([old, new, tied], "best")] == [3, 1, 2]


def test_sort_rejects_unknown_strategy() -> None:
    with pytest.raises(ValueError):
        sort_comments([], "random")


def test_nested_replies_and_counters(service, db_session, test_post, test_user, other_user) -> None:
    c1 = service.create_comment(other_user, CommentCreate(post_id=test_post.id, content="C1"))
    c2 = service.create_comment(test_user, CommentCreate(post_id=test_post.id, content="C2", parent_comment_id=c1.id))
    c3 = service.create_comment(other_user, CommentCreate(post_id=test_post.id, content="C3", parent_comment_id=c2.id))

    items, paginated = service.list_comments(test_user, test_post.id, tree=True, sort="new")

    assert paginated is False
    assert [node["id"] for node in items] == [c1.id]
    assert [node["id"] for node in items[0]["replies"]] == [c2.id]
    assert [node["id"] for node in items[0]["replies"][0]["replies"]] == [c3.id]

    db_session.refresh(c1)
    db_session.expire_all()
    assert db_session.get(Comment, c1.id).replies_count == 1
    assert db_session.get(Post, test_post.id).comments_count == 1


def test_deep_threads_build_without_recursion(make_comment, test_post, test_user) -> None:
    parent = None
    comments = []
    for depth in range(1500):
        parent = make_comment(test_post, test_user, f"depth {depth}", parent)
        comments.append(parent)

    forest = build_forest(comments, "new")

    node = forest[0]
    depth = 0
    while node["replies"]:
        node = node["replies"][0]
        depth += 1
    assert depth == 1499


def test_subtree_and_viewer_votes(make_comment, test_post, test_user) -> None:
    root = make_comment(test_post, test_user, "root")
    child = make_comment(test_post, test_user, "child", root)

    replies = build_forest([root, child], "best", votes={child.id: "upvote"}, root_id=root.id)

    assert [node["id"] for node in replies] == [child.id]
    assert replies[0]["user_vote"] == "upvote"
    assert build_forest([root, child], "best", root_id=999) == []


def test_flat_mode_pages_top_level_only(service, make_comment, test_post, test_user) -> None:
    first = make_comment(test_post, test_user, "first")
    make_comment(test_post, test_user, "reply", first)
    second = make_comment(test_post, test_user, "second")

    items, paginated = service.list_comments(test_user, test_post.id, sort="new", limit=1, offset=0)

    assert paginated is True
    assert [item["id"] for item in items] == [second.id]
    items, _ = service.list_comments(test_user, test_post.id, sort="new", limit=1, offset=1)
    assert [item["id"] for item in items] == [first.id]


def test_flat_new_and_top_are_ranked_by_the_database(service, mocker, make_comment, test_post, test_user) -> None:
    low = make_comment(test_post, test_user, "low", upvotes=1, score=1)
    high = make_comment(test_post, test_user, "high", upvotes=9, score=9)
    mid = make_comment(test_post, test_user, "mid", upvotes=4, score=4)
    in_memory = mocker.spy(comments_module, "sort_comments")

    items, _ = service.list_comments(test_user, test_post.id, sort="top", limit=2, offset=1)
    assert [item["id"] for item in items] == [mid.id, low.id]
    items, _ = service.list_comments(test_user, test_post.id, sort="new", limit=2, offset=0)
    assert [item["id"] for item in items] == [mid.id, high.id]
    assert in_memory.call_count == 0

    items, _ = service.list_comments(test_user, test_post.id, sort="best", limit=1, offset=0)
    assert [item["id"] for item in items] == [high.id]
    assert in_memory.call_count == 1

    with pytest.raises(ValueError):
        comment_order("best")


def test_reply_must_share_the_post(service, make_post, make_comment, test_post, test_user) -> None:
    elsewhere = make_comment(make_post(test_user, "other"), test_user)

    with pytest.raises(ValidationFailed):
        service.create_comment(
            test_user,
            CommentCreate(post_id=test_post.id, content="x", parent_comment_id=elsewhere.id),
        )
    with pytest.raises(NotFoundError):
        service.create_comment(
            test_user,
            CommentCreate(post_id=test_post.id, content="x", parent_comment_id=999_999),
        )


def test_delete_decrements_the_counter_it_incremented(service, db_session, test_post, test_user) -> None:
    top = service.create_comment(test_user, CommentCreate(post_id=test_post.id, content="top"))
    reply = service.create_comment(test_user, CommentCreate(post_id=test_post.id, content="r", parent_comment_id=top.id))

    service.delete_comment(test_user, reply.id)
    db_session.expire_all()
    assert db_session.get(Comment, top.id).replies_count == 0
    assert db_session.get(Post, test_post.id).comments_count == 1

    service.delete_comment(test_user, top.id)
    db_session.expire_all()
    assert db_session.get(Post, test_post.id).comments_count == 0

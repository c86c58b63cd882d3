# src/medinet/api/v1/endpoints/posts.py
"""Post-related endpoints for the MediNet API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Response, status

from medinet.core.errors import NotFoundError
from medinet.models import User
from medinet.repositories.post_repo import PostRepository
from medinet.schemas.comment import CommentSort
from medinet.schemas.common import envelope, paginate
from medinet.schemas.post import FeedSort, PostCreate, PostUpdate, RepostCreate
from medinet.services.comments import CommentService
from medinet.services.feed import FeedService, serialize_post, serialize_posts
from medinet.services.posts import PostService
from medinet.services.voting import ENTITY_POST, VoteOutcome, VotingEngine

from ..dependencies import CurrentUserDep, EventBusDep, FeedCacheDep, SessionDep

router = APIRouter(prefix="/posts", tags=["posts"])


def vote_payload(outcome: VoteOutcome) -> dict[str, Any]:
    target = outcome.target
    return {
        "id": target.id,
        "upvotes": target.upvotes,
        "downvotes": target.downvotes,
        "score": target.score,
        "user_vote": outcome.user_vote,
    }


def _require_visible(db, viewer: User, post_id: int) -> None:
    if PostRepository(db).get_visible(post_id, viewer.id) is None:
        raise NotFoundError("Post not found")


@router.get("")
def list_feed(
    current_user: CurrentUserDep,
    db: SessionDep,
    cache: FeedCacheDep,
    response: Response,
    sort: FeedSort = Query("new"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of posts to return"),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    """Return the viewer's feed page under the requested ranking."""
    items, cache_status = FeedService(db, cache).get_feed(current_user.id, sort, limit, offset)
    if cache_status is not None:
        response.headers["X-Cache"] = cache_status
    return envelope(items, pagination=paginate(limit, offset, len(items)))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_post(
    payload: PostCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    post = PostService(db, bus, cache).create_post(current_user, payload)
    return envelope(serialize_post(db, current_user.id, post), message="Post created successfully")


@router.get("/{post_id}")
def get_post(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
    comment_sort: CommentSort = Query("best"),
    comment_limit: int = Query(50, ge=1, le=100),
) -> dict[str, Any]:
    data = PostService(db, bus, cache).get_post_detail(
        current_user,
        post_id,
        comment_sort=comment_sort,
        comment_limit=comment_limit,
    )
    return envelope(data)


@router.put("/{post_id}")
def update_post(
    post_id: int,
    payload: PostUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    post = PostService(db, bus, cache).update_post(current_user, post_id, payload)
    return envelope(serialize_post(db, current_user.id, post), message="Post updated successfully")


@router.delete("/{post_id}")
def delete_post(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    PostService(db, bus, cache).delete_post(current_user, post_id)
    return envelope(message="Post deleted successfully")


@router.post("/{post_id}/upvote")
def upvote_post(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    _require_visible(db, current_user, post_id)
    outcome = VotingEngine(db, bus).upvote(current_user, ENTITY_POST, post_id)
    return envelope(vote_payload(outcome))


@router.post("/{post_id}/downvote")
def downvote_post(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    _require_visible(db, current_user, post_id)
    outcome = VotingEngine(db, bus).downvote(current_user, ENTITY_POST, post_id)
    return envelope(vote_payload(outcome))


@router.delete("/{post_id}/vote")
def remove_post_vote(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    _require_visible(db, current_user, post_id)
    outcome = VotingEngine(db, bus).clear(current_user, ENTITY_POST, post_id)
    message = "Vote removed" if outcome.changed else "No vote to remove"
    return envelope(vote_payload(outcome), message=message)


@router.post("/{post_id}/repost", status_code=status.HTTP_201_CREATED)
def repost(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
    payload: RepostCreate | None = None,
) -> dict[str, Any]:
    content = payload.content if payload is not None else None
    new_post = PostService(db, bus, cache).repost(current_user, post_id, content)
    return envelope(serialize_post(db, current_user.id, new_post), message="Post reposted successfully")


@router.delete("/{post_id}/repost")
def unrepost(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    PostService(db, bus, cache).unrepost(current_user, post_id)
    return envelope(message="Repost removed successfully")


@router.get("/{post_id}/reposts")
def list_reposts(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    reposts = PostService(db, bus, cache).list_reposts(current_user, post_id, limit, offset)
    return envelope(
        serialize_posts(db, current_user.id, reposts),
        pagination=paginate(limit, offset, len(reposts)),
    )


@router.get("/{post_id}/reposted")
def has_reposted(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    return envelope(PostService(db, bus, cache).has_reposted(current_user, post_id))


@router.get("/{post_id}/comments")
def list_post_comments(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    tree: bool = Query(False, description="Return the full nested forest"),
    sort: CommentSort = Query("best"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    items, paginated = CommentService(db, bus).list_comments(
        current_user,
        post_id,
        tree=tree,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    pagination = paginate(limit, offset, len(items)) if paginated else None
    return envelope(items, pagination=pagination)

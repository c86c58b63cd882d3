# src/medinet/api/v1/endpoints/comments.py
"""Comment endpoints: create, thread view, edit, delete and votes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, status

from medinet.core.errors import NotFoundError
from medinet.models import Comment
from medinet.repositories.post_repo import PostRepository
from medinet.schemas.comment import CommentCreate, CommentOut, CommentSort, CommentUpdate
from medinet.schemas.common import envelope
from medinet.services.comments import CommentService
from medinet.services.voting import ENTITY_COMMENT, VotingEngine

from ..dependencies import CurrentUserDep, EventBusDep, SessionDep
from .posts import vote_payload

router = APIRouter(prefix="/comments", tags=["comments"])


def _serialize(comment: Comment, user_vote: str | None = None) -> dict[str, Any]:
    data = CommentOut.model_validate(comment).model_dump(mode="json")
    data["user_vote"] = user_vote
    return data


def _require_visible_comment(db, viewer_id: int, comment_id: int) -> None:
    comment = db.get(Comment, comment_id)
    if comment is None or PostRepository(db).get_visible(comment.post_id, viewer_id) is None:
        raise NotFoundError("Comment not found")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_comment(
    payload: CommentCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    comment = CommentService(db, bus).create_comment(current_user, payload)
    return envelope(_serialize(comment), message="Comment created successfully")


@router.get("/{comment_id}")
def get_comment(
    comment_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    tree: bool = Query(True),
    sort: CommentSort = Query("best"),
    reply_limit: int = Query(20, ge=1, le=100),
) -> dict[str, Any]:
    data = CommentService(db, bus).get_comment_thread(
        current_user,
        comment_id,
        tree=tree,
        sort=sort,
        reply_limit=reply_limit,
    )
    return envelope(data)


@router.put("/{comment_id}")
def update_comment(
    comment_id: int,
    payload: CommentUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    comment = CommentService(db, bus).update_comment(current_user, comment_id, payload.content)
    return envelope(_serialize(comment), message="Comment updated successfully")


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    CommentService(db, bus).delete_comment(current_user, comment_id)
    return envelope(message="Comment deleted successfully")


@router.post("/{comment_id}/upvote")
def upvote_comment(
    comment_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    _require_visible_comment(db, current_user.id, comment_id)
    outcome = VotingEngine(db, bus).upvote(current_user, ENTITY_COMMENT, comment_id)
    return envelope(vote_payload(outcome))


@router.post("/{comment_id}/downvote")
def downvote_comment(
    comment_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    _require_visible_comment(db, current_user.id, comment_id)
    outcome = VotingEngine(db, bus).downvote(current_user, ENTITY_COMMENT, comment_id)
    return envelope(vote_payload(outcome))


@router.delete("/{comment_id}/vote")
def remove_comment_vote(
    comment_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    _require_visible_comment(db, current_user.id, comment_id)
    outcome = VotingEngine(db, bus).clear(current_user, ENTITY_COMMENT, comment_id)
    return envelope(vote_payload(outcome))

"""Nested comments: the write path and the tree builder.

Trees are assembled in memory from one fetch of every comment on the post,
so depth is unbounded and no recursion is needed to build or sort them.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from medinet.core.errors import ForbiddenError, NotFoundError, ValidationFailed
from medinet.db.time import as_utc, utcnow
from medinet.models import Comment, Post, User
from medinet.repositories.post_repo import PostRepository
from medinet.schemas.comment import CommentCreate, CommentOut
from medinet.services import activity
from medinet.services.events import (
    COMMENT_CREATED,
    COMMENT_DELETED,
    COMMENT_REPLIED,
    COMMENT_UPDATED,
    EventBus,
)
from medinet.services.notifications import NotificationService
from medinet.services.voting import ENTITY_COMMENT, clamped, get_user_votes

logger = logging.getLogger(__name__)

COMMENT_SORTS = ("new", "top", "best")

# 95% confidence
WILSON_Z = 1.96


def wilson_lower_bound(upvotes: int, downvotes: int, z: float = WILSON_Z) -> float:
    """Lower bound of the Wilson score interval for the upvote proportion."""
    n = upvotes + downvotes
    if n <= 0:
        return 0.0
    p = upvotes / n
    z2 = z * z
    centre = p + z2 / (2 * n)
    margin = z * math.sqrt((p * (1 - p) + z2 / (4 * n)) / n)
    return (centre - margin) / (1 + z2 / n)


def _created_key(comment: Comment) -> tuple[datetime, int]:
    return as_utc(comment.created_at), comment.id


def sort_comments(comments: Iterable[Comment], sort: str) -> list[Comment]:
    """Sort one sibling list; every strategy breaks ties by recency."""
    if sort not in COMMENT_SORTS:
        raise ValueError(f"Unsupported sort: {sort}")
    if sort == "new":
        return sorted(comments, key=_created_key, reverse=True)
    if sort == "top":
        return sorted(comments, key=lambda c: (c.score, *_created_key(c)), reverse=True)
    return sorted(
        comments,
        key=lambda c: (wilson_lower_bound(c.upvotes, c.downvotes), *_created_key(c)),
        reverse=True,
    )


def comment_order(sort: str) -> list:
    """ORDER BY clauses for the sorts that SQL can rank; ``best`` ranks in memory."""
    recency = [Comment.created_at.desc(), Comment.id.desc()]
    if sort == "new":
        return recency
    if sort == "top":
        return [Comment.score.desc(), *recency]
    raise ValueError(f"Unsupported sort: {sort}")


def build_forest(
    comments: list[Comment],
    sort: str,
    votes: dict[int, str] | None = None,
    root_id: int | None = None,
) -> list[dict[str, Any]]:
    """Assemble serialized comments into nested ``replies`` lists.

    Args:
        comments: Every comment of the post (one fetch).
        sort: Strategy applied to each sibling list.
        votes: The viewer's votes keyed by comment id.
        root_id: When set, only the replies below this comment are returned.

    Returns:
        The sorted top-level nodes of the requested forest.
    """
    votes = votes or {}
    children: dict[int | None, list[Comment]] = defaultdict(list)
    for comment in comments:
        children[comment.parent_comment_id].append(comment)

    nodes: dict[int, dict[str, Any]] = {}
    for comment in comments:
        node = CommentOut.model_validate(comment).model_dump(mode="json")
        node["user_vote"] = votes.get(comment.id)
        node["replies"] = []
        nodes[comment.id] = node

    for parent_id, siblings in children.items():
        if parent_id in nodes:
            nodes[parent_id]["replies"] = [nodes[c.id] for c in sort_comments(siblings, sort)]

    if root_id is None:
        return [nodes[c.id] for c in sort_comments(children.get(None, []), sort)]
    return nodes[root_id]["replies"] if root_id in nodes else []


class CommentService:
    """Comment reads and writes with counter maintenance."""

    def __init__(self, db: Session, bus: EventBus) -> None:
        self.db = db
        self.bus = bus

    def _get_visible_post(self, viewer: User, post_id: int) -> Post:
        post = PostRepository(self.db).get_visible(post_id, viewer.id)
        if post is None:
            raise NotFoundError("Post not found")
        return post

    def _get_comment(self, comment_id: int) -> Comment:
        comment = self.db.get(Comment, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment

    def _all_for_post(self, post_id: int) -> list[Comment]:
        return self.db.query(Comment).filter(Comment.post_id == post_id).all()

    def _page(self, query, sort: str, limit: int, offset: int = 0) -> list[Comment]:
        if sort == "best":
            return sort_comments(query.all(), sort)[offset : offset + limit]
        return query.order_by(*comment_order(sort)).limit(limit).offset(offset).all()

    def _serialize_flat(self, viewer: User, comments: list[Comment]) -> list[dict[str, Any]]:
        votes = get_user_votes(self.db, viewer.id, ENTITY_COMMENT, [c.id for c in comments])
        items = []
        for comment in comments:
            node = CommentOut.model_validate(comment).model_dump(mode="json")
            node["user_vote"] = votes.get(comment.id)
            items.append(node)
        return items

    def list_comments(
        self,
        viewer: User,
        post_id: int,
        *,
        tree: bool = False,
        sort: str = "best",
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], bool]:
        """Return ``(items, paginated)``.

        Flat mode pages through top-level comments. Tree mode returns the whole
        forest and ignores paging.
        """
        self._get_visible_post(viewer, post_id)
        if tree:
            comments = self._all_for_post(post_id)
            votes = get_user_votes(self.db, viewer.id, ENTITY_COMMENT, [c.id for c in comments])
            return build_forest(comments, sort, votes), False

        top_level = self.db.query(Comment).filter(
            Comment.post_id == post_id, Comment.parent_comment_id.is_(None)
        )
        page = self._page(top_level, sort, limit, offset)
        return self._serialize_flat(viewer, page), True

    def get_comment_thread(
        self,
        viewer: User,
        comment_id: int,
        *,
        tree: bool = True,
        sort: str = "best",
        reply_limit: int = 20,
    ) -> dict[str, Any]:
        """Return a comment with its subtree, or with its direct replies in flat mode."""
        comment = self._get_comment(comment_id)
        self._get_visible_post(viewer, comment.post_id)

        if tree:
            comments = self._all_for_post(comment.post_id)
            votes = get_user_votes(self.db, viewer.id, ENTITY_COMMENT, [c.id for c in comments])
            replies = build_forest(comments, sort, votes, root_id=comment.id)
        else:
            direct = self.db.query(Comment).filter(Comment.parent_comment_id == comment.id)
            replies = self._serialize_flat(viewer, self._page(direct, sort, reply_limit))

        node = self._serialize_flat(viewer, [comment])[0]
        node["replies"] = replies
        return node

    def create_comment(self, user: User, payload: CommentCreate) -> Comment:
        post = self._get_visible_post(user, payload.post_id)
        parent_id = payload.parent_comment_id
        if parent_id is not None:
            parent = self.db.get(Comment, parent_id)
            if parent is None:
                raise NotFoundError("Parent comment not found")
            if parent.post_id != post.id:
                raise ValidationFailed("Parent comment does not belong to this post")

        comment = Comment(
            post_id=post.id,
            user_id=user.id,
            parent_comment_id=parent_id,
            content=payload.content,
        )
        self.db.add(comment)
        self.db.flush()
        self._adjust_counters(post.id, parent_id, +1)
        self.db.commit()
        self.db.refresh(comment)

        self.bus.publish(
            COMMENT_REPLIED if parent_id is not None else COMMENT_CREATED,
            {
                "comment_id": comment.id,
                "post_id": post.id,
                "user_id": user.id,
                "parent_comment_id": parent_id,
            },
        )
        if post.user_id != user.id:
            NotificationService(self.db, self.bus).notify(
                user_id=post.user_id,
                notification_type="post_comment",
                title=f"{user.full_name or 'Someone'} commented on your post",
                message=comment.content[:100],
                data={"post_id": post.id, "comment_id": comment.id, "user_id": user.id},
                related_user_id=user.id,
                related_post_id=post.id,
                related_comment_id=comment.id,
            )
        activity.record_activity(
            self.db,
            user_id=user.id,
            activity_type=activity.COMMENT_CREATED,
            data={"comment_id": comment.id, "post_id": post.id},
            related_post_id=post.id,
            related_comment_id=comment.id,
        )
        return comment

    def _adjust_counters(self, post_id: int, parent_id: int | None, delta: int) -> None:
        # Only top-level comments count towards the post; replies count on their parent.
        if parent_id is None:
            self.db.execute(
                update(Post)
                .where(Post.id == post_id)
                .values(comments_count=clamped(Post.comments_count, delta))
                .execution_options(synchronize_session="fetch")
            )
        else:
            self.db.execute(
                update(Comment)
                .where(Comment.id == parent_id)
                .values(replies_count=clamped(Comment.replies_count, delta))
                .execution_options(synchronize_session="fetch")
            )

    def update_comment(self, user: User, comment_id: int, content: str) -> Comment:
        comment = self._get_comment(comment_id)
        if comment.user_id != user.id:
            raise ForbiddenError("You can only edit your own comments")
        comment.content = content
        comment.is_edited = True
        comment.edited_at = utcnow()
        self.db.commit()
        self.db.refresh(comment)

        self.bus.publish(
            COMMENT_UPDATED,
            {"comment_id": comment.id, "post_id": comment.post_id, "user_id": user.id},
        )
        return comment

    def delete_comment(self, user: User, comment_id: int) -> None:
        """Delete a comment and its subtree, decrementing the counter it incremented."""
        comment = self._get_comment(comment_id)
        if comment.user_id != user.id:
            raise ForbiddenError("You can only delete your own comments")

        payload = {
            "comment_id": comment.id,
            "post_id": comment.post_id,
            "user_id": user.id,
            "parent_comment_id": comment.parent_comment_id,
        }
        self._adjust_counters(comment.post_id, comment.parent_comment_id, -1)
        self.db.delete(comment)
        self.db.commit()
        self.bus.publish(COMMENT_DELETED, payload)

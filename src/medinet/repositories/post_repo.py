"""Data access helpers for working with posts and their visibility."""
from __future__ import annotations

from sqlalchemy import Float, and_, exists, func, or_, select
from sqlalchemy.orm import Session, aliased, selectinload
from sqlalchemy.sql.elements import ColumnElement

from medinet.db.functions import hours_since
from medinet.models import Block, Connection, Post
from medinet.models.social import CONNECTION_ACCEPTED

__all__ = ["PostRepository", "visible_to"]

# Hot ranking: score / (hours_since_post + 2) ^ HOT_GRAVITY
HOT_GRAVITY = 1.5
HOT_HOUR_OFFSET = 2


def visible_to(viewer_id: int, post) -> ColumnElement[bool]:
    """Visibility predicate of ``post`` (a Post entity or alias) for ``viewer_id``.

    Own posts and public posts are visible. Connection-only posts require an
    accepted connection in either direction and no block between the pair.
    """
    connected = exists().where(
        Connection.status == CONNECTION_ACCEPTED,
        or_(
            and_(Connection.requester_id == viewer_id, Connection.addressee_id == post.user_id),
            and_(Connection.addressee_id == viewer_id, Connection.requester_id == post.user_id),
        ),
    )
    blocked = exists().where(
        or_(
            and_(Block.blocker_id == viewer_id, Block.blocked_id == post.user_id),
            and_(Block.blocker_id == post.user_id, Block.blocked_id == viewer_id),
        )
    )
    return or_(
        post.user_id == viewer_id,
        post.visibility == "public",
        and_(post.visibility == "connections", connected, ~blocked),
    )


def feed_order(sort: str) -> list:
    """ORDER BY clauses for a feed sort; ties break by recency."""
    recency = [Post.created_at.desc(), Post.id.desc()]
    if sort == "new":
        return recency
    if sort in ("top", "best"):
        return [Post.score.desc(), *recency]
    if sort == "hot":
        decay = func.power(hours_since(Post.created_at) + HOT_HOUR_OFFSET, HOT_GRAVITY, type_=Float)
        return [(Post.score / decay).desc(), *recency]
    raise ValueError(f"Unsupported sort: {sort}")


class PostRepository:
    """Thin wrapper around database access for post entities."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, post_id: int) -> Post | None:
        """Return a post by identifier."""
        return self.session.get(Post, post_id)

    def _visible_posts_cte(self, viewer_id: int):
        original = aliased(Post, name="original_post")
        return (
            select(Post.id.label("id"))
            .outerjoin(original, Post.parent_post_id == original.id)
            .where(
                visible_to(viewer_id, Post),
                or_(
                    Post.parent_post_id.is_(None),
                    and_(original.id.is_not(None), visible_to(viewer_id, original)),
                ),
            )
            .cte("visible_posts")
        )

    def _with_hydration(self, stmt):
        return stmt.options(
            selectinload(Post.media),
            selectinload(Post.original_post).selectinload(Post.media),
        )

    def list_feed(self, viewer_id: int, sort: str, limit: int, offset: int) -> list[Post]:
        """Return the viewer's feed page: visible originals and reposts of visible originals."""
        visible_posts = self._visible_posts_cte(viewer_id)
        stmt = (
            select(Post)
            .join(visible_posts, visible_posts.c.id == Post.id)
            .order_by(*feed_order(sort))
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(self._with_hydration(stmt)).unique())

    def get_visible(self, post_id: int, viewer_id: int) -> Post | None:
        """Return the post if the viewer may see it (including its original, for reposts)."""
        visible_posts = self._visible_posts_cte(viewer_id)
        stmt = (
            select(Post)
            .join(visible_posts, visible_posts.c.id == Post.id)
            .where(Post.id == post_id)
        )
        return self.session.scalars(self._with_hydration(stmt)).unique().first()

    def list_reposts(self, original_id: int, viewer_id: int, limit: int, offset: int) -> list[Post]:
        stmt = (
            select(Post)
            .where(Post.parent_post_id == original_id, visible_to(viewer_id, Post))
            .order_by(Post.created_at.desc(), Post.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt.options(selectinload(Post.media))).unique())

    def find_repost(self, user_id: int, original_id: int) -> Post | None:
        return self.session.scalars(
            select(Post).where(Post.user_id == user_id, Post.parent_post_id == original_id)
        ).first()

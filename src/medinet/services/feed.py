"""Feed ranking, post hydration and the cached feed read path."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy.orm import Session

from medinet.core.settings import settings
from medinet.db.retry import run_with_retry
from medinet.db.session import SessionLocal
from medinet.models import Post
from medinet.repositories.post_repo import PostRepository
from medinet.schemas.post import PostOut
from medinet.services.cache import FeedCache, feed_cache_key
from medinet.services.voting import ENTITY_POST, get_user_votes

logger = logging.getLogger(__name__)

CACHED_SORTS = ("new", "hot")


def serialize_posts(db: Session, viewer_id: int | None, posts: Iterable[Post]) -> list[dict[str, Any]]:
    """Dump posts (and embedded originals) with the viewer's vote on each.

    Votes for every post and every embedded original are fetched in one query.
    """
    posts = list(posts)
    ids = {post.id for post in posts}
    ids.update(post.parent_post_id for post in posts if post.parent_post_id is not None)
    votes = get_user_votes(db, viewer_id, ENTITY_POST, sorted(ids))

    items = []
    for post in posts:
        out = PostOut.model_validate(post)
        out.user_vote = votes.get(post.id)
        if out.original_post is not None:
            out.original_post.user_vote = votes.get(out.original_post.id)
        items.append(out.model_dump(mode="json"))
    return items


def serialize_post(db: Session, viewer_id: int | None, post: Post) -> dict[str, Any]:
    return serialize_posts(db, viewer_id, [post])[0]


class FeedService:
    """Read path of the home feed.

    ``offset == 0`` pages of the ``new`` and ``hot`` sorts go through the
    stale-while-revalidate cache; background refreshes open their own session
    from ``session_factory``.
    """

    def __init__(
        self,
        db: Session,
        cache: FeedCache,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.db = db
        self.cache = cache
        self.session_factory = session_factory

    def get_feed(
        self,
        viewer_id: int,
        sort: str = "new",
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Return ``(items, cache_status)``; status is None for uncached pages."""
        if offset == 0 and sort in CACHED_SORTS:
            key = feed_cache_key(viewer_id, sort, limit, offset)
            return self.cache.get_or_compute(
                key,
                lambda: self._compute(self.db, viewer_id, sort, limit, offset),
                lambda: self._refresh(viewer_id, sort, limit, offset),
            )
        return self._compute(self.db, viewer_id, sort, limit, offset), None

    def _refresh(self, viewer_id: int, sort: str, limit: int, offset: int) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            return self._compute(db, viewer_id, sort, limit, offset)

    def _compute(
        self,
        db: Session,
        viewer_id: int,
        sort: str,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        repo = PostRepository(db)
        started = time.perf_counter()
        posts = run_with_retry(
            lambda: repo.list_feed(viewer_id, sort, limit, offset),
            on_retry=db.rollback,
        )
        duration_ms = (time.perf_counter() - started) * 1000
        if duration_ms > settings.slow_query_threshold_ms:
            logger.warning(
                "Slow feed query: viewer=%s sort=%s offset=%s duration_ms=%.1f",
                viewer_id,
                sort,
                offset,
                duration_ms,
                extra={
                    "viewer": viewer_id,
                    "sort": sort,
                    "limit": limit,
                    "offset": offset,
                    "duration_ms": round(duration_ms, 1),
                    "row_count": len(posts),
                },
            )
        return serialize_posts(db, viewer_id, posts)

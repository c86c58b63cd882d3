"""Post commands: create, edit, delete, repost and the detail view."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medinet.core.errors import ForbiddenError, NotFoundError, ValidationFailed
from medinet.db.time import utcnow
from medinet.models import Post, PostMedia, Share, User
from medinet.repositories.post_repo import PostRepository
from medinet.schemas.post import PostCreate, PostUpdate
from medinet.services import activity
from medinet.services.cache import FeedCache
from medinet.services.comments import CommentService
from medinet.services.events import (
    POST_CREATED,
    POST_DELETED,
    POST_REPOSTED,
    POST_UNREPOSTED,
    POST_UPDATED,
    EventBus,
)
from medinet.services.feed import serialize_post
from medinet.services.notifications import NotificationService
from medinet.services.voting import clamped

logger = logging.getLogger(__name__)


class PostService:
    """Owns every write to ``posts``, ``post_media`` and ``shares``."""

    def __init__(self, db: Session, bus: EventBus, cache: FeedCache) -> None:
        self.db = db
        self.bus = bus
        self.cache = cache
        self.repo = PostRepository(db)

    def _get_owned(self, user: User, post_id: int) -> Post:
        post = self.repo.get_by_id(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        if post.user_id != user.id:
            raise ForbiddenError("You can only modify your own posts")
        return post

    def create_post(self, user: User, payload: PostCreate) -> Post:
        post = Post(
            user_id=user.id,
            content=payload.content,
            post_type=payload.post_type,
            visibility=payload.visibility,
        )
        post.media = [
            PostMedia(display_order=index, **item.model_dump())
            for index, item in enumerate(payload.media)
        ]
        self.db.add(post)
        self.db.commit()
        self.db.refresh(post)

        self.bus.publish(
            POST_CREATED,
            {
                "post_id": post.id,
                "user_id": user.id,
                "post_type": post.post_type,
                "visibility": post.visibility,
            },
        )
        activity.record_activity(
            self.db,
            user_id=user.id,
            activity_type=activity.POST_CREATED,
            data={"post_id": post.id},
            related_post_id=post.id,
        )
        self.cache.invalidate_viewer(user.id)
        return post

    def get_post_detail(
        self,
        viewer: User,
        post_id: int,
        *,
        comment_sort: str = "best",
        comment_limit: int = 50,
    ) -> dict[str, Any]:
        """Return the hydrated post plus its first page of top-level comments."""
        post = self.repo.get_visible(post_id, viewer.id)
        if post is None:
            raise NotFoundError("Post not found")

        if post.user_id != viewer.id:
            self.db.execute(
                update(Post)
                .where(Post.id == post.id)
                .values(views_count=Post.views_count + 1)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            self.db.refresh(post)

        data = serialize_post(self.db, viewer.id, post)
        comments, _ = CommentService(self.db, self.bus).list_comments(
            viewer,
            post.id,
            tree=False,
            sort=comment_sort,
            limit=comment_limit,
            offset=0,
        )
        data["comments"] = comments
        return data

    def update_post(self, user: User, post_id: int, payload: PostUpdate) -> Post:
        post = self._get_owned(user, post_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        for field, value in changes.items():
            setattr(post, field, value)
        post.is_edited = True
        post.edited_at = utcnow()
        self.db.commit()
        self.db.refresh(post)

        self.bus.publish(POST_UPDATED, {"post_id": post.id, "user_id": user.id})
        self.cache.invalidate_viewer(user.id)
        return post

    def delete_post(self, user: User, post_id: int) -> None:
        """Delete a post; deleting a repost is the same as un-reposting."""
        post = self._get_owned(user, post_id)
        if post.is_repost:
            self._remove_repost(post)
            return

        self.db.delete(post)
        self.db.commit()
        self.bus.publish(POST_DELETED, {"post_id": post_id, "user_id": user.id})
        self.cache.invalidate_viewer(user.id)

    def repost(self, user: User, post_id: int, content: str | None = None) -> Post:
        """Create a repost of ``post_id``; reposts of reposts point at the root."""
        target = self.repo.get_visible(post_id, user.id)
        if target is None:
            raise NotFoundError("Original post not found")
        original = target.original_post if target.is_repost else target
        if original is None:
            raise NotFoundError("Original post not found")

        if original.user_id == user.id:
            raise ValidationFailed("You cannot repost your own post")
        if self.repo.find_repost(user.id, original.id) is not None:
            raise ValidationFailed("You have already reposted this post")

        text = (content or "").strip()
        repost = Post(
            user_id=user.id,
            content=text,
            post_type="post",
            visibility="public",
            parent_post_id=original.id,
        )
        self.db.add(repost)
        self.db.add(Share(user_id=user.id, post_id=original.id, shared_content=text or None))
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise ValidationFailed("You have already reposted this post") from exc
        self.db.execute(
            update(Post)
            .where(Post.id == original.id)
            .values(shares_count=Post.shares_count + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(repost)
        self.db.refresh(original)

        self.bus.publish(
            POST_REPOSTED,
            {"repost_id": repost.id, "original_post_id": original.id, "user_id": user.id},
        )
        NotificationService(self.db, self.bus).notify(
            user_id=original.user_id,
            notification_type="post_share",
            title=f"{user.full_name or 'Someone'} reposted your post",
            data={"post_id": original.id, "repost_id": repost.id, "user_id": user.id},
            related_user_id=user.id,
            related_post_id=original.id,
        )
        activity.record_activity(
            self.db,
            user_id=user.id,
            activity_type=activity.POST_REPOSTED,
            data={"repost_id": repost.id, "original_post_id": original.id},
            related_post_id=original.id,
        )
        self.cache.invalidate_viewer(user.id)
        return repost

    def unrepost(self, user: User, post_id: int) -> None:
        repost = self.repo.find_repost(user.id, post_id)
        if repost is None:
            raise NotFoundError("You have not reposted this post")
        self._remove_repost(repost)

    def _remove_repost(self, repost: Post) -> None:
        original_id = repost.parent_post_id
        user_id = repost.user_id
        repost_id = repost.id

        self.db.execute(delete(Share).where(Share.user_id == user_id, Share.post_id == original_id))
        self.db.delete(repost)
        self.db.execute(
            update(Post)
            .where(Post.id == original_id)
            .values(shares_count=clamped(Post.shares_count, -1))
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()

        self.bus.publish(
            POST_UNREPOSTED,
            {"repost_id": repost_id, "original_post_id": original_id, "user_id": user_id},
        )
        self.cache.invalidate_viewer(user_id)

    def list_reposts(self, viewer: User, post_id: int, limit: int, offset: int) -> list[Post]:
        if self.repo.get_visible(post_id, viewer.id) is None:
            raise NotFoundError("Post not found")
        return self.repo.list_reposts(post_id, viewer.id, limit, offset)

    def has_reposted(self, user: User, post_id: int) -> dict[str, Any]:
        repost = self.repo.find_repost(user.id, post_id)
        return {"has_reposted": repost is not None, "repost_id": repost.id if repost else None}

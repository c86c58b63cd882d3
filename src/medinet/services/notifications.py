"""Notification creation, preferences and read state."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medinet.core.errors import ForbiddenError, NotFoundError
from medinet.db.time import utcnow
from medinet.models import Notification, NotificationPreference
from medinet.models.notification import NOTIFICATION_PREFERENCE_FLAGS
from medinet.services.events import NOTIFICATION_NEW, EventBus

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = tuple(NOTIFICATION_PREFERENCE_FLAGS.values())


class NotificationService:
    """Writes notifications and exposes the per-user inbox."""

    def __init__(self, db: Session, bus: EventBus) -> None:
        self.db = db
        self.bus = bus

    def get_preferences(self, user_id: int) -> NotificationPreference:
        """Return the user's preferences, creating the default row on first access."""
        preference = (
            self.db.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user_id)
            .first()
        )
        if preference is None:
            preference = NotificationPreference(user_id=user_id)
            self.db.add(preference)
            self.db.flush()
        return preference

    def update_preferences(self, user_id: int, changes: dict[str, bool]) -> NotificationPreference:
        preference = self.get_preferences(user_id)
        for key, value in changes.items():
            if key in PREFERENCE_FIELDS and value is not None:
                setattr(preference, key, bool(value))
        self.db.commit()
        return preference

    def is_enabled(self, user_id: int, notification_type: str) -> bool:
        flag = NOTIFICATION_PREFERENCE_FLAGS.get(notification_type)
        if flag is None:
            return True
        preference = (
            self.db.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user_id)
            .first()
        )
        return True if preference is None else bool(getattr(preference, flag))

    def notify(
        self,
        *,
        user_id: int,
        notification_type: str,
        title: str,
        message: str | None = None,
        data: dict[str, Any] | None = None,
        related_user_id: int | None = None,
        related_post_id: int | None = None,
        related_comment_id: int | None = None,
    ) -> Notification | None:
        """Create a notification unless the recipient opted out.

        This is a best-effort side effect of an already committed mutation:
        database failures are logged and swallowed.
        """
        try:
            if not self.is_enabled(user_id, notification_type):
                return None
            notification = Notification(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                data=data or {},
                related_user_id=related_user_id,
                related_post_id=related_post_id,
                related_comment_id=related_comment_id,
            )
            self.db.add(notification)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(
                "Failed to create %s notification for user %s: %s",
                notification_type,
                user_id,
                exc,
            )
            return None

        self.bus.publish(
            NOTIFICATION_NEW,
            {
                "notification_id": notification.id,
                "user_id": user_id,
                "notification_type": notification_type,
                "related_post_id": related_post_id,
                "related_comment_id": related_comment_id,
            },
        )
        return notification

    def list_for_user(
        self,
        user_id: int,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    def unread_count(self, user_id: int) -> int:
        count = (
            self.db.query(func.count(Notification.id))
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .scalar()
        )
        return int(count or 0)

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        notification = self.db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.user_id != user_id:
            raise ForbiddenError("You can only update your own notifications")
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            self.db.commit()
        return notification

    def mark_all_read(self, user_id: int) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()
        return int(result.rowcount or 0)

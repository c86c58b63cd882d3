"""Append-only activity log writer."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medinet.models import ActivityFeed

logger = logging.getLogger(__name__)

POST_CREATED = "post_created"
POST_REPOSTED = "post_reposted"
COMMENT_CREATED = "comment_created"
CONNECTION_ACCEPTED = "connection_accepted"


def record_activity(
    db: Session,
    *,
    user_id: int,
    activity_type: str,
    data: dict[str, Any] | None = None,
    related_post_id: int | None = None,
    related_comment_id: int | None = None,
    related_user_id: int | None = None,
) -> ActivityFeed | None:
    """Append an activity row after the primary mutation has committed.

    Failures are logged and swallowed; the activity log never fails a request.
    """
    try:
        entry = ActivityFeed(
            user_id=user_id,
            activity_type=activity_type,
            activity_data=data or {},
            related_post_id=related_post_id,
            related_comment_id=related_comment_id,
            related_user_id=related_user_id,
        )
        db.add(entry)
        db.commit()
        return entry
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Failed to record %s activity for user %s: %s", activity_type, user_id, exc)
        return None


def list_activity(db: Session, user_id: int, *, limit: int = 20, offset: int = 0) -> list[ActivityFeed]:
    return (
        db.query(ActivityFeed)
        .filter(ActivityFeed.user_id == user_id)
        .order_by(ActivityFeed.created_at.desc(), ActivityFeed.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )

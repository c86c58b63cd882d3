# src/medinet/api/v1/endpoints/notifications.py
"""Notification inbox, preferences and the viewer's activity log."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from medinet.schemas.common import envelope, paginate
from medinet.schemas.notification import (
    ActivityOut,
    NotificationOut,
    NotificationPreferencesIn,
    NotificationPreferencesOut,
)
from medinet.services import activity
from medinet.services.notifications import NotificationService

from ..dependencies import CurrentUserDep, EventBusDep, SessionDep

router = APIRouter(prefix="/notifications", tags=["notifications"])
activity_router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("")
def list_notifications(
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    notifications = NotificationService(db, bus).list_for_user(
        current_user.id,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return envelope(
        [NotificationOut.model_validate(n).model_dump(mode="json") for n in notifications],
        pagination=paginate(limit, offset, len(notifications)),
    )


@router.get("/unread-count")
def unread_count(current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    return envelope({"count": NotificationService(db, bus).unread_count(current_user.id)})


@router.put("/read-all")
def mark_all_read(current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    count = NotificationService(db, bus).mark_all_read(current_user.id)
    return envelope({"count": count}, message="All notifications marked as read")


@router.get("/preferences")
def get_preferences(current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    preference = NotificationService(db, bus).get_preferences(current_user.id)
    db.commit()
    return envelope(NotificationPreferencesOut.model_validate(preference).model_dump())


@router.put("/preferences")
def update_preferences(
    payload: NotificationPreferencesIn,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    preference = NotificationService(db, bus).update_preferences(
        current_user.id,
        payload.model_dump(exclude_none=True),
    )
    return envelope(
        NotificationPreferencesOut.model_validate(preference).model_dump(),
        message="Preferences updated successfully",
    )


@router.put("/{notification_id}/read")
def mark_read(
    notification_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    notification = NotificationService(db, bus).mark_read(current_user.id, notification_id)
    return envelope(NotificationOut.model_validate(notification).model_dump(mode="json"))


@activity_router.get("")
def list_activity(
    current_user: CurrentUserDep,
    db: SessionDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    """Return the viewer's own activity, newest first."""
    rows = activity.list_activity(db, current_user.id, limit=limit, offset=offset)
    return envelope(
        [ActivityOut.model_validate(row).model_dump(mode="json") for row in rows],
        pagination=paginate(limit, offset, len(rows)),
    )

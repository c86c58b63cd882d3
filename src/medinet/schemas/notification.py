# src/medinet/schemas/notification.py
"""Notification and activity schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict

from medinet.schemas.common import UtcDatetime


class NotificationOut(BaseModel):
    id: int
    notification_type: str
    title: str
    message: str | None = None
    data: dict[str, Any]
    related_user_id: int | None = None
    related_post_id: int | None = None
    related_comment_id: int | None = None
    is_read: bool
    read_at: UtcDatetime | None = None
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)


class NotificationPreferencesIn(BaseModel):
    new_messages: bool | None = None
    post_comments: bool | None = None
    post_shares: bool | None = None
    post_likes: bool | None = None
    mentions: bool | None = None
    connection_requests: bool | None = None
    connection_accepted: bool | None = None


class NotificationPreferencesOut(BaseModel):
    new_messages: bool
    post_comments: bool
    post_shares: bool
    post_likes: bool
    mentions: bool
    connection_requests: bool
    connection_accepted: bool

    model_config = ConfigDict(from_attributes=True)


class ActivityOut(BaseModel):
    id: int
    activity_type: str
    activity_data: dict[str, Any]
    related_post_id: int | None = None
    related_comment_id: int | None = None
    related_user_id: int | None = None
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)

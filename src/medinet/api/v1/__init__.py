# src/medinet/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    activity_router,
    auth_router,
    comments_router,
    messages_router,
    notifications_router,
    posts_router,
    realtime_router,
    users_router,
)

__all__ = [
    "auth_router",
    "posts_router",
    "comments_router",
    "messages_router",
    "notifications_router",
    "activity_router",
    "users_router",
    "realtime_router",
]

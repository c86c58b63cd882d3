# src/medinet/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .comments import router as comments_router
from .messages import router as messages_router
from .notifications import activity_router
from .notifications import router as notifications_router
from .posts import router as posts_router
from .realtime import router as realtime_router
from .users import router as users_router

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

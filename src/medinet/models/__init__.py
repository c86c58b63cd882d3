# src/medinet/models/__init__.py
"""SQLAlchemy models for the MediNet application."""

from .comment import Comment
from .messaging import Conversation, Message, MessageReaction
from .notification import ActivityFeed, Notification, NotificationPreference
from .post import Post, PostMedia, Share
from .professional import (
    Award,
    Certification,
    MedicalEducation,
    MedicalExperience,
    MedicalSkill,
    Project,
    Publication,
    UserSkill,
)
from .reaction import Reaction
from .social import Block, Connection, Follow
from .user import Profile, User

__all__ = [
    "Comment",
    "Conversation", "Message", "MessageReaction",
    "ActivityFeed", "Notification", "NotificationPreference",
    "Post", "PostMedia", "Share",
    "Award", "Certification", "MedicalEducation", "MedicalExperience",
    "MedicalSkill", "Project", "Publication", "UserSkill",
    "Reaction",
    "Block", "Connection", "Follow",
    "Profile", "User",
]

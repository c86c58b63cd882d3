"""Connections, follows and blocks between users."""

from __future__ import annotations

import logging

from sqlalchemy import and_, delete, or_
from sqlalchemy.orm import Session

from medinet.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailed
from medinet.db.time import utcnow
from medinet.models import Block, Connection, Follow, User
from medinet.models.social import CONNECTION_ACCEPTED, CONNECTION_PENDING
from medinet.services import activity
from medinet.services.events import EventBus
from medinet.services.notifications import NotificationService

logger = logging.getLogger(__name__)


def is_blocked_one_way(db: Session, blocker_id: int, blocked_id: int) -> bool:
    """Return True if ``blocker_id`` has blocked ``blocked_id``."""
    return (
        db.query(Block.id)
        .filter(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
        .first()
        is not None
    )


def is_blocked_either_way(db: Session, user_a: int, user_b: int) -> bool:
    return (
        db.query(Block.id)
        .filter(
            or_(
                and_(Block.blocker_id == user_a, Block.blocked_id == user_b),
                and_(Block.blocker_id == user_b, Block.blocked_id == user_a),
            )
        )
        .first()
        is not None
    )


def _pair_filter(user_a: int, user_b: int):
    return or_(
        and_(Connection.requester_id == user_a, Connection.addressee_id == user_b),
        and_(Connection.requester_id == user_b, Connection.addressee_id == user_a),
    )


def find_connection(db: Session, user_a: int, user_b: int) -> Connection | None:
    return db.query(Connection).filter(_pair_filter(user_a, user_b)).first()


def are_connected(db: Session, user_a: int, user_b: int) -> bool:
    connection = find_connection(db, user_a, user_b)
    return connection is not None and connection.status == CONNECTION_ACCEPTED


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found")
    return user


class SocialGraphService:
    """Commands that mutate the relationship tables."""

    def __init__(self, db: Session, bus: EventBus) -> None:
        self.db = db
        self.bus = bus
        self.notifications = NotificationService(db, bus)

    def _guard_target(self, viewer: User, target_id: int) -> User:
        if target_id == viewer.id:
            raise ValidationFailed("You cannot perform this action on yourself")
        return get_user_or_404(self.db, target_id)

    def request_connection(self, viewer: User, target_id: int) -> Connection:
        """Send a connection request, or accept the one the target already sent."""
        target = self._guard_target(viewer, target_id)
        if is_blocked_either_way(self.db, viewer.id, target.id):
            raise ForbiddenError("Users are blocked")

        existing = find_connection(self.db, viewer.id, target.id)
        if existing is not None:
            if existing.status == CONNECTION_PENDING and existing.requester_id == target.id:
                return self.accept_connection(viewer, target.id)
            raise ConflictError("Connection or request already exists")

        connection = Connection(
            requester_id=viewer.id,
            addressee_id=target.id,
            status=CONNECTION_PENDING,
        )
        self.db.add(connection)
        self.db.commit()

        self.notifications.notify(
            user_id=target.id,
            notification_type="connection_request",
            title=f"{viewer.full_name or 'Someone'} wants to connect",
            data={"connection_id": connection.id, "requester_id": viewer.id},
            related_user_id=viewer.id,
        )
        return connection

    def accept_connection(self, viewer: User, requester_id: int) -> Connection:
        connection = (
            self.db.query(Connection)
            .filter(
                Connection.requester_id == requester_id,
                Connection.addressee_id == viewer.id,
                Connection.status == CONNECTION_PENDING,
            )
            .first()
        )
        if connection is None:
            raise NotFoundError("Connection request not found")

        connection.status = CONNECTION_ACCEPTED
        connection.accepted_at = utcnow()
        self.db.commit()

        self.notifications.notify(
            user_id=requester_id,
            notification_type="connection_accepted",
            title=f"{viewer.full_name or 'Someone'} accepted your connection request",
            data={"connection_id": connection.id, "user_id": viewer.id},
            related_user_id=viewer.id,
        )
        for user_id, other_id in ((viewer.id, requester_id), (requester_id, viewer.id)):
            activity.record_activity(
                self.db,
                user_id=user_id,
                activity_type=activity.CONNECTION_ACCEPTED,
                data={"connection_id": connection.id},
                related_user_id=other_id,
            )
        return connection

    def decline_connection(self, viewer: User, requester_id: int) -> None:
        deleted = self.db.execute(
            delete(Connection).where(
                Connection.requester_id == requester_id,
                Connection.addressee_id == viewer.id,
                Connection.status == CONNECTION_PENDING,
            )
        ).rowcount
        if not deleted:
            raise NotFoundError("Connection request not found")
        self.db.commit()

    def remove_connection(self, viewer: User, other_id: int) -> None:
        deleted = self.db.execute(delete(Connection).where(_pair_filter(viewer.id, other_id))).rowcount
        if not deleted:
            raise NotFoundError("Connection not found")
        self.db.commit()

    def list_connections(self, user_id: int) -> list[User]:
        rows = (
            self.db.query(Connection)
            .filter(
                or_(Connection.requester_id == user_id, Connection.addressee_id == user_id),
                Connection.status == CONNECTION_ACCEPTED,
            )
            .order_by(Connection.accepted_at.desc())
            .all()
        )
        other_ids = [
            row.addressee_id if row.requester_id == user_id else row.requester_id for row in rows
        ]
        if not other_ids:
            return []
        users = {user.id: user for user in self.db.query(User).filter(User.id.in_(other_ids))}
        return [users[other_id] for other_id in other_ids if other_id in users]

    def list_incoming_requests(self, user_id: int) -> list[Connection]:
        return (
            self.db.query(Connection)
            .filter(Connection.addressee_id == user_id, Connection.status == CONNECTION_PENDING)
            .order_by(Connection.created_at.desc())
            .all()
        )

    def follow(self, viewer: User, target_id: int) -> bool:
        """Follow a user; returns False when already following."""
        target = self._guard_target(viewer, target_id)
        if is_blocked_either_way(self.db, viewer.id, target.id):
            raise ForbiddenError("Users are blocked")
        exists = (
            self.db.query(Follow.id)
            .filter(Follow.follower_id == viewer.id, Follow.following_id == target.id)
            .first()
        )
        if exists is not None:
            return False
        self.db.add(Follow(follower_id=viewer.id, following_id=target.id))
        self.db.commit()
        return True

    def unfollow(self, viewer: User, target_id: int) -> bool:
        deleted = self.db.execute(
            delete(Follow).where(Follow.follower_id == viewer.id, Follow.following_id == target_id)
        ).rowcount
        self.db.commit()
        return bool(deleted)

    def block(self, viewer: User, target_id: int) -> bool:
        """Block a user and drop connections and follows between the pair.

        Returns False when the block already existed.
        """
        target = self._guard_target(viewer, target_id)
        if is_blocked_one_way(self.db, viewer.id, target.id):
            return False

        self.db.add(Block(blocker_id=viewer.id, blocked_id=target.id))
        self.db.execute(delete(Connection).where(_pair_filter(viewer.id, target.id)))
        self.db.execute(
            delete(Follow).where(
                or_(
                    and_(Follow.follower_id == viewer.id, Follow.following_id == target.id),
                    and_(Follow.follower_id == target.id, Follow.following_id == viewer.id),
                )
            )
        )
        self.db.commit()
        logger.info("User %s blocked user %s", viewer.id, target.id)
        return True

    def unblock(self, viewer: User, target_id: int) -> None:
        deleted = self.db.execute(
            delete(Block).where(Block.blocker_id == viewer.id, Block.blocked_id == target_id)
        ).rowcount
        if not deleted:
            raise NotFoundError("Block not found")
        self.db.commit()

    def list_blocked(self, user_id: int) -> list[User]:
        return (
            self.db.query(User)
            .join(Block, Block.blocked_id == User.id)
            .filter(Block.blocker_id == user_id)
            .order_by(Block.created_at.desc())
            .all()
        )

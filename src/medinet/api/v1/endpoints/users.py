# src/medinet/api/v1/endpoints/users.py
"""User accounts, the composite profile and the social graph."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status

from medinet.core.errors import NotFoundError
from medinet.db.time import as_utc
from medinet.models import User
from medinet.schemas.common import envelope
from medinet.schemas.post import AuthorOut
from medinet.schemas.profile import CompleteProfileIn
from medinet.schemas.user import PrivateUserOut, UserOut, UserStatusOut, UserUpdate
from medinet.services.profile import ProfileComposer
from medinet.services.social import SocialGraphService, get_user_or_404, is_blocked_either_way

from ..dependencies import CurrentUserDep, EventBusDep, FeedCacheDep, SessionDep

router = APIRouter(prefix="/users", tags=["users"])


def _author(user: User) -> dict[str, Any]:
    return AuthorOut.model_validate(user).model_dump(mode="json")


def _visible_user(db, viewer: User, user_id: int) -> User:
    user = get_user_or_404(db, user_id)
    if user.id != viewer.id and is_blocked_either_way(db, viewer.id, user.id):
        raise NotFoundError("User not found")
    return user


def _invalidate_feeds(cache, *user_ids: int) -> None:
    # Connection-only posts change visibility with the pair's relationship.
    for user_id in user_ids:
        cache.invalidate_viewer(user_id)


@router.get("/me")
def read_me(current_user: CurrentUserDep) -> dict[str, Any]:
    return envelope(PrivateUserOut.model_validate(current_user).model_dump(mode="json"))


@router.put("/me")
def update_me(payload: UserUpdate, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(current_user, field, value)
    db.commit()
    db.refresh(current_user)
    return envelope(
        PrivateUserOut.model_validate(current_user).model_dump(mode="json"),
        message="Profile updated successfully",
    )


@router.get("/me/profile/complete")
def read_my_complete_profile(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    return envelope(ProfileComposer(db).get_complete(current_user, include_private=True))


@router.post("/me/profile/complete", status_code=status.HTTP_201_CREATED)
def create_complete_profile(
    payload: CompleteProfileIn,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Create the whole profile in one transaction."""
    data = ProfileComposer(db).create_complete(current_user, payload)
    return envelope(data, message="Profile created successfully")


@router.put("/me/profile/complete")
def update_complete_profile(
    payload: CompleteProfileIn,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    data = ProfileComposer(db).update_complete(current_user, payload)
    return envelope(data, message="Profile updated successfully")


@router.get("/me/connections")
def list_connections(current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    users = SocialGraphService(db, bus).list_connections(current_user.id)
    return envelope([_author(user) for user in users])


@router.get("/me/connection-requests/incoming")
def list_incoming_requests(
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    requests = SocialGraphService(db, bus).list_incoming_requests(current_user.id)
    requesters = {
        user.id: user
        for user in db.query(User).filter(User.id.in_([r.requester_id for r in requests]))
    }
    return envelope(
        [
            {
                "id": request.id,
                "requester": _author(requesters[request.requester_id])
                if request.requester_id in requesters
                else None,
                "status": request.status,
                "created_at": as_utc(request.created_at).isoformat(),
            }
            for request in requests
        ]
    )


@router.get("/me/blocks")
def list_blocked(current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    users = SocialGraphService(db, bus).list_blocked(current_user.id)
    return envelope([_author(user) for user in users])


@router.get("/{user_id}")
def read_user(user_id: int, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    user = _visible_user(db, current_user, user_id)
    return envelope(UserOut.model_validate(user).model_dump(mode="json"))


@router.get("/{user_id}/profile/complete")
def read_complete_profile(user_id: int, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    user = _visible_user(db, current_user, user_id)
    return envelope(ProfileComposer(db).get_complete(user, include_private=user.id == current_user.id))


@router.get("/{user_id}/status")
def read_status(user_id: int, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    user = _visible_user(db, current_user, user_id)
    status_out = UserStatusOut(user_id=user.id, is_online=user.is_online, last_seen_at=user.last_seen_at)
    return envelope(status_out.model_dump(mode="json"))


@router.post("/{user_id}/connect", status_code=status.HTTP_201_CREATED)
def request_connection(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    connection = SocialGraphService(db, bus).request_connection(current_user, user_id)
    if connection.status != "pending":
        _invalidate_feeds(cache, current_user.id, user_id)
    return envelope(
        {"id": connection.id, "status": connection.status},
        message="Connection request sent" if connection.status == "pending" else "Connection accepted",
    )


@router.post("/{user_id}/connect/accept")
def accept_connection(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    connection = SocialGraphService(db, bus).accept_connection(current_user, user_id)
    _invalidate_feeds(cache, current_user.id, user_id)
    return envelope({"id": connection.id, "status": connection.status}, message="Connection accepted")


@router.post("/{user_id}/connect/decline")
def decline_connection(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    SocialGraphService(db, bus).decline_connection(current_user, user_id)
    return envelope(message="Connection request declined")


@router.delete("/{user_id}/connect")
def remove_connection(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    SocialGraphService(db, bus).remove_connection(current_user, user_id)
    _invalidate_feeds(cache, current_user.id, user_id)
    return envelope(message="Connection removed")


@router.post("/{user_id}/follow")
def follow(user_id: int, current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    created = SocialGraphService(db, bus).follow(current_user, user_id)
    return envelope({"following": True}, message="Now following" if created else "Already following")


@router.delete("/{user_id}/follow")
def unfollow(user_id: int, current_user: CurrentUserDep, db: SessionDep, bus: EventBusDep) -> dict[str, Any]:
    SocialGraphService(db, bus).unfollow(current_user, user_id)
    return envelope({"following": False}, message="Unfollowed")


@router.post("/{user_id}/block")
def block(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    created = SocialGraphService(db, bus).block(current_user, user_id)
    _invalidate_feeds(cache, current_user.id, user_id)
    return envelope({"blocked": True}, message="User blocked" if created else "User already blocked")


@router.delete("/{user_id}/block")
def unblock(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    bus: EventBusDep,
    cache: FeedCacheDep,
) -> dict[str, Any]:
    SocialGraphService(db, bus).unblock(current_user, user_id)
    _invalidate_feeds(cache, current_user.id, user_id)
    return envelope({"blocked": False}, message="User unblocked")

"""Shared API dependencies for authentication and common functionality."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from medinet.core.security import decode_access_token
from medinet.db.session import SessionLocal, get_db
from medinet.models import User
from medinet.services.cache import FeedCache, get_feed_cache
from medinet.services.events import EventBus, get_event_bus

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_session_factory() -> Callable[[], Session]:
    """Factory for short-lived sessions used outside a request, e.g. on WebSockets."""
    return SessionLocal


SessionFactoryDep = Annotated[Callable[[], Session], Depends(get_session_factory)]


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_token_user(db: Session, token: str | None) -> User | None:
    """Return the active user a bearer token belongs to, or None."""
    if not token:
        return None
    try:
        user_id = decode_access_token(token)
    except (JWTError, ValueError):
        return None
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        request: Incoming request; the user id is recorded for error logging
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If the token is missing or invalid, or the user is gone
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    user = resolve_token_user(db, credentials.credentials)
    if user is None:
        raise _unauthorized()
    request.state.user_id = user.id
    return user


def get_event_bus_dep() -> EventBus:
    return get_event_bus()


def get_feed_cache_dep() -> FeedCache:
    return get_feed_cache()


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
EventBusDep = Annotated[EventBus, Depends(get_event_bus_dep)]
FeedCacheDep = Annotated[FeedCache, Depends(get_feed_cache_dep)]

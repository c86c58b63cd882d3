# src/medinet/api/v1/endpoints/auth.py
"""Authentication endpoints for the MediNet API."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.exc import IntegrityError

from medinet.core.errors import ConflictError
from medinet.core.security import create_access_token, hash_password, verify_password
from medinet.models import User
from medinet.schemas.common import envelope
from medinet.schemas.user import LoginRequest, PrivateUserOut, RegisterRequest

from ..dependencies import CurrentUserDep, SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _token_payload(user: User) -> dict[str, Any]:
    return {
        "access_token": create_access_token(user.id),
        "token_type": "bearer",
        "user": PrivateUserOut.model_validate(user).model_dump(mode="json"),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: SessionDep) -> dict[str, Any]:
    """Create an account and return an access token for it."""
    if db.query(User.id).filter(User.email == payload.email).first() is not None:
        raise ConflictError("An account with this email already exists")

    user = User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("An account with this email already exists") from exc
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return envelope(_token_payload(user), message="Registration successful")


@router.post("/login")
def login(payload: LoginRequest, db: SessionDep) -> dict[str, Any]:
    user = db.query(User).filter(User.email == payload.email).first()
    if user is None or not verify_password(user.password_hash, payload.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated",
        )
    return envelope(_token_payload(user))


@router.get("/me")
def read_me(current_user: CurrentUserDep) -> dict[str, Any]:
    return envelope(PrivateUserOut.model_validate(current_user).model_dump(mode="json"))

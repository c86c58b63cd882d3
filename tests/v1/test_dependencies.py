# mypy: ignore-errors
"""Tests for shared API dependencies."""

from datetime import UTC, datetime, timedelta

from jose import jwt

from medinet.api.v1.dependencies import resolve_token_user
from medinet.core.security import create_access_token, decode_access_token
from medinet.core.settings import settings


def test_token_round_trip(test_user) -> None:
    assert decode_access_token(create_access_token(test_user.id)) == test_user.id


def test_resolve_token_user(db_session, test_user) -> None:
    assert resolve_token_user(db_session, create_access_token(test_user.id)).id == test_user.id
    assert resolve_token_user(db_session, None) is None
    assert resolve_token_user(db_session, "garbage") is None


def test_expired_token_is_rejected(db_session, test_user) -> None:
    token = jwt.encode(
        {"sub": str(test_user.id), "exp": datetime.now(UTC) - timedelta(minutes=1)},
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    assert resolve_token_user(db_session, token) is None


def test_token_for_deleted_or_inactive_user_is_rejected(db_session, make_user) -> None:
    user = make_user("Gone", "Soon", is_active=False)
    assert resolve_token_user(db_session, create_access_token(user.id)) is None
    assert resolve_token_user(db_session, create_access_token(987654)) is None


def test_non_numeric_subject_is_rejected(db_session) -> None:
    token = jwt.encode({"sub": "alice"}, settings.secret_key, algorithm=settings.jwt_algorithm)
    assert resolve_token_user(db_session, token) is None

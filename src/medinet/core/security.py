"""Password hashing and access-token helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import nacl.pwhash
from jose import jwt
from nacl.exceptions import InvalidkeyError

from medinet.core.settings import settings


def hash_password(password: str) -> str:
    """Return an argon2id hash of ``password`` in libsodium's string format."""
    return nacl.pwhash.str(password.encode("utf-8")).decode("ascii")


def verify_password(password_hash: str, password: str) -> bool:
    """Check ``password`` against a stored hash.

    Args:
        password_hash: Value previously produced by :func:`hash_password`.
        password: Plain-text candidate.

    Returns:
        True when the password matches; False otherwise.
    """
    try:
        return nacl.pwhash.verify(password_hash.encode("ascii"), password.encode("utf-8"))
    except InvalidkeyError:
        return False


def create_access_token(user_id: int, extra_claims: dict[str, str] | None = None) -> str:
    """Create JWT access token for user authentication."""
    to_encode: dict[str, object] = {"sub": str(user_id)}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> int:
    """Return the user id encoded in ``token``.

    Raises:
        jose.JWTError: If the token is invalid or expired.
        ValueError: If the subject is missing or not an integer id.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    if subject is None:
        raise ValueError("Token has no subject")
    return int(subject)

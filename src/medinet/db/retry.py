"""Retry helpers for transient database failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from medinet.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substrings of driver messages that indicate the connection, not the statement, failed.
TRANSIENT_MARKERS = (
    "connection reset",
    "connection refused",
    "server closed the connection",
    "terminating connection",
    "timeout",
    "timed out",
    "could not translate host name",
    "name or service not known",
    "temporary failure in name resolution",
)

SERIALIZATION_SQLSTATES = frozenset({"40001", "40P01"})


def is_transient_error(exc: BaseException) -> bool:
    """Return True when ``exc`` looks like a dropped or unreachable connection."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if not isinstance(exc, OperationalError | DBAPIError):
        return False
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


def is_serialization_failure(exc: BaseException) -> bool:
    """Return True for serializable-isolation conflicts and deadlocks."""
    if not isinstance(exc, DBAPIError):
        return False
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate in SERIALIZATION_SQLSTATES:
        return True
    text = str(exc.orig).lower()
    return "could not serialize access" in text or "database is locked" in text


def backoff_delay(attempt: int, base: float | None = None) -> float:
    """Return the sleep before retry number ``attempt`` (1-based)."""
    base_delay = settings.db_retry_base_delay_seconds if base is None else base
    return base_delay * (2 ** (attempt - 1))


def run_with_retry(
    operation: Callable[[], T],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    on_retry: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` retrying transient connection failures.

    Args:
        operation: Zero-argument callable performing the database work.
        attempts: Total attempts; defaults to ``DB_RETRY_ATTEMPTS``.
        base_delay: First backoff delay; defaults to ``DB_RETRY_BASE_DELAY_SECONDS``.
        on_retry: Called before each retry, typically ``session.rollback``.
        sleep: Sleep function, injectable for tests.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        The last error when it is not transient or attempts are exhausted.
    """
    total = attempts or settings.db_retry_attempts
    attempt = 1
    while True:
        try:
            return operation()
        except (OperationalError, DBAPIError) as exc:
            if attempt >= total or not is_transient_error(exc):
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "Transient database error (attempt %s/%s), retrying in %.2fs: %s",
                attempt,
                total,
                delay,
                exc.orig if exc.orig is not None else exc,
            )
            if on_retry is not None:
                on_retry()
            sleep(delay)
            attempt += 1

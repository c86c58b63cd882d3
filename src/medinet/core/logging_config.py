"""Logging setup for the MediNet backend."""

from __future__ import annotations

import logging
from typing import Any

from medinet.core.settings import settings

LOG_FORMAT = "%(asctime)s level=%(levelname)s logger=%(name)s %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the ``medinet`` logger tree."""
    global _configured
    root = logging.getLogger("medinet")
    root.setLevel((level or settings.log_level).upper())
    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def build_log_context(
    *,
    user_id: int | None = None,
    route: str | None = None,
    method: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Return a log context dict without empty values."""
    context: dict[str, Any] = {}
    if user_id is not None:
        context["user_id"] = user_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    context.update({key: value for key, value in fields.items() if value is not None})
    return context


def format_context(context: dict[str, Any]) -> str:
    """Render a context dict as ``key=value`` pairs for the log line."""
    return " ".join(f"{key}={value}" for key, value in context.items())

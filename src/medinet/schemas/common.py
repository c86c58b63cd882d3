"""Shared Pydantic schemas and the response envelope."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field

from medinet.db.time import as_utc

# SQLite hands back naive datetimes; every API timestamp is UTC.
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class Pagination(BaseModel):
    """Offset pagination block returned by list endpoints."""

    limit: int = Field(..., ge=0)
    offset: int = Field(..., ge=0)
    hasMore: bool = Field(..., description="True when a full page was returned.")


def paginate(limit: int, offset: int, returned: int) -> dict[str, Any]:
    return Pagination(limit=limit, offset=offset, hasMore=returned == limit).model_dump()


def envelope(
    data: Any = None,
    *,
    message: str | None = None,
    pagination: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Wrap a successful payload in the standard response envelope."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    if pagination is not None:
        body["pagination"] = pagination
    return body


def error_envelope(message: str, errors: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body

"""Dialect-specific SQL helpers used by ranking queries."""

from __future__ import annotations

import math
import sqlite3
from typing import Any

from sqlalchemy import Float, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement


class hours_since(FunctionElement):  # noqa: N801 - reads like a SQL function
    """Hours elapsed between a timestamp column and the database clock."""

    type = Float()
    inherit_cache = True
    name = "hours_since"


@compiles(hours_since)
def _hours_since_default(element: hours_since, compiler: Any, **kw: Any) -> str:
    return "(EXTRACT(EPOCH FROM (CURRENT_TIMESTAMP - %s)) / 3600.0)" % compiler.process(
        element.clauses, **kw
    )


@compiles(hours_since, "sqlite")
def _hours_since_sqlite(element: hours_since, compiler: Any, **kw: Any) -> str:
    return "((julianday('now') - julianday(%s)) * 24.0)" % compiler.process(
        element.clauses, **kw
    )


def _sqlite_power(base: float | None, exponent: float | None) -> float | None:
    if base is None or exponent is None:
        return None
    try:
        return math.pow(base, exponent)
    except (OverflowError, ValueError):
        return None


@event.listens_for(Engine, "connect")
def _configure_sqlite(dbapi_connection: Any, connection_record: Any) -> None:
    """Enable foreign keys and register math helpers on SQLite connections."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    dbapi_connection.create_function("power", 2, _sqlite_power, deterministic=True)
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

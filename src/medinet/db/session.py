"""Database session configuration."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from medinet.core.settings import settings
from medinet.db import functions  # noqa: F401  (registers SQLite connection hooks)


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import medinet.models  # noqa: E402,F401


def engine_options(url: str) -> dict[str, Any]:
    """Return ``create_engine`` keyword arguments for the given URL."""
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.sql_debug}
    if make_url(url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        return options

    pool_min = settings.db_pool_min
    options.update(
        pool_size=pool_min,
        max_overflow=max(0, settings.db_pool_max - pool_min),
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_recycle=settings.db_idle_timeout_seconds,
    )
    return options


engine = create_engine(
    settings.effective_database_url,
    **engine_options(settings.effective_database_url),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """Create all database tables."""
    Base.metadata.create_all(bind=engine)

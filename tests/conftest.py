# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection as SAConnection
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-medinet")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "memory://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PRESENCE_GRACE_SECONDS", "0")

from medinet.api.v1 import dependencies
from medinet.core.security import create_access_token
from medinet.db.session import Base
from medinet.db.session import get_db as app_get_session
from medinet.main import app as fastapi_app
from medinet.models import Comment, Connection, Post, User
from medinet.models.social import CONNECTION_ACCEPTED
from medinet.services.cache import FeedCache, MemoryCacheBackend
from medinet.services.events import WILDCARD, Event, get_event_bus
from medinet.services.realtime import get_hub

TEST_DB_URL = "sqlite://"

_EMAIL_COUNTER = count(1)


class RecordingPresence:
    """Presence store that records calls instead of writing rows."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    def set_online(self, user_id: int) -> None:
        self.calls.append(("online", user_id))

    def set_offline(self, user_id: int) -> None:
        self.calls.append(("offline", user_id))

    def touch(self, user_id: int) -> None:
        self.calls.append(("touch", user_id))


def make_sqlite_engine() -> Engine:
    """In-memory SQLite engine with working SAVEPOINT support."""
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = make_sqlite_engine()
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_connection(engine: Engine) -> Iterator[SAConnection]:
    connection = engine.connect()
    transaction = connection.begin()
    try:
        yield connection
    finally:
        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def session_factory(db_connection: SAConnection) -> sessionmaker[Session]:
    """Sessions joined to the per-test transaction, for code that opens its own."""
    return sessionmaker(
        bind=db_connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def feed_cache() -> Iterator[FeedCache]:
    cache = FeedCache(MemoryCacheBackend(), fresh_ttl=60, hard_ttl=120)
    yield cache
    cache.shutdown()


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    session_factory: sessionmaker[Session],
    feed_cache: FeedCache,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[dependencies.get_feed_cache_dep] = lambda: feed_cache
    app.dependency_overrides[dependencies.get_session_factory] = lambda: session_factory
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(dependencies.get_feed_cache_dep, None)
        app.dependency_overrides.pop(dependencies.get_session_factory, None)


@pytest.fixture()
def presence() -> RecordingPresence:
    return RecordingPresence()


@pytest.fixture()
def hub(presence: RecordingPresence):
    """The process hub with presence recorded in memory and no heartbeat."""
    hub = get_hub()
    hub.presence = presence
    hub.grace_period = 0
    hub.heartbeat_interval = 0
    return hub


@pytest.fixture()
def client(app: FastAPI, hub) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def event_log() -> Iterator[list[Event]]:
    """Every event published on the process bus during the test."""
    events: list[Event] = []
    unsubscribe = get_event_bus().subscribe(WILDCARD, events.append)
    try:
        yield events
    finally:
        unsubscribe()


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Factory for persisted users."""

    def _make(first_name: str = "Test", last_name: str = "User", **fields: Any) -> User:
        user = User(
            email=fields.pop("email", f"user{next(_EMAIL_COUNTER)}@example.org"),
            password_hash=fields.pop("password_hash", "unused"),
            first_name=first_name,
            last_name=last_name,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def test_user(make_user) -> User:
    """Create and return a persisted test user."""
    return make_user("Alice", "Attending")


@pytest.fixture()
def other_user(make_user) -> User:
    """Create and return a second persisted user."""
    return make_user("Bob", "Resident")


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture()
def auth_token(test_user: User) -> dict[str, str]:
    """Return authorization headers for the primary test user."""
    return auth_headers(test_user)


@pytest.fixture()
def other_auth_token(other_user: User) -> dict[str, str]:
    """Return authorization headers for the secondary test user."""
    return auth_headers(other_user)


@pytest.fixture()
def connect_users(db_session: Session) -> Callable[[User, User], Connection]:
    def _connect(a: User, b: User) -> Connection:
        connection = Connection(requester_id=a.id, addressee_id=b.id, status=CONNECTION_ACCEPTED)
        db_session.add(connection)
        db_session.commit()
        return connection

    return _connect


@pytest.fixture()
def make_post(db_session: Session) -> Callable[..., Post]:
    def _make(author: User, content: str = "Clinical pearl", **fields: Any) -> Post:
        post = Post(user_id=author.id, content=content, **fields)
        db_session.add(post)
        db_session.commit()
        db_session.refresh(post)
        return post

    return _make


@pytest.fixture()
def test_post(make_post, test_user: User) -> Post:
    """Create a baseline public post for tests."""
    return make_post(test_user, "Test post content")


@pytest.fixture()
def make_comment(db_session: Session) -> Callable[..., Comment]:
    def _make(post: Post, author: User, content: str = "Agreed", parent: Comment | None = None, **fields: Any) -> Comment:
        comment = Comment(
            post_id=post.id,
            user_id=author.id,
            content=content,
            parent_comment_id=parent.id if parent else None,
            **fields,
        )
        db_session.add(comment)
        db_session.commit()
        db_session.refresh(comment)
        return comment

    return _make

"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import database
from app.config import get_settings
from app.core import security
from app.database import get_db
from app.main import app
from app.models import Base, Friendship, User

security.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def media_root(tmp_path, monkeypatch):
    """Store uploads under a per-test directory."""

    monkeypatch.setattr(get_settings(), "media_root", tmp_path)
    return tmp_path


@pytest.fixture()
def client(session_factory, monkeypatch, media_root) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependency overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    # Websocket handlers open short-lived sessions outside dependency injection.
    monkeypatch.setattr(database, "SessionLocal", session_factory)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    """Create users with unique logins and e-mails."""

    def factory(login: str) -> User:
        user = User(
            login=login,
            email=f"{login}@example.com",
            hashed_password=security.get_password_hash("password123"),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture()
def befriend(db_session) -> Callable[[User, User], None]:
    """Link two users as friends without going through the request flow."""

    def link(first: User, second: User) -> None:
        low, high = sorted((first.id, second.id))
        db_session.add(Friendship(user_low_id=low, user_high_id=high))
        db_session.commit()

    return link

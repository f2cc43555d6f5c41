from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings

settings = get_settings()

engine_options: dict[str, Any] = {"echo": settings.debug, "future": True}
if settings.database_url.startswith("sqlite"):
    engine_options["connect_args"] = {"check_same_thread": False}
else:
    # pool_pre_ping: verify connections before using them
    engine_options.update(pool_size=10, max_overflow=20, pool_pre_ping=True)

engine = create_engine(settings.database_url, **engine_options)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Context manager for short-lived database sessions.

    Use this in WebSocket handlers instead of Depends(get_db) to avoid
    holding database connections for the entire WebSocket connection lifetime.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

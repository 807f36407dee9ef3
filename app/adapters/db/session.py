"""Engine and session management.

The ``Database`` object is created by the application factory and stored on
``app.state``; routes receive a session per request through ``get_db``.
"""

from __future__ import annotations

from typing import Any, Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.adapters.db.models import Base

_IN_MEMORY_SQLITE_URLS = {"sqlite://", "sqlite:///:memory:"}


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            # Sync routes run in a threadpool; in-memory databases need one shared connection.
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in _IN_MEMORY_SQLITE_URLS:
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self._session_factory()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session closed after the request."""

    session = request.app.state.database.session()
    try:
        yield session
    finally:
        session.close()

"""Engine and session plumbing shared by the API, the scheduler and the scripts."""
from __future__ import annotations

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.models.base import Base

logger = logging.getLogger(__name__)


@dataclass
class _Database:
    engine: Engine
    sessions: sessionmaker[Session]


_database: _Database | None = None


def _build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # Request threads, the scheduler and scripts share one SQLite file.
        options: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    else:
        options = {"pool_pre_ping": True, "pool_recycle": 1800}
    return create_engine(database_url, future=True, **options)


def init_engine(database_url: str | None = None) -> Engine:
    """Create the engine and session factory once; later calls reuse them."""

    global _database
    if _database is None:
        url = database_url or get_settings().database_url
        engine = _build_engine(url)
        # Settlement reports read ORM rows after commit, so keep them loaded.
        sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
        _database = _Database(engine=engine, sessions=sessions)
        logger.info("Database engine initialised", extra={"dialect": engine.dialect.name})
    return _database.engine


def is_initialised() -> bool:
    return _database is not None


def get_engine() -> Engine:
    init_engine()
    assert _database is not None
    return _database.engine


def get_sessionmaker() -> sessionmaker[Session]:
    init_engine()
    assert _database is not None
    return _database.sessions


@contextmanager
def session_scope() -> Iterator[Session]:
    """Yield a session for work outside a request; uncommitted changes are rolled back."""

    session = get_sessionmaker()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""

    with session_scope() as session:
        yield session


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover
    """Settlement items and error rows reference statements; SQLite only checks that on request."""

    if type(dbapi_connection).__module__.split(".")[0] not in {"sqlite3", "pysqlite2"}:
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_all() -> None:
    """Create missing tables directly from the models (local development only)."""

    Base.metadata.create_all(bind=get_engine())


def close_engine() -> None:
    """Dispose of the pool so the next :func:`init_engine` starts fresh."""

    global _database
    if _database is not None:
        _database.engine.dispose()
        _database = None


__all__ = [
    "Base",
    "close_engine",
    "create_all",
    "get_db",
    "get_engine",
    "get_sessionmaker",
    "init_engine",
    "is_initialised",
    "session_scope",
]

"""Database configuration and base setup for the approval engine."""

import os
from contextlib import contextmanager
from typing import Generator, Iterator, Optional

import structlog
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Used when neither DATABASE_URL nor settings provide a URL.
DEFAULT_DATABASE_URL = "sqlite:///./artifact_approval.db"


def _ensure_sync_driver(url: URL) -> URL:
    """Force a synchronous driver for Alembic and the ORM engine."""

    if url.drivername.startswith("postgresql+"):
        # Normalize any async driver variants to psycopg (sync)
        if any(token in url.drivername for token in ("async", "aiopg")):
            url = url.set(drivername="postgresql+psycopg")
    elif url.drivername.startswith("sqlite+"):
        if "aiosqlite" in url.drivername:
            url = url.set(drivername="sqlite")

    return url


def get_database_url(raw_url: Optional[str] = None) -> str:
    """Return a database URL with a guaranteed synchronous driver.

    Precedence: explicit argument, DATABASE_URL in the environment, then
    settings (which also read .env).
    """

    url = make_url(
        raw_url
        or os.getenv("DATABASE_URL")
        or get_settings().database_url
        or DEFAULT_DATABASE_URL
    )
    # render_as_string keeps the password; str(url) would mask it
    return _ensure_sync_driver(url).render_as_string(hide_password=False)


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine configured for SQLite (dev/test) or PostgreSQL."""

    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        # An in-memory database lives on one connection; files get a real pool
        if make_url(database_url).database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        engine = create_engine(database_url, **options)
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_engine(
        database_url,
        pool_size=20,
        max_overflow=30,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """
    Create and cache the database engine.

    Lazy so that DATABASE_URL is read at runtime rather than at import time.
    """
    global _engine
    if _engine is not None:
        return _engine

    _engine = create_db_engine(get_database_url())
    return _engine


def get_session_local() -> sessionmaker:
    """Get a sessionmaker bound to the current engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    session_local = get_session_local()
    db = session_local()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or roll all of it back.

    Any exception raised inside the block (guard violation, collaborator
    failure, database error) rolls the session back and is re-raised as is.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def init_database(engine: Optional[Engine] = None) -> None:
    """Create all tables."""
    # Import models so they register with Base
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database initialized")

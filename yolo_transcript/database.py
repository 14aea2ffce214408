"""SQLAlchemy engine and session management."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)

_FALLBACK_ENV = "YOLO_FALLBACK_SQLITE_URL"
_DEFAULT_FALLBACK = "sqlite:///./yolo_transcript.db"

_session_factory: sessionmaker | None = None
_session_error: Exception | None = None
_engine: Engine | None = None


def _bootstrap_factory(database_url: str) -> tuple[sessionmaker, Engine]:
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    engine = create_engine(
        database_url,
        pool_pre_ping=True,
        future=True,
        connect_args=connect_args,
    )
    factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    return factory, engine


def _create_tables(engine: Engine) -> None:
    from .models import Base  # lazy import to avoid circular dependency

    Base.metadata.create_all(engine)


def _initialize_fallback(exc: Exception) -> None:
    """Configure a SQLite session factory when the primary database is unavailable."""

    global _session_factory, _session_error, _engine
    fallback_url = os.getenv(_FALLBACK_ENV, _DEFAULT_FALLBACK)
    try:
        factory, engine = _bootstrap_factory(fallback_url)
        _create_tables(engine)
        logger.warning(
            "Falling back to SQLite database at %s because the primary database is unavailable: %s",
            fallback_url,
            exc,
        )
        _session_factory = factory
        _engine = engine
    except Exception as fallback_exc:  # pragma: no cover - catastrophic failure
        _session_error = fallback_exc
        logger.exception("Could not initialize fallback SQLite database", exc_info=fallback_exc)


def _ensure_session_factory() -> None:
    """Create the SQLAlchemy session factory on demand."""

    global _session_factory, _engine
    if _session_factory is not None or _session_error is not None:
        return
    database_url = get_settings().database_url
    try:
        factory, engine = _bootstrap_factory(database_url)
        # Touch the connection early to surface connectivity issues immediately.
        with engine.connect():
            pass
    except (ModuleNotFoundError, OperationalError) as exc:
        _initialize_fallback(exc)
        return
    if database_url.startswith("sqlite"):
        # Local SQLite databases are not managed by alembic.
        _create_tables(engine)
    _session_factory = factory
    _engine = engine


def get_engine() -> Engine:
    """Return the engine bound to the session factory."""

    _ensure_session_factory()
    if _engine is None:
        raise RuntimeError(
            "No database engine could be initialized. Configure YOLO_DATABASE_URL or install drivers.",
        ) from _session_error
    return _engine


def get_session_factory() -> sessionmaker:
    """Expose the lazily-initialised sessionmaker for scripts and migrations."""

    _ensure_session_factory()
    if _session_factory is None:
        raise RuntimeError(
            "No session factory is available. Configure YOLO_DATABASE_URL or install drivers.",
        ) from _session_error
    return _session_factory


def reset_engine() -> None:
    """Dispose the current engine so the next access re-reads the settings."""

    global _session_factory, _session_error, _engine
    if _engine is not None:
        _engine.dispose()
    _session_factory = None
    _session_error = None
    _engine = None


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session: Session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a session committed after the request."""

    with session_scope() as session:
        yield session


__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "reset_engine",
    "session_scope",
]

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.models import Base
from app.services.errors import StorageUnavailable

logger = logging.getLogger(__name__)


engine: Engine | None = None
_session_factory: sessionmaker | None = None


class _SessionWrapper:
    """Callable proxy returning sessions from the current factory."""

    def __call__(self, *args: Any, **kwargs: Any):
        if _session_factory is None:
            raise RuntimeError("Database not initialized")
        return _session_factory(*args, **kwargs)


SessionLocal = _SessionWrapper()


def init_db(cfg: Settings) -> None:
    """Create engine and session factory using SQLAlchemy's ``create_engine``."""
    global engine, _session_factory

    if cfg.database_url.startswith("sqlite"):
        # sessions are opened inside worker threads (asyncio.to_thread)
        engine = create_engine(
            cfg.database_url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        event.listen(engine, "connect", _sqlite_on_connect)
    else:
        engine = create_engine(
            cfg.database_url,
            future=True,
            pool_size=50,
            max_overflow=0,
            pool_recycle=30,
            pool_pre_ping=True,
        )
    _session_factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
    )

    if cfg.db_create_all:
        Base.metadata.create_all(engine)
    logger.info("Database initialized (%s)", engine.dialect.name)


def _sqlite_on_connect(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


@contextmanager
def atomic(db: Session, what: str) -> Iterator[Session]:
    """Commit on success; roll back on any error.

    Database errors are reported as ``StorageUnavailable``, domain errors
    raised inside the block propagate unchanged.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Transaction failed: %s", what)
        raise StorageUnavailable(f"Failed to {what}") from exc
    except Exception:
        db.rollback()
        raise

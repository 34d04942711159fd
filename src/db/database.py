from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from src.db.models import Base

_engines: dict[str, Engine] = {}


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def get_engine(database_url: str | None = None) -> Engine:
    """Get (and cache) the engine for a database URL (settings URL by default)."""
    settings = get_settings()
    database_url = database_url or settings.database_url
    if database_url not in _engines:
        _ensure_sqlite_dir(database_url)
        _engines[database_url] = create_engine(
            database_url, echo=settings.log_level == "DEBUG", pool_pre_ping=True
        )
    return _engines[database_url]


def get_session_factory(database_url: str | None = None) -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(database_url), autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(database_url: str | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=get_engine(database_url))
    logger.info("Database tables initialized")


@contextmanager
def session_scope(session_factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()

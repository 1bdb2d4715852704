"""Database session management."""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from atlas.config import get_settings
from atlas.database.models import Base

logger = structlog.get_logger(__name__)

# Cache for engines to avoid recreating them
_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker] = {}


def get_db_url() -> str:
    """Get the configured database URL, creating the sqlite directory if needed."""
    url = get_settings().database_url
    if url.startswith("sqlite:///") and ":memory:" not in url:
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_url: str) -> Engine:
    """Get or create database engine for a specific URL."""
    if db_url not in _engines:
        logger.debug("creating_db_engine", url=db_url)
        if db_url.startswith("sqlite"):
            engine = create_engine(
                db_url, echo=False, connect_args={"check_same_thread": False}
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(
                db_url, pool_size=5, max_overflow=10, pool_pre_ping=True, echo=False
            )
        _engines[db_url] = engine
    return _engines[db_url]


def get_session_factory(db_url: str) -> sessionmaker:
    """Get or create session factory for a specific URL."""
    if db_url not in _session_factories:
        engine = get_engine(db_url)
        _session_factories[db_url] = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    return _session_factories[db_url]


def init_db(db_url: str | None = None) -> None:
    """Create all tables."""
    engine = get_engine(db_url or get_db_url())
    Base.metadata.create_all(engine)
    logger.info("database_initialized", url=str(engine.url))


@contextmanager
def get_db_session(db_url: str | None = None) -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            ...
    """
    factory = get_session_factory(db_url or get_db_url())
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def cleanup_db_connections() -> None:
    """Dispose all cached engines."""
    logger.info("cleaning_up_database_connections")

    for url, engine in _engines.items():
        logger.debug("disposing_database_engine", url=url)
        engine.dispose()

    _engines.clear()
    _session_factories.clear()

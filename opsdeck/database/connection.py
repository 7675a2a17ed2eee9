"""
Database connection management for Opsdeck.

The scheduler engine receives an explicit session factory built with
``create_db_engine`` and ``create_session_factory``. The module-level cached
engine (``init_engine``/``get_session_maker``) exists for the CLI, which works
from the global configuration.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from opsdeck.config import OpsdeckConfig, get_config

logger = logging.getLogger(__name__)

# Global engine and session factory (lazy-loaded)
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_db_path(config: Optional[OpsdeckConfig] = None) -> Optional[Path]:
    """
    Get the SQLite database file path.

    Args:
        config: Opsdeck configuration (uses global if not provided)

    Returns:
        Path to the SQLite database file, or None for non-file databases
    """
    if config is None:
        config = get_config()

    # Extract path from database_url (sqlite:///path)
    db_url = config.database_url
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        return Path(db_url[10:])

    return None


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine.

    SQLite connections get cross-thread access and foreign key enforcement.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Configured SQLAlchemy engine
    """
    is_sqlite = database_url.startswith("sqlite")

    if is_sqlite:
        engine = create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,  # Allow cross-thread access
                "timeout": 30,  # Connection timeout in seconds
            },
            pool_pre_ping=True,
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable SQLite foreign key support."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    else:
        engine = create_engine(
            database_url,
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=3600,  # Recycle connections after 1 hour
            echo=False,
        )

    logger.debug(f"Database engine created: {database_url}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to ``engine``."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations.

    Usage:
        with session_scope(factory) as session:
            job = session.query(ScheduledJob).first()

    Yields:
        SQLAlchemy Session, committed on success and rolled back on error
    """
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_engine(config: Optional[OpsdeckConfig] = None) -> Engine:
    """
    Initialize the global SQLAlchemy engine.

    Args:
        config: Opsdeck configuration (uses global if not provided)

    Returns:
        Configured SQLAlchemy engine
    """
    global _engine

    if _engine is not None:
        return _engine

    if config is None:
        config = get_config()

    # Ensure database directory exists
    db_path = get_db_path(config)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    _engine = create_db_engine(config.database_url)
    logger.debug(f"Database engine initialized: {config.database_url}")
    return _engine


def get_session_maker(config: Optional[OpsdeckConfig] = None) -> sessionmaker:
    """
    Get or create the global session maker.

    Args:
        config: Opsdeck configuration (uses global if not provided)

    Returns:
        Configured session maker
    """
    global _SessionLocal

    if _SessionLocal is not None:
        return _SessionLocal

    _SessionLocal = create_session_factory(init_engine(config))
    return _SessionLocal


def reset_engine() -> None:
    """Dispose of the global engine and forget the session maker."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def create_tables(engine: Optional[Engine] = None) -> None:
    """
    Create all database tables.

    Args:
        engine: Engine to create tables on (uses the global engine if not provided)
    """
    from opsdeck.database.models import Base

    if engine is None:
        engine = init_engine()
    Base.metadata.create_all(bind=engine)
    logger.debug("Database tables created")

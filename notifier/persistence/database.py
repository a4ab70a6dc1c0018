"""Database connection and session management.

This module provides database initialization, engine creation, and session lifecycle
management for the persistence layer. Processor workers each open their own
session through ``get_session()``; sessions are never shared across threads.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, ContextManager, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker

from notifier.logging import get_logger

from .exceptions import DatabaseConnectionError

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

logger = get_logger(__name__, component="database")

# Factory for a transactional session scope, normally get_session
SessionScope = Callable[[], ContextManager[Session]]


def init_database(database_url: str) -> None:
    """Initialize database connection and create schema if tables don't exist.

    This function should be called once during application startup. It:
    1. Creates SQLAlchemy engine with appropriate configuration
    2. Configures SQLite-specific settings (WAL journal, lock timeout)
    3. Validates the connection
    4. Creates database schema if tables don't exist

    Args:
        database_url: Database connection URL (e.g., "sqlite:///./data/notifications.db")

    Raises:
        DatabaseConnectionError: If database initialization fails
    """
    global _engine, _session_factory

    if not database_url or not isinstance(database_url, str):
        raise DatabaseConnectionError("Database URL must be a non-empty string")

    logger.info(
        "Initializing database",
        extra={
            "event": "database.initializing",
            "database_url": redact_url(database_url),
        },
    )

    is_sqlite = database_url.startswith("sqlite")

    try:
        if is_sqlite and not database_url.endswith(":memory:"):
            db_file = Path(database_url.replace("sqlite:///", "", 1))
            if not db_file.parent.exists():
                logger.info(f"Creating database directory: {db_file.parent}")
                db_file.parent.mkdir(parents=True, exist_ok=True)

        _engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            # Worker threads share the engine; SQLite serializes writers via its lock
            connect_args={"check_same_thread": False, "timeout": 30} if is_sqlite else {},
        )

        if is_sqlite:
            _configure_sqlite(_engine)

        _validate_connection(_engine)

        _session_factory = sessionmaker(
            bind=_engine,
            autoflush=True,
            expire_on_commit=False,
        )

        from .schema import create_schema

        create_schema(_engine)

        logger.info(
            "Database initialized successfully",
            extra={
                "event": "database.initialised",
                "database_url": redact_url(database_url),
                "dialect": _engine.dialect.name,
            },
        )

    except DatabaseConnectionError:
        raise
    except Exception as e:
        error_msg = f"Failed to initialize database: {e}"
        logger.error(error_msg, exc_info=True)
        raise DatabaseConnectionError(error_msg) from e


def _configure_sqlite(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


def _validate_connection(engine: Engine) -> None:
    """Validate database connection by executing a test query.

    Raises:
        DatabaseConnectionError: If connection test fails
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.debug("Database connection validated successfully")
    except Exception as e:
        raise DatabaseConnectionError(f"Failed to validate database connection: {e}") from e


def redact_url(url: str) -> str:
    """Hide the password in a database URL for logging.

    Args:
        url: Database connection URL

    Returns:
        URL safe for logging
    """
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return url


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Provide a database session with automatic transaction management.

    Commits on successful exit, rolls back on exception and always closes.

    Yields:
        Session: SQLAlchemy session for database operations

    Raises:
        DatabaseConnectionError: If database not initialized
        Exception: Any exception from operations within the context

    Example:
        >>> with get_session() as session:
        ...     repo = QueueRepository(session)
        ...     item = repo.get(item_id)
    """
    if _session_factory is None:
        raise DatabaseConnectionError(
            "Database not initialized. Call init_database() before using get_session()"
        )

    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.warning(
            f"Database session rolled back due to exception: {e}",
            extra={
                "event": "database.session.rolled_back",
                "error_type": type(e).__name__,
            },
        )
        raise
    finally:
        session.close()


def get_engine() -> Engine:
    """Get the database engine instance.

    Raises:
        DatabaseConnectionError: If database not initialized
    """
    if _engine is None:
        raise DatabaseConnectionError(
            "Database not initialized. Call init_database() before using get_engine()"
        )

    return _engine


def close_database() -> None:
    """Close database connections and cleanup resources."""
    global _engine, _session_factory

    if _engine is not None:
        logger.info("Closing database connections")
        _engine.dispose()
        _engine = None
        _session_factory = None

"""Persistence layer exceptions.

Repositories wrap ``SQLAlchemyError`` in these so callers can catch every
storage failure with ``except PersistenceError``.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when the database is unreachable or not initialized.

    Examples:
    - Invalid database URL
    - SQLite file or directory not writable
    - ``get_session()`` called before ``init_database()``
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an operation targets a row that does not exist.

    Lookups return None instead; this is for mutations such as ``cancel``.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised on a constraint violation (duplicate key, NOT NULL)."""

    pass

"""Persistence layer for the notification queue and its companion tables.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - QueueRepository: enqueue, atomic claim, outcome recording, purge, stats
    - PreferenceRepository: per-user delivery preferences
    - InAppNotificationRepository: in-app notification feed
    - NotificationLogRepository: email delivery audit log

    # Exceptions
    - PersistenceError and its subclasses

Example usage:
    >>> from notifier.persistence import init_database, get_session, QueueRepository
    >>>
    >>> init_database("sqlite:///./data/notifications.db")
    >>>
    >>> with get_session() as session:
    ...     claimed = QueueRepository(session).claim_batch(50)
"""

from .database import (
    SessionScope,
    close_database,
    get_engine,
    get_session,
    init_database,
    redact_url,
)
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    InAppNotificationRepository,
    NotificationLogRepository,
    PreferenceRepository,
    QueueRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "redact_url",
    "SessionScope",
    # Repositories
    "QueueRepository",
    "PreferenceRepository",
    "InAppNotificationRepository",
    "NotificationLogRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]

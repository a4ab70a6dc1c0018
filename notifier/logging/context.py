"""Context propagation for structured logging.

Fields pushed here are injected into every log record emitted inside the
scope: a processor run carries ``run_id``, each dispatched row adds
``queue_item_id``, ``channel`` and ``event_type``. Context lives in a
contextvar, so worker threads started from a pool do not inherit it
implicitly; the processor re-enters the run context in each worker.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge new fields into the logging context.

    Args:
        **kwargs: Key-value pairs to add to the logging context

    Returns:
        Token that restores the previous context via pop_log_context()

    Example:
        >>> token = push_log_context(run_id="abc123", queue_item_id="9f2c...")
        >>> # ... logs include run_id and queue_item_id ...
        >>> pop_log_context(token)
    """
    current = LogContextVar.get()
    return LogContextVar.set({**current, **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the logging context to the state captured by ``token``."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Clear all logging context fields (mainly for tests)."""
    LogContextVar.set({})


class log_context:
    """Context manager for scoped logging context.

    Pushes context on entry and pops on exit, even if an exception occurs.

    Example:
        >>> with log_context(run_id="abc123", channel="email"):
        ...     logger.info("Dispatching")  # includes run_id and channel
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False

"""Structured logging helpers for the notification delivery core."""

import logging
from typing import Optional


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges a fixed component field with per-call extras."""

    def process(self, msg, kwargs):
        """Merge the adapter's extra with the call's extra (call wins)."""
        extra = kwargs.get("extra", {})
        kwargs["extra"] = {**self.extra, **extra}
        return msg, kwargs


def get_logger(name: str, component: Optional[str] = None):
    """Get a logger with an optional default component field.

    Args:
        name: Logger name (typically __name__)
        component: Optional component identifier ("processor", "fanout", ...)
            injected into every record from this logger

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="processor")
        >>> logger.info("Batch claimed", extra={"event": "queue.claimed", "claimed": 12})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger

"""Queue processing: atomic claim, bounded-concurrency dispatch, retry with backoff."""

from .backoff import backoff_delay
from .models import ProcessResult, QueueStats
from .processor import ItemOutcome, QueueProcessor

__all__ = [
    "QueueProcessor",
    "ProcessResult",
    "QueueStats",
    "ItemOutcome",
    "backoff_delay",
]

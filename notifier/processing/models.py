"""Result types for queue processor runs and queue reporting."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from notifier.domain.models import QueueStatus


@dataclass
class ProcessResult:
    """
    Outcome of one processor run.

    Attributes:
        run_id: Identifier carried in every log line of the run
        processed: Rows claimed and dispatched
        sent: Rows that reached ``sent``
        failed: Rows that reached ``failed`` in this run
        requeued: Rows returned to ``pending`` for a later attempt
        errors: Per-row error messages, at most ``max_errors`` of them
        errors_truncated: How many messages were dropped past the bound
        stale_requeued: Abandoned claims returned to ``pending`` before the run
        stale_failed: Abandoned claims failed for lack of budget before the run
        started_at: UTC start time
        finished_at: UTC finish time
    """

    run_id: str = ""
    processed: int = 0
    sent: int = 0
    failed: int = 0
    requeued: int = 0
    errors: List[str] = field(default_factory=list)
    errors_truncated: int = 0
    stale_requeued: int = 0
    stale_failed: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    max_errors: int = 50

    def add_error(self, message: str) -> None:
        if len(self.errors) < self.max_errors:
            self.errors.append(message)
        else:
            self.errors_truncated += 1

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def had_failures(self) -> bool:
        return self.failed > 0 or self.stale_failed > 0

    def to_dict(self) -> Dict:
        return {
            "run_id": self.run_id,
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "requeued": self.requeued,
            "errors": list(self.errors),
            "errors_truncated": self.errors_truncated,
            "stale_requeued": self.stale_requeued,
            "stale_failed": self.stale_failed,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class QueueStats:
    """Row counts per status for rows created within a window."""

    window_days: int
    counts: Dict[QueueStatus, int] = field(default_factory=dict)

    def count(self, status: QueueStatus) -> int:
        return self.counts.get(status, 0)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict:
        return {
            "window_days": self.window_days,
            **{status.value: self.count(status) for status in QueueStatus},
            "total": self.total,
        }

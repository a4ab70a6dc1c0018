"""Periodic execution of the queue processor and retention cleanup."""

from .service import CLEANUP_JOB_ID, QUEUE_JOB_ID, SchedulerService

__all__ = [
    "SchedulerService",
    "QUEUE_JOB_ID",
    "CLEANUP_JOB_ID",
]

"""Scheduler service for periodic queue processing and retention cleanup."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notifier.logging import get_logger

logger = get_logger(__name__, component="scheduler")

QUEUE_JOB_ID = "notification-queue"
CLEANUP_JOB_ID = "notification-cleanup"


class SchedulerService:
    """
    Wraps APScheduler to run the queue processor and the retention cleanup.

    Uses BackgroundScheduler to run jobs in worker threads while the main
    thread handles signals and coordinates shutdown. Processor runs may
    overlap up to ``max_overlapping_runs``; the atomic claim keeps
    overlapping runs from picking the same rows.
    """

    def __init__(
        self,
        process_callable: Callable[[], object],
        poll_interval_seconds: int,
        cleanup_callable: Optional[Callable[[], object]] = None,
        cleanup_interval_seconds: Optional[int] = None,
        max_overlapping_runs: int = 1,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            process_callable: Called on each processor tick (e.g. processor.run_once)
            poll_interval_seconds: Seconds between processor ticks
            cleanup_callable: Retention pass (e.g. processor.run_maintenance); optional
            cleanup_interval_seconds: Seconds between retention passes
            max_overlapping_runs: Processor runs allowed in flight at once
            shutdown_event: Optional event to set on shutdown for coordination
        """
        if cleanup_callable is not None and not cleanup_interval_seconds:
            raise ValueError("cleanup_interval_seconds is required when cleanup_callable is set")

        self.process_callable = process_callable
        self.poll_interval_seconds = poll_interval_seconds
        self.cleanup_callable = cleanup_callable
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.max_overlapping_runs = max_overlapping_runs
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,  # A delayed tick runs once, not once per missed interval
                "misfire_grace_time": poll_interval_seconds,
            },
            timezone=timezone.utc,
        )
        self.scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)

    def start(self) -> None:
        """
        Register the jobs and start the scheduler.

        The first processor run executes immediately; the first cleanup runs
        one cleanup interval after startup.
        """
        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self._run_job,
            args=(QUEUE_JOB_ID, self.process_callable),
            trigger=IntervalTrigger(seconds=self.poll_interval_seconds, timezone=timezone.utc),
            id=QUEUE_JOB_ID,
            name="Notification queue processor",
            replace_existing=True,
            max_instances=self.max_overlapping_runs,
            next_run_time=next_run,
        )

        if self.cleanup_callable is not None:
            self.scheduler.add_job(
                func=self._run_job,
                args=(CLEANUP_JOB_ID, self.cleanup_callable),
                trigger=IntervalTrigger(seconds=self.cleanup_interval_seconds, timezone=timezone.utc),
                id=CLEANUP_JOB_ID,
                name="Notification retention cleanup",
                replace_existing=True,
                max_instances=1,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with poll interval: {self.poll_interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "poll_interval_seconds": self.poll_interval_seconds,
                "cleanup_interval_seconds": self.cleanup_interval_seconds,
                "max_overlapping_runs": self.max_overlapping_runs,
                "next_run_time": next_run.isoformat(),
                "next_cleanup_time": _isoformat(self.get_next_run_time(CLEANUP_JOB_ID)),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.is_running():
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str = QUEUE_JOB_ID) -> Optional[datetime]:
        """
        Get the next scheduled run time of a job.

        Returns:
            Next run time, or None if the job is not scheduled
        """
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None

    def _run_job(self, job_id: str, func: Callable[[], object]) -> None:
        # Errors are logged here so a failed tick never stops the schedule
        try:
            func()
        except Exception as e:
            logger.error(
                f"Scheduled job {job_id} failed: {e}",
                exc_info=True,
                extra={"event": "scheduler.job.failed", "job_id": job_id, "error_type": type(e).__name__},
            )

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        logger.warning(
            f"Skipped {event.job_id} tick: {self.max_overlapping_runs} run(s) already in flight",
            extra={"event": "scheduler.run.skipped", "job_id": event.job_id},
        )


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

"""Queue processor: claim due rows, dispatch them, record the outcome.

A run is stateless. It claims a bounded batch with one atomic UPDATE, hands
the rows to a bounded worker pool and records each row's outcome with a
conditional UPDATE in the worker's own session. Overlapping runs, in this
process or another, are safe because a row can only be claimed once.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from uuid import uuid4

from notifier.config.models import QueueConfig, RetentionConfig
from notifier.domain.models import QueueItem, QueueStatus
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.notifications.dispatcher import ChannelDispatcher
from notifier.notifications.models import PermanentDeliveryError
from notifier.persistence import (
    InAppNotificationRepository,
    NotificationLogRepository,
    QueueRepository,
    SessionScope,
    get_session,
)
from notifier.utils.timestamps import days_ago, format_timestamp_for_log, utc_now

from .backoff import backoff_delay
from .models import ProcessResult, QueueStats

logger = get_logger(__name__, component="processor")


@dataclass(frozen=True)
class ItemOutcome:
    """What happened to one claimed row. ``status`` is None if the claim was lost."""

    status: Optional[QueueStatus]
    error: Optional[str] = None


class QueueProcessor:
    """Runs the claim/dispatch/record cycle over the notification queue."""

    def __init__(
        self,
        dispatcher: ChannelDispatcher,
        queue_config: Optional[QueueConfig] = None,
        retention_config: Optional[RetentionConfig] = None,
        session_scope: SessionScope = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the processor.

        Args:
            dispatcher: Channel dispatcher used for every row
            queue_config: Batch, concurrency, retry and backoff settings
            retention_config: Purge and reporting windows
            session_scope: Context manager factory yielding a Session
            clock: Source of the current UTC time
        """
        self.dispatcher = dispatcher
        self.config = queue_config or QueueConfig()
        self.retention = retention_config or RetentionConfig()
        self.session_scope = session_scope
        self.clock = clock

    def run_once(self) -> ProcessResult:
        """
        Execute one processor pass.

        This method:
        1. Returns abandoned claims to the queue (stale-claim recovery)
        2. Atomically claims up to ``batch_size`` due rows
        3. Dispatches them on at most ``max_concurrency`` worker threads
        4. Records sent / requeued / failed per row

        Per-row failures never abort the batch; they are counted and their
        messages collected in the result. Storage errors while recovering or
        claiming propagate to the caller.

        Returns:
            ProcessResult for the run
        """
        run_id = uuid4().hex
        result = ProcessResult(
            run_id=run_id,
            started_at=self.clock(),
            max_errors=self.config.max_error_messages,
        )

        with log_context(run_id=run_id):
            self._recover_stale(result)

            with self.session_scope() as session:
                items = QueueRepository(session).claim_batch(self.config.batch_size, now=self.clock())

            if not items:
                result.finished_at = self.clock()
                logger.debug("No queue items due", extra={"event": "queue.idle"})
                return result

            logger.info(
                f"Claimed {len(items)} queue items",
                extra={"event": "queue.claimed", "claimed": len(items), "batch_size": self.config.batch_size},
            )

            self._dispatch_batch(items, result, run_id)
            result.finished_at = self.clock()

            logger.info(
                f"Queue run complete: {result.sent} sent, {result.requeued} requeued, "
                f"{result.failed} failed (processed: {result.processed})",
                extra={
                    "event": "queue.run.completed",
                    "processed": result.processed,
                    "sent": result.sent,
                    "requeued": result.requeued,
                    "failed": result.failed,
                    "duration_seconds": round(result.duration_seconds, 3),
                },
            )

        return result

    def process_item(self, item_id: str) -> ProcessResult:
        """Claim and deliver one specific row now, without waiting for the next run.

        Nothing happens if the row is not pending and due (already sent,
        claimed by a run, cancelled or scheduled for later).
        """
        run_id = uuid4().hex
        result = ProcessResult(
            run_id=run_id,
            started_at=self.clock(),
            max_errors=self.config.max_error_messages,
        )

        with log_context(run_id=run_id):
            with self.session_scope() as session:
                item = QueueRepository(session).claim_item(item_id, now=self.clock())

            if item is None:
                logger.debug(
                    f"Queue item {item_id} not claimable",
                    extra={"event": "queue.item.not_claimable", "queue_item_id": item_id},
                )
            else:
                self._tally(result, item, self._process_claimed(item, run_id))

        result.finished_at = self.clock()
        return result

    def cancel(self, item_id: str, reason: Optional[str] = None) -> bool:
        """Cancel a pending row (admin action). Claimed or finished rows are not touched."""
        with self.session_scope() as session:
            cancelled = QueueRepository(session).cancel(item_id, reason=reason, now=self.clock())

        if cancelled:
            logger.info(
                f"Queue item {item_id} cancelled",
                extra={"event": "queue.item.cancelled", "queue_item_id": item_id},
            )
        return cancelled

    def purge(self, days_to_keep: Optional[int] = None) -> int:
        """Delete terminal rows finished more than ``days_to_keep`` days ago.

        Returns:
            Number of rows deleted
        """
        days = days_to_keep if days_to_keep is not None else self.retention.days_to_keep
        cutoff = days_ago(days, now=self.clock())

        with self.session_scope() as session:
            deleted = QueueRepository(session).purge_terminal(cutoff)

        logger.info(
            f"Purged {deleted} terminal queue items older than {days} days",
            extra={"event": "queue.purged", "deleted": deleted, "days_to_keep": days},
        )
        return deleted

    def run_maintenance(self) -> dict:
        """Retention pass over every table the core owns.

        Returns:
            Rows deleted per table
        """
        days = self.retention.days_to_keep
        cutoff = days_ago(days, now=self.clock())
        queue_deleted = self.purge(days)

        with self.session_scope() as session:
            in_app_deleted = InAppNotificationRepository(session).cleanup_old(cutoff)
            log_deleted = NotificationLogRepository(session).cleanup_old(cutoff)

        logger.info(
            "Maintenance complete",
            extra={
                "event": "maintenance.completed",
                "queue_deleted": queue_deleted,
                "in_app_deleted": in_app_deleted,
                "log_deleted": log_deleted,
            },
        )
        return {
            "notification_queue": queue_deleted,
            "in_app_notifications": in_app_deleted,
            "notification_log": log_deleted,
        }

    def get_stats(self, window_days: Optional[int] = None) -> QueueStats:
        """Row counts per status for rows created within the window."""
        days = window_days if window_days is not None else self.retention.stats_window_days
        with self.session_scope() as session:
            counts = QueueRepository(session).count_by_status(
                created_since=days_ago(days, now=self.clock())
            )
        return QueueStats(window_days=days, counts=counts)

    def _recover_stale(self, result: ProcessResult) -> None:
        now = self.clock()
        cutoff = now - timedelta(seconds=self.config.stale_claim_timeout_seconds)

        with self.session_scope() as session:
            requeued, failed = QueueRepository(session).recover_stale(cutoff, now=now)

        result.stale_requeued = requeued
        result.stale_failed = failed
        if requeued or failed:
            logger.warning(
                f"Recovered {requeued + failed} abandoned claims ({requeued} requeued, {failed} failed)",
                extra={
                    "event": "queue.stale.recovered",
                    "requeued": requeued,
                    "failed": failed,
                    "claimed_before": format_timestamp_for_log(cutoff),
                },
            )

    def _dispatch_batch(self, items: List[QueueItem], result: ProcessResult, run_id: str) -> None:
        workers = min(self.config.max_concurrency, len(items))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notifier-worker") as pool:
            futures = {pool.submit(self._process_claimed, item, run_id): item for item in items}

            for future in as_completed(futures):
                item = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    # Outcome could not be stored; stale recovery will release the row
                    logger.error(
                        f"Failed to record outcome for queue item {item.id}: {e}",
                        exc_info=True,
                        extra={"event": "queue.item.record_failed", "queue_item_id": item.id},
                    )
                    outcome = ItemOutcome(status=None, error=f"Outcome not recorded: {e}")
                self._tally(result, item, outcome)

    def _tally(self, result: ProcessResult, item: QueueItem, outcome: ItemOutcome) -> None:
        result.processed += 1
        if outcome.status is QueueStatus.SENT:
            result.sent += 1
        elif outcome.status is QueueStatus.FAILED:
            result.failed += 1
        elif outcome.status is QueueStatus.PENDING:
            result.requeued += 1

        if outcome.error:
            result.add_error(f"{item.id} [{item.channel.value}/{item.event_type}]: {outcome.error}")

    def _process_claimed(self, item: QueueItem, run_id: str) -> ItemOutcome:
        # Worker threads start with an empty context
        with log_context(
            run_id=run_id,
            queue_item_id=item.id,
            channel=item.channel.value,
            event_type=item.event_type,
            attempt=item.retry_count + 1,
        ):
            try:
                delivery = self.dispatcher.dispatch(item)
            except PermanentDeliveryError as e:
                return self._record_failure(item, str(e), permanent=True)
            except Exception as e:
                return self._record_failure(item, f"{type(e).__name__}: {e}", permanent=False)

            with self.session_scope() as session:
                recorded = QueueRepository(session).mark_sent(item.id, now=self.clock())

            if not recorded:
                logger.warning(
                    "Delivered but the claim was already released; row left as is",
                    extra={"event": "queue.item.claim_lost"},
                )
                return ItemOutcome(status=None, error="Claim lost before the outcome was recorded")

            logger.info(
                "Queue item sent",
                extra={
                    "event": "queue.item.sent",
                    "provider_message_id": delivery.provider_message_id,
                },
            )
            return ItemOutcome(status=QueueStatus.SENT)

    def _record_failure(self, item: QueueItem, error: str, permanent: bool) -> ItemOutcome:
        delay = None
        if not permanent:
            delay = backoff_delay(
                item.retry_count,
                base_seconds=self.config.backoff_base_seconds,
                max_seconds=self.config.backoff_max_seconds,
            )

        with self.session_scope() as session:
            updated = QueueRepository(session).record_failure(item, error, delay, now=self.clock())

        if updated is None:
            logger.warning(
                f"Failure not recorded, claim already released: {error}",
                extra={"event": "queue.item.claim_lost"},
            )
            return ItemOutcome(status=None, error=error)

        if updated.status is QueueStatus.FAILED:
            logger.error(
                f"Queue item failed after {updated.retry_count} attempts: {error}",
                extra={
                    "event": "queue.item.failed",
                    "retry_count": updated.retry_count,
                    "permanent": permanent,
                },
            )
        else:
            logger.warning(
                f"Queue item requeued (attempt {updated.retry_count}/{updated.max_retries}): {error}",
                extra={
                    "event": "queue.item.requeued",
                    "retry_count": updated.retry_count,
                    "next_attempt_at": format_timestamp_for_log(updated.scheduled_at),
                },
            )
        return ItemOutcome(status=updated.status, error=error)

"""Data access layer (repositories) for persistence operations.

Repositories wrap one session each, translate ``SQLAlchemyError`` into
``PersistenceError`` and return domain models rather than ORM rows. They never
commit; the caller's ``get_session()`` block owns the transaction.

The queue's state transitions are all conditional UPDATE statements guarded on
the row's current ``status``, so concurrent processor runs coordinate through
the table alone.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.domain.models import (
    TERMINAL_STATUSES,
    Channel,
    EventCategory,
    InAppNotification,
    NotificationLogEntry,
    QueueItem,
    QueueStatus,
    UserPreferences,
)
from notifier.utils.timestamps import to_storage, utc_now

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    CHANNEL_SWITCH_EVENT,
    InAppNotificationModel,
    NotificationLogModel,
    PreferenceModel,
    QueueItemModel,
    encode_payload,
    queue_table,
    row_to_queue_item,
)

logger = logging.getLogger(__name__)


class QueueRepository:
    """Repository for the notification work queue."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def enqueue(
        self,
        event_type: str,
        channel: Channel,
        payload: Mapping,
        recipient_user_id: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        max_retries: int = 3,
        now: Optional[datetime] = None,
    ) -> QueueItem:
        """Insert one pending row.

        Args:
            event_type: Event tag (already validated by the caller)
            channel: Delivery channel
            payload: JSON-compatible event data, stored verbatim
            recipient_user_id: Target user, if any
            scheduled_at: Earliest claim time (defaults to now)
            max_retries: Attempt budget
            now: Clock override

        Returns:
            The persisted QueueItem

        Raises:
            DataIntegrityError: On constraint violation
            PersistenceError: If database error occurs
        """
        created = now or utc_now()
        item = QueueItem(
            id=str(uuid.uuid4()),
            recipient_user_id=recipient_user_id,
            event_type=event_type,
            channel=Channel(channel),
            payload=dict(payload),
            status=QueueStatus.PENDING,
            retry_count=0,
            max_retries=max_retries,
            scheduled_at=scheduled_at or created,
            created_at=created,
        )

        try:
            self.session.add(QueueItemModel.from_domain(item))
            self.session.flush()
        except IntegrityError as e:
            logger.error(f"Integrity error enqueuing {event_type}/{channel}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to enqueue notification: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error enqueuing {event_type}/{channel}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to enqueue notification: {e}") from e

        return item

    def get(self, item_id: str) -> Optional[QueueItem]:
        """Retrieve a queue row by id, or None."""
        try:
            model = self.session.get(QueueItemModel, item_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving queue item {item_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve queue item: {e}") from e

    def list_by_status(self, status: QueueStatus, limit: int = 100) -> List[QueueItem]:
        """Rows in ``status`` ordered by scheduled time."""
        try:
            stmt = (
                select(QueueItemModel)
                .where(QueueItemModel.status == QueueStatus(status).value)
                .order_by(QueueItemModel.scheduled_at.asc(), QueueItemModel.created_at.asc())
                .limit(limit)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing queue items in {status}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list queue items: {e}") from e

    def claim_batch(self, batch_size: int, now: Optional[datetime] = None) -> List[QueueItem]:
        """Atomically move up to ``batch_size`` due rows to ``processing``.

        The selection and the status change happen in one UPDATE ... RETURNING
        statement, so two concurrent claims can never return the same row.
        On PostgreSQL the inner select also takes ``FOR UPDATE SKIP LOCKED``
        so competing claims skip each other's rows instead of waiting.

        Args:
            batch_size: Maximum number of rows to claim
            now: Clock override

        Returns:
            Claimed rows in scheduled order (empty when nothing is due)

        Raises:
            PersistenceError: If database error occurs
        """
        if batch_size < 1:
            return []

        now_str = to_storage(now or utc_now())
        due = (
            select(queue_table.c.id)
            .where(
                queue_table.c.status == QueueStatus.PENDING.value,
                queue_table.c.scheduled_at <= now_str,
                queue_table.c.retry_count < queue_table.c.max_retries,
            )
            .order_by(queue_table.c.scheduled_at.asc(), queue_table.c.created_at.asc())
            .limit(batch_size)
        )
        if self._dialect_name() == "postgresql":
            due = due.with_for_update(skip_locked=True)

        return self._claim(due, now_str)

    def claim_item(self, item_id: str, now: Optional[datetime] = None) -> Optional[QueueItem]:
        """Atomically claim one specific row if it is pending and due.

        Returns:
            The claimed row, or None if it is missing, not pending or not yet due
        """
        now_str = to_storage(now or utc_now())
        due = select(queue_table.c.id).where(
            queue_table.c.id == item_id,
            queue_table.c.status == QueueStatus.PENDING.value,
            queue_table.c.scheduled_at <= now_str,
            queue_table.c.retry_count < queue_table.c.max_retries,
        )
        claimed = self._claim(due, now_str)
        return claimed[0] if claimed else None

    def _claim(self, due, now_str: str) -> List[QueueItem]:
        stmt = (
            update(queue_table)
            .where(
                queue_table.c.id.in_(due),
                queue_table.c.status == QueueStatus.PENDING.value,
            )
            .values(status=QueueStatus.PROCESSING.value, processed_at=now_str)
            .returning(*queue_table.c)
            .execution_options(synchronize_session=False)
        )
        try:
            rows = self.session.execute(stmt).mappings().all()
        except SQLAlchemyError as e:
            logger.error(f"Error claiming queue items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to claim queue items: {e}") from e

        items = [row_to_queue_item(row) for row in rows]
        # RETURNING order is unspecified
        items.sort(key=lambda item: (item.scheduled_at, item.created_at))
        return items

    def mark_sent(self, item_id: str, now: Optional[datetime] = None) -> bool:
        """Move a claimed row to ``sent``.

        Returns:
            False when the row is no longer ``processing`` (e.g. it was
            reclaimed as stale while this dispatch was in flight)
        """
        stmt = (
            update(queue_table)
            .where(
                queue_table.c.id == item_id,
                queue_table.c.status == QueueStatus.PROCESSING.value,
            )
            .values(
                status=QueueStatus.SENT.value,
                completed_at=to_storage(now or utc_now()),
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            return self.session.execute(stmt).rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error marking queue item {item_id} sent: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark queue item sent: {e}") from e

    def record_failure(
        self,
        item: QueueItem,
        error_message: str,
        retry_delay: Optional[timedelta],
        now: Optional[datetime] = None,
    ) -> Optional[QueueItem]:
        """Record a failed attempt for a claimed row.

        The retry counter always increases by one. The row becomes ``failed``
        when ``retry_delay`` is None (a permanent error) or when the new count
        reaches ``max_retries``; otherwise it returns to ``pending`` at
        ``now + retry_delay`` with ``processed_at`` cleared.

        The update is guarded on the status and retry count seen at claim
        time, so a stale reclaim between claim and failure is detected.

        Args:
            item: The row as returned by the claim
            error_message: Failure reason to store
            retry_delay: Backoff before the next attempt, or None to fail now
            now: Clock override

        Returns:
            The updated row, or None if the guard did not match
        """
        current = now or utc_now()
        new_count = item.retry_count + 1
        exhausted = retry_delay is None or item.attempts_remaining <= 1

        values = {"retry_count": new_count, "error_message": error_message}
        if exhausted:
            values.update(status=QueueStatus.FAILED.value, completed_at=to_storage(current))
        else:
            values.update(
                status=QueueStatus.PENDING.value,
                scheduled_at=to_storage(current + retry_delay),
                processed_at=None,
            )

        stmt = (
            update(queue_table)
            .where(
                queue_table.c.id == item.id,
                queue_table.c.status == QueueStatus.PROCESSING.value,
                queue_table.c.retry_count == item.retry_count,
            )
            .values(**values)
            .returning(*queue_table.c)
            .execution_options(synchronize_session=False)
        )
        try:
            row = self.session.execute(stmt).mappings().first()
        except SQLAlchemyError as e:
            logger.error(f"Error recording failure for queue item {item.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record queue item failure: {e}") from e

        return row_to_queue_item(row) if row is not None else None

    def cancel(self, item_id: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        """Cancel a pending row.

        Rows already claimed or terminal are left untouched.

        Returns:
            True if the row was cancelled

        Raises:
            RecordNotFoundError: If no row has this id
        """
        stmt = (
            update(queue_table)
            .where(
                queue_table.c.id == item_id,
                queue_table.c.status == QueueStatus.PENDING.value,
            )
            .values(
                status=QueueStatus.CANCELLED.value,
                completed_at=to_storage(now or utc_now()),
                error_message=reason,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            cancelled = self.session.execute(stmt).rowcount == 1
            if not cancelled and self.session.get(QueueItemModel, item_id) is None:
                raise RecordNotFoundError(f"Queue item {item_id} not found")
            return cancelled
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error cancelling queue item {item_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to cancel queue item: {e}") from e

    def recover_stale(
        self,
        claimed_before: datetime,
        now: Optional[datetime] = None,
    ) -> Tuple[int, int]:
        """Release rows stuck in ``processing`` since before ``claimed_before``.

        An abandoned claim counts as one failed attempt: rows with budget left
        go back to ``pending`` (due immediately), the rest become ``failed``.

        Returns:
            Tuple of (requeued, failed) row counts
        """
        current = to_storage(now or utc_now())
        cutoff = to_storage(claimed_before)
        stale = and_(
            queue_table.c.status == QueueStatus.PROCESSING.value,
            queue_table.c.processed_at < cutoff,
        )
        message = "Claim abandoned before the attempt completed"

        fail_stmt = (
            update(queue_table)
            .where(stale, queue_table.c.retry_count + 1 >= queue_table.c.max_retries)
            .values(
                status=QueueStatus.FAILED.value,
                retry_count=queue_table.c.retry_count + 1,
                completed_at=current,
                error_message=message,
            )
            .execution_options(synchronize_session=False)
        )
        requeue_stmt = (
            update(queue_table)
            .where(stale)
            .values(
                status=QueueStatus.PENDING.value,
                retry_count=queue_table.c.retry_count + 1,
                scheduled_at=current,
                processed_at=None,
                error_message=message,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            failed = self.session.execute(fail_stmt).rowcount
            requeued = self.session.execute(requeue_stmt).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error recovering stale queue items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to recover stale queue items: {e}") from e

        return requeued, failed

    def purge_terminal(self, older_than: datetime) -> int:
        """Delete terminal rows that finished before ``older_than``.

        Returns:
            Count of deleted rows
        """
        finished_at = func.coalesce(queue_table.c.completed_at, queue_table.c.created_at)
        stmt = (
            delete(queue_table)
            .where(
                queue_table.c.status.in_([status.value for status in TERMINAL_STATUSES]),
                finished_at < to_storage(older_than),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            return self.session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error purging queue items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to purge queue items: {e}") from e

    def count_by_status(self, created_since: Optional[datetime] = None) -> Dict[QueueStatus, int]:
        """Count rows per status, optionally only those created since a time.

        Every status is present in the result, zero when absent.
        """
        stmt = select(queue_table.c.status, func.count()).group_by(queue_table.c.status)
        if created_since is not None:
            stmt = stmt.where(queue_table.c.created_at >= to_storage(created_since))

        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error(f"Error counting queue items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count queue items: {e}") from e

        counts = {status: 0 for status in QueueStatus}
        for status, count in rows:
            counts[QueueStatus(status)] = count
        return counts

    def _dialect_name(self) -> str:
        return self.session.get_bind().dialect.name


class PreferenceRepository:
    """Repository for per-user delivery preferences."""

    def __init__(self, session: Session):
        self.session = session

    def get_for_user(
        self,
        user_id: str,
        defaults: Optional[Mapping[Tuple[EventCategory, Channel], bool]] = None,
    ) -> UserPreferences:
        """Load a user's preferences with category defaults attached."""
        return self.get_for_users([user_id], defaults)[user_id]

    def get_for_users(
        self,
        user_ids: Iterable[str],
        defaults: Optional[Mapping[Tuple[EventCategory, Channel], bool]] = None,
    ) -> Dict[str, UserPreferences]:
        """Load preferences for many users in one query.

        Users without any stored row still get an entry carrying the defaults.
        """
        ids = list(dict.fromkeys(user_ids))
        result = {
            user_id: UserPreferences(user_id=user_id, defaults=dict(defaults or {}))
            for user_id in ids
        }
        if not ids:
            return result

        try:
            stmt = select(PreferenceModel).where(PreferenceModel.user_id.in_(ids))
            models = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Error loading preferences for {len(ids)} users: {e}", exc_info=True)
            raise PersistenceError(f"Failed to load preferences: {e}") from e

        for model in models:
            try:
                channel = Channel(model.channel)
            except ValueError:
                logger.warning(f"Ignoring preference for unknown channel '{model.channel}'")
                continue

            prefs = result[model.user_id]
            prefs.has_stored_preferences = True
            if model.event_type == CHANNEL_SWITCH_EVENT:
                prefs.channel_switches[channel] = bool(model.enabled)
            else:
                prefs.overrides[(model.event_type, channel)] = bool(model.enabled)

        return result

    def set_preference(
        self,
        user_id: str,
        event_type: str,
        channel: Channel,
        enabled: bool,
        now: Optional[datetime] = None,
    ) -> None:
        """Store an explicit flag for one (event_type, channel) pair."""
        self._upsert(user_id, event_type, Channel(channel), enabled, now)

    def set_channel_enabled(
        self,
        user_id: str,
        channel: Channel,
        enabled: bool,
        now: Optional[datetime] = None,
    ) -> None:
        """Set the user's master switch for a channel."""
        self._upsert(user_id, CHANNEL_SWITCH_EVENT, Channel(channel), enabled, now)

    def _upsert(
        self,
        user_id: str,
        event_type: str,
        channel: Channel,
        enabled: bool,
        now: Optional[datetime],
    ) -> None:
        updated_at = to_storage(now or utc_now())
        try:
            existing = self.session.get(
                PreferenceModel,
                {"user_id": user_id, "event_type": event_type, "channel": channel.value},
            )
            if existing:
                existing.enabled = enabled
                existing.updated_at = updated_at
            else:
                self.session.add(
                    PreferenceModel(
                        user_id=user_id,
                        event_type=event_type,
                        channel=channel.value,
                        enabled=enabled,
                        updated_at=updated_at,
                    )
                )
            self.session.flush()
        except IntegrityError as e:
            logger.error(f"Integrity error saving preference for user {user_id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to save preference: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error saving preference for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save preference: {e}") from e


class InAppNotificationRepository:
    """Repository for users' in-app notification feeds."""

    def __init__(self, session: Session):
        self.session = session

    def insert(
        self,
        user_id: str,
        title: str,
        body: str,
        event_type: str,
        icon: Optional[str] = None,
        action_url: Optional[str] = None,
        reference_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> InAppNotification:
        """Add a notification to a user's feed.

        Raises:
            PersistenceError: If database error occurs
        """
        model = InAppNotificationModel(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            body=body,
            icon=icon,
            action_url=action_url,
            event_type=event_type,
            reference_id=reference_id,
            is_read=False,
            created_at=to_storage(now or utc_now()),
        )
        try:
            self.session.add(model)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error inserting in-app notification for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert in-app notification: {e}") from e
        return model.to_domain()

    def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[InAppNotification]:
        """Newest first."""
        try:
            stmt = select(InAppNotificationModel).where(InAppNotificationModel.user_id == user_id)
            if unread_only:
                stmt = stmt.where(InAppNotificationModel.is_read.is_(False))
            stmt = stmt.order_by(InAppNotificationModel.created_at.desc()).limit(limit)
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing in-app notifications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list in-app notifications: {e}") from e

    def unread_count(self, user_id: str) -> int:
        try:
            stmt = select(func.count()).where(
                InAppNotificationModel.user_id == user_id,
                InAppNotificationModel.is_read.is_(False),
            )
            return self.session.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting unread notifications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count unread notifications: {e}") from e

    def mark_as_read(self, notification_id: str, user_id: str, now: Optional[datetime] = None) -> bool:
        """Mark one of the user's notifications read.

        Returns:
            False if the notification does not exist, belongs to someone else
            or was already read
        """
        stmt = (
            update(InAppNotificationModel)
            .where(
                InAppNotificationModel.id == notification_id,
                InAppNotificationModel.user_id == user_id,
                InAppNotificationModel.is_read.is_(False),
            )
            .values(is_read=True, read_at=to_storage(now or utc_now()))
            .execution_options(synchronize_session=False)
        )
        try:
            return self.session.execute(stmt).rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error marking notification {notification_id} read: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark notification read: {e}") from e

    def mark_all_as_read(self, user_id: str, now: Optional[datetime] = None) -> int:
        stmt = (
            update(InAppNotificationModel)
            .where(
                InAppNotificationModel.user_id == user_id,
                InAppNotificationModel.is_read.is_(False),
            )
            .values(is_read=True, read_at=to_storage(now or utc_now()))
            .execution_options(synchronize_session=False)
        )
        try:
            return self.session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error marking notifications read for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark notifications read: {e}") from e

    def delete(self, notification_id: str, user_id: str) -> bool:
        stmt = delete(InAppNotificationModel).where(
            InAppNotificationModel.id == notification_id,
            InAppNotificationModel.user_id == user_id,
        )
        try:
            return self.session.execute(stmt).rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error deleting notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete notification: {e}") from e

    def cleanup_old(self, older_than: datetime) -> int:
        """Delete read notifications created before ``older_than``.

        Unread notifications are kept regardless of age.
        """
        stmt = delete(InAppNotificationModel).where(
            InAppNotificationModel.created_at < to_storage(older_than),
            InAppNotificationModel.is_read.is_(True),
        )
        try:
            deleted = self.session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up in-app notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to clean up in-app notifications: {e}") from e

        logger.info(f"Cleaned up {deleted} read in-app notifications")
        return deleted


class NotificationLogRepository:
    """Repository for the email delivery audit log."""

    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        to_email: str,
        event_type: str,
        status: str,
        subject: Optional[str] = None,
        queue_item_id: Optional[str] = None,
        user_id: Optional[str] = None,
        provider_message_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        error_message: Optional[str] = None,
        channel: Channel = Channel.EMAIL,
        now: Optional[datetime] = None,
    ) -> NotificationLogEntry:
        model = NotificationLogModel(
            queue_item_id=queue_item_id,
            user_id=user_id,
            to_email=to_email,
            event_type=event_type,
            channel=Channel(channel).value,
            subject=subject,
            status=status,
            provider_message_id=provider_message_id,
            reference_id=reference_id,
            error_message=error_message,
            created_at=to_storage(now or utc_now()),
        )
        try:
            self.session.add(model)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error writing notification log for {event_type}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to write notification log: {e}") from e
        return model.to_domain()

    def get_for_queue_item(self, queue_item_id: str) -> List[NotificationLogEntry]:
        """All attempts for a queue row, oldest first."""
        try:
            stmt = (
                select(NotificationLogModel)
                .where(NotificationLogModel.queue_item_id == queue_item_id)
                .order_by(NotificationLogModel.id.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error reading notification log for {queue_item_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read notification log: {e}") from e

    def cleanup_old(self, older_than: datetime) -> int:
        stmt = delete(NotificationLogModel).where(
            NotificationLogModel.created_at < to_storage(older_than)
        )
        try:
            return self.session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up notification log: {e}", exc_info=True)
            raise PersistenceError(f"Failed to clean up notification log: {e}") from e

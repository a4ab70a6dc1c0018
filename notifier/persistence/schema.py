"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the tables the notification core
owns and provides conversion methods between ORM rows and domain models.

Timestamps are stored as fixed-width ISO 8601 strings (see
``notifier.utils.timestamps``) so that ``scheduled_at <= now`` comparisons
work lexically on every backend. Payloads are stored as JSON text; typed
access happens at the application boundary.
"""

import json
import logging
from typing import Any, Dict, Mapping

from sqlalchemy import Boolean, Column, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from notifier.domain.models import (
    Channel,
    InAppNotification,
    NotificationLogEntry,
    QueueItem,
    QueueStatus,
)
from notifier.utils.timestamps import from_storage, to_storage

logger = logging.getLogger(__name__)

Base = declarative_base()

# Event type stored for a per-channel master switch row
CHANNEL_SWITCH_EVENT = "*"


class QueueItemModel(Base):
    """ORM model for the notification_queue table.

    One row per (recipient, channel) delivery. Coordination between
    processor runs happens only through ``status`` and ``scheduled_at``.
    """

    __tablename__ = "notification_queue"

    id = Column(String(36), primary_key=True, nullable=False)
    recipient_user_id = Column(String(64), nullable=True)
    event_type = Column(String(64), nullable=False)
    channel = Column(String(16), nullable=False)
    payload = Column(Text, nullable=False, default="{}")

    status = Column(String(16), nullable=False, default=QueueStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    scheduled_at = Column(String(32), nullable=False)
    processed_at = Column(String(32), nullable=True)
    completed_at = Column(String(32), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_queue_status_scheduled", "status", "scheduled_at"),
        Index("idx_queue_created_at", "created_at"),
        Index("idx_queue_recipient", "recipient_user_id"),
    )

    def to_domain(self) -> QueueItem:
        return row_to_queue_item(
            {column.name: getattr(self, column.name) for column in self.__table__.columns}
        )

    @classmethod
    def from_domain(cls, item: QueueItem) -> "QueueItemModel":
        return cls(
            id=item.id,
            recipient_user_id=item.recipient_user_id,
            event_type=item.event_type,
            channel=item.channel.value,
            payload=encode_payload(item.payload),
            status=item.status.value,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            scheduled_at=to_storage(item.scheduled_at),
            processed_at=to_storage(item.processed_at),
            completed_at=to_storage(item.completed_at),
            error_message=item.error_message,
            created_at=to_storage(item.created_at),
        )


class PreferenceModel(Base):
    """ORM model for notification_preferences.

    A row with ``event_type == "*"`` is the user's master switch for the channel.
    """

    __tablename__ = "notification_preferences"

    user_id = Column(String(64), primary_key=True, nullable=False)
    event_type = Column(String(64), primary_key=True, nullable=False)
    channel = Column(String(16), primary_key=True, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(String(32), nullable=False)


class InAppNotificationModel(Base):
    """ORM model for in_app_notifications (a user's notification feed)."""

    __tablename__ = "in_app_notifications"

    id = Column(String(36), primary_key=True, nullable=False)
    user_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    icon = Column(String(64), nullable=True)
    action_url = Column(Text, nullable=True)
    event_type = Column(String(64), nullable=False)
    reference_id = Column(String(64), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(String(32), nullable=True)
    created_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_in_app_user_read", "user_id", "is_read"),
        Index("idx_in_app_created_at", "created_at"),
    )

    def to_domain(self) -> InAppNotification:
        return InAppNotification(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            body=self.body,
            icon=self.icon,
            action_url=self.action_url,
            event_type=self.event_type,
            reference_id=self.reference_id,
            is_read=bool(self.is_read),
            read_at=from_storage(self.read_at),
            created_at=from_storage(self.created_at),
        )


class NotificationLogModel(Base):
    """ORM model for notification_log: one row per email delivery attempt."""

    __tablename__ = "notification_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue_item_id = Column(String(36), nullable=True)
    user_id = Column(String(64), nullable=True)
    to_email = Column(String(320), nullable=False)
    event_type = Column(String(64), nullable=False)
    channel = Column(String(16), nullable=False, default=Channel.EMAIL.value)
    subject = Column(Text, nullable=True)
    status = Column(String(16), nullable=False)
    provider_message_id = Column(String(255), nullable=True)
    reference_id = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_log_queue_item", "queue_item_id"),
        Index("idx_log_created_at", "created_at"),
    )

    def to_domain(self) -> NotificationLogEntry:
        return NotificationLogEntry(
            id=self.id,
            queue_item_id=self.queue_item_id,
            user_id=self.user_id,
            to_email=self.to_email,
            event_type=self.event_type,
            channel=Channel(self.channel),
            subject=self.subject,
            status=self.status,
            provider_message_id=self.provider_message_id,
            reference_id=self.reference_id,
            error_message=self.error_message,
            created_at=from_storage(self.created_at),
        )


queue_table = QueueItemModel.__table__


def encode_payload(payload: Mapping[str, Any]) -> str:
    """Serialize a payload for the queue's JSON text column."""
    return json.dumps(dict(payload), sort_keys=True, separators=(",", ":"))


def decode_payload(raw: str) -> Dict[str, Any]:
    if not raw:
        return {}
    return json.loads(raw)


def row_to_queue_item(row: Mapping[str, Any]) -> QueueItem:
    """Build a QueueItem from a Core result row mapping (e.g. ``RETURNING``)."""
    return QueueItem(
        id=row["id"],
        recipient_user_id=row["recipient_user_id"],
        event_type=row["event_type"],
        channel=Channel(row["channel"]),
        payload=decode_payload(row["payload"]),
        status=QueueStatus(row["status"]),
        retry_count=row["retry_count"],
        max_retries=row["max_retries"],
        scheduled_at=from_storage(row["scheduled_at"]),
        processed_at=from_storage(row["processed_at"]),
        completed_at=from_storage(row["completed_at"]),
        error_message=row["error_message"],
        created_at=from_storage(row["created_at"]),
    )


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise

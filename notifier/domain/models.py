"""Core domain models for the notification queue.

This module defines the data structures used throughout the application:
- QueueItem: one unit of delivery work for one (recipient, channel) pair
- Recipient: a resolved delivery target produced by the fan-out
- UserPreferences: a user's opt-in flags with the category defaults applied
- InAppNotification: a row in a user's in-app notification feed
- NotificationLogEntry: an audit record of one email delivery attempt
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class Channel(str, Enum):
    """Delivery media. Each queue row targets exactly one channel."""

    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


class EventType(str, Enum):
    """Business events that produce notifications."""

    NEW_REFERRAL_REQUEST = "new_referral_request"
    REFERRAL_CLAIMED = "referral_claimed"
    REFERRAL_VERIFIED = "referral_verified"
    SUPPORT_REPLY = "support_reply"


class EventCategory(str, Enum):
    """Preference-default buckets for event types."""

    # Sent to many users who did not ask for it (opt-in)
    BROADCAST = "broadcast"
    # About the recipient's own activity (opt-out)
    TRANSACTIONAL = "transactional"


class QueueStatus(str, Enum):
    """Queue row states.

    pending -> processing -> sent | pending (retry) | failed.
    ``cancelled`` is set only by an external actor on a pending row.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({QueueStatus.SENT, QueueStatus.FAILED, QueueStatus.CANCELLED})


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class QueueItem(BaseModel):
    """A persisted unit of notification work.

    The payload is captured at enqueue time and never re-derived, so a retry
    replays exactly what the first attempt saw. Instances are immutable; state
    changes happen only through the queue repository.
    """

    id: str = Field(..., description="Unique identifier assigned at enqueue time")
    recipient_user_id: Optional[str] = Field(
        None, description="Target user (optional for plain email to an address)"
    )
    event_type: str = Field(..., description="Event tag that selects content rendering")
    channel: Channel = Field(..., description="Delivery channel")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event data snapshot")
    status: QueueStatus = Field(QueueStatus.PENDING, description="Current state")
    retry_count: int = Field(0, ge=0, description="Failed attempts so far")
    max_retries: int = Field(3, ge=1, description="Attempt budget")
    scheduled_at: datetime = Field(..., description="Earliest claim time (UTC)")
    processed_at: Optional[datetime] = Field(None, description="When the current claim was taken")
    completed_at: Optional[datetime] = Field(None, description="When the row reached a terminal state")
    error_message: Optional[str] = Field(None, description="Last failure reason")
    created_at: datetime = Field(..., description="Enqueue time (UTC)")

    model_config = {"frozen": True}

    @field_validator("scheduled_at", "processed_at", "completed_at", "created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return _as_utc(v)

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_retries - self.retry_count, 0)

    @property
    def reference_id(self) -> Optional[str]:
        """Business reference carried in the payload (request or ticket id)."""
        for key in ("request_id", "ticket_id", "reference_id"):
            value = self.payload.get(key)
            if value:
                return str(value)
        return None


class Recipient(BaseModel):
    """A delivery target resolved by the fan-out."""

    user_id: str = Field(..., min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None


# Event types not listed here are treated as transactional
EVENT_CATEGORIES: Dict[EventType, EventCategory] = {
    EventType.NEW_REFERRAL_REQUEST: EventCategory.BROADCAST,
    EventType.REFERRAL_CLAIMED: EventCategory.TRANSACTIONAL,
    EventType.REFERRAL_VERIFIED: EventCategory.TRANSACTIONAL,
    EventType.SUPPORT_REPLY: EventCategory.TRANSACTIONAL,
}


def category_for(event_type: EventType) -> EventCategory:
    return EVENT_CATEGORIES.get(event_type, EventCategory.TRANSACTIONAL)


@dataclass
class UserPreferences:
    """A user's delivery preferences with category defaults applied.

    Resolution order for an (event_type, channel) pair:
    1. a channel master switch that is off disables the channel entirely
    2. an explicit (event_type, channel) flag
    3. the default for the event's category

    Attributes:
        user_id: User these preferences belong to
        channel_switches: Per-channel master switches
        overrides: Explicit flags keyed by (event_type value, channel)
        defaults: Fallback flags keyed by (category, channel)
        has_stored_preferences: Whether any preference row exists for the user
    """

    user_id: str
    channel_switches: Dict[Channel, bool] = field(default_factory=dict)
    overrides: Dict[Tuple[str, Channel], bool] = field(default_factory=dict)
    defaults: Dict[Tuple[EventCategory, Channel], bool] = field(default_factory=dict)
    has_stored_preferences: bool = False

    def is_enabled(self, event_type: EventType, channel: Channel) -> bool:
        """Resolve whether ``event_type`` may be delivered on ``channel``."""
        if self.channel_switches.get(channel) is False:
            return False

        explicit = self.overrides.get((event_type.value, channel))
        if explicit is not None:
            return explicit

        return self.defaults.get((category_for(event_type), channel), False)

    def enabled_channels(self, event_type: EventType, channels: List[Channel]) -> List[Channel]:
        return [channel for channel in channels if self.is_enabled(event_type, channel)]


class InAppNotification(BaseModel):
    """A notification in a user's in-app feed."""

    id: str
    user_id: str
    title: str
    body: str
    icon: Optional[str] = None
    action_url: Optional[str] = None
    event_type: str
    reference_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime

    @field_validator("created_at", "read_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class NotificationLogEntry(BaseModel):
    """Audit record for one email delivery attempt."""

    id: int
    queue_item_id: Optional[str] = None
    user_id: Optional[str] = None
    to_email: str
    event_type: str
    channel: Channel = Channel.EMAIL
    subject: Optional[str] = None
    status: str
    provider_message_id: Optional[str] = None
    reference_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

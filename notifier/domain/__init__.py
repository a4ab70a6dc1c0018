"""Domain models and the event catalogue for the notification queue."""

from .events import (
    DEFAULT_CHANNELS,
    PAYLOAD_SCHEMAS,
    EventPayload,
    NewReferralRequestPayload,
    PayloadValidationError,
    ReferralClaimedPayload,
    ReferralVerifiedPayload,
    SupportReplyPayload,
    coerce_event_type,
    parse_payload,
    validate_payload,
)
from .models import (
    EVENT_CATEGORIES,
    TERMINAL_STATUSES,
    Channel,
    EventCategory,
    EventType,
    InAppNotification,
    NotificationLogEntry,
    QueueItem,
    QueueStatus,
    Recipient,
    UserPreferences,
    category_for,
)

__all__ = [
    # Enums
    "Channel",
    "EventType",
    "EventCategory",
    "QueueStatus",
    "TERMINAL_STATUSES",
    "EVENT_CATEGORIES",
    "category_for",
    # Models
    "QueueItem",
    "Recipient",
    "UserPreferences",
    "InAppNotification",
    "NotificationLogEntry",
    # Payloads
    "EventPayload",
    "NewReferralRequestPayload",
    "ReferralClaimedPayload",
    "ReferralVerifiedPayload",
    "SupportReplyPayload",
    "PAYLOAD_SCHEMAS",
    "DEFAULT_CHANNELS",
    "PayloadValidationError",
    "coerce_event_type",
    "parse_payload",
    "validate_payload",
]

"""Result types and exceptions for channel delivery.

Handlers signal the outcome of one delivery attempt by returning a
``DeliveryResult`` or raising one of the errors below. The processor maps
``PermanentDeliveryError`` to an immediate ``failed`` row and every other
exception to a retry with backoff.
"""

from dataclasses import dataclass
from typing import Optional


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class TransientDeliveryError(NotificationError):
    """Delivery failed for a reason that may clear up (timeout, rate limit, outage)."""

    pass


class PermanentDeliveryError(NotificationError):
    """Delivery can never succeed for this row as stored (missing address, no user)."""

    pass


class NotificationTemplateError(PermanentDeliveryError):
    """Raised when template rendering fails due to configuration or missing variables."""

    pass


class UnknownTemplateError(NotificationTemplateError):
    """Raised when no email template exists for an event type."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"No email template for event type '{event_type}'")


class SMTPDeliveryError(TransientDeliveryError):
    """Raised when the SMTP server or network rejects an attempt."""

    pass


class RecipientRejectedError(PermanentDeliveryError):
    """Raised when the SMTP server refuses the recipient address."""

    pass


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome reported by a transport.

    Attributes:
        success: Whether the provider accepted the message
        provider_message_id: Provider's identifier (SMTP Message-ID for email)
        error: Failure description when unsuccessful
        retryable: Whether a later attempt could succeed
    """

    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = True

    @classmethod
    def ok(cls, provider_message_id: Optional[str] = None) -> "DeliveryResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def failed(cls, error: str, retryable: bool = True) -> "DeliveryResult":
        return cls(success=False, error=error, retryable=retryable)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html_body: str
    text_body: str


@dataclass(frozen=True)
class InAppContent:
    """Short-form content shared by the in-app and push channels."""

    title: str
    body: str
    icon: str
    action_url: str

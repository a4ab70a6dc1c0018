"""Channel dispatch: deliver one claimed queue row through its channel.

Each channel has exactly one handler. A handler returns a successful
``DeliveryResult`` or raises; ``PermanentDeliveryError`` means the row can
never be delivered as stored, anything else is retried by the processor.

Data is read from the row's payload only. Nothing is looked up again at
delivery time, so a retry delivers exactly what the first attempt would have.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.domain.models import Channel, QueueItem
from notifier.logging import get_logger
from notifier.persistence import (
    InAppNotificationRepository,
    NotificationLogRepository,
    PersistenceError,
    SessionScope,
    get_session,
)

from .content import build_in_app_content
from .models import (
    DeliveryResult,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from .push import PushTransport
from .smtp_client import SMTPClient, normalize_address
from .templates import TemplateRenderer

logger = get_logger(__name__, component="dispatcher")

# Payload keys checked, in order, for the email recipient
EMAIL_ADDRESS_KEYS = ("recipient_email", "to", "email")

Handler = Callable[[QueueItem], DeliveryResult]


def resolve_email_address(payload: Mapping[str, Any]) -> Optional[str]:
    for key in EMAIL_ADDRESS_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class ChannelDispatcher:
    """Routes queue rows to the transport for their channel.

    Args:
        renderer: Email template renderer
        email_transport: Object with ``send(to, subject, html_body, text_body)``
            returning a DeliveryResult (normally ``SMTPClient``)
        push_transport: Push transport (stub by default)
        app_url: Base URL for in-app action links
        currency_symbol: Prefix for reward amounts in in-app content
        session_scope: Context manager factory yielding a Session; in-app
            inserts and delivery log writes each run in their own scope
    """

    def __init__(
        self,
        renderer: TemplateRenderer,
        email_transport: SMTPClient,
        push_transport: Optional[PushTransport] = None,
        app_url: str = "http://localhost:3000",
        currency_symbol: str = "₹",
        session_scope: SessionScope = get_session,
    ):
        self.renderer = renderer
        self.email_transport = email_transport
        self.push_transport = push_transport or PushTransport()
        self.app_url = app_url.rstrip("/")
        self.currency_symbol = currency_symbol
        self.session_scope = session_scope

        self.handlers: Dict[Channel, Handler] = {
            Channel.EMAIL: self._send_email,
            Channel.PUSH: self._send_push,
            Channel.IN_APP: self._send_in_app,
        }
        missing = set(Channel) - set(self.handlers)
        if missing:
            raise ValueError(f"No handler for channels: {', '.join(sorted(c.value for c in missing))}")

    def dispatch(self, item: QueueItem) -> DeliveryResult:
        """Deliver one row.

        Raises:
            PermanentDeliveryError: Delivery can never succeed for this row
            TransientDeliveryError: Delivery failed but may succeed later
        """
        return self.handlers[item.channel](item)

    def _send_email(self, item: QueueItem) -> DeliveryResult:
        to = normalize_address(resolve_email_address(item.payload))
        rendered = self.renderer.render(item.event_type, item.payload)

        result = self.email_transport.send(to, rendered.subject, rendered.html_body, rendered.text_body)
        self._write_delivery_log(item, to, rendered.subject, result)

        if result.success:
            return result
        if result.retryable:
            raise TransientDeliveryError(result.error or "Email send failed")
        raise PermanentDeliveryError(result.error or "Email rejected")

    def _send_push(self, item: QueueItem) -> DeliveryResult:
        content = build_in_app_content(item.event_type, item.payload, self.app_url, self.currency_symbol)
        return self.push_transport.send(item.recipient_user_id, content)

    def _send_in_app(self, item: QueueItem) -> DeliveryResult:
        if not item.recipient_user_id:
            raise PermanentDeliveryError("recipient_user_id is required for in-app notifications")

        content = build_in_app_content(item.event_type, item.payload, self.app_url, self.currency_symbol)
        try:
            with self.session_scope() as session:
                notification = InAppNotificationRepository(session).insert(
                    user_id=item.recipient_user_id,
                    title=content.title,
                    body=content.body,
                    event_type=item.event_type,
                    icon=content.icon,
                    action_url=content.action_url,
                    reference_id=item.reference_id,
                )
        except (PersistenceError, SQLAlchemyError) as e:
            raise TransientDeliveryError(f"Failed to store in-app notification: {e}") from e

        return DeliveryResult.ok(provider_message_id=notification.id)

    def _write_delivery_log(self, item: QueueItem, to: str, subject: str, result: DeliveryResult) -> None:
        try:
            with self.session_scope() as session:
                _log_attempt(session, item, to, subject, result)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.warning(
                f"Failed to write delivery log for queue item {item.id}: {e}",
                extra={"event": "delivery_log.write_failed", "queue_item_id": item.id},
            )


def _log_attempt(session: Session, item: QueueItem, to: str, subject: str, result: DeliveryResult) -> None:
    NotificationLogRepository(session).record(
        to_email=to,
        event_type=item.event_type,
        status="sent" if result.success else "failed",
        subject=subject,
        queue_item_id=item.id,
        user_id=item.recipient_user_id,
        provider_message_id=result.provider_message_id,
        reference_id=item.reference_id,
        error_message=result.error,
        channel=item.channel,
    )

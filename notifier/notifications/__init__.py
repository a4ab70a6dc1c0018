"""Channel content and transports for queued notifications.

- ChannelDispatcher: routes a claimed queue row to its channel's handler
- TemplateRenderer: Jinja2 email rendering keyed by event type
- build_in_app_content: title/body/icon/action URL for in-app and push
- SMTPClient: email transport; PushTransport: push stub
"""

from .content import action_url_for, build_in_app_content
from .dispatcher import ChannelDispatcher, resolve_email_address
from .models import (
    DeliveryResult,
    InAppContent,
    NotificationError,
    NotificationTemplateError,
    PermanentDeliveryError,
    RecipientRejectedError,
    RenderedEmail,
    SMTPDeliveryError,
    TransientDeliveryError,
    UnknownTemplateError,
)
from .push import PushTransport
from .smtp_client import SMTPClient, build_sender_address, normalize_address
from .templates import TemplateRenderer

__all__ = [
    # Dispatch
    "ChannelDispatcher",
    "resolve_email_address",
    # Results
    "DeliveryResult",
    "RenderedEmail",
    "InAppContent",
    # Exceptions
    "NotificationError",
    "TransientDeliveryError",
    "PermanentDeliveryError",
    "NotificationTemplateError",
    "UnknownTemplateError",
    "SMTPDeliveryError",
    "RecipientRejectedError",
    # Components
    "TemplateRenderer",
    "SMTPClient",
    "PushTransport",
    # Utilities
    "build_in_app_content",
    "action_url_for",
    "build_sender_address",
    "normalize_address",
]

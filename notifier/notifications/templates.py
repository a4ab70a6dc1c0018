"""Template rendering for email notifications using Jinja2.

Each event type has three templates in the ``email_templates`` package
directory: ``<event>_subject.j2``, ``<event>.html.j2`` and ``<event>.txt.j2``.
Rendering uses ``StrictUndefined`` so a placeholder the payload cannot fill
is an error rather than an empty string.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from jinja2 import (
    Environment,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from notifier.domain.events import PayloadValidationError, coerce_event_type, parse_payload

from .content import action_url_for
from .models import NotificationTemplateError, RenderedEmail, UnknownTemplateError

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders email subject and bodies for an event.

    Payloads are validated against the event's schema before rendering, so
    templates always see typed, complete data.
    """

    def __init__(
        self,
        app_name: str = "Referral Network",
        app_url: str = "http://localhost:3000",
        support_email: Optional[str] = None,
        currency_symbol: str = "₹",
        template_dir: str = "email_templates",
    ):
        """Initialize template renderer with Jinja2 environment.

        Args:
            app_name: Product name shown in subjects and footers
            app_url: Base URL for links
            support_email: Contact address shown in footers
            currency_symbol: Prefix for reward amounts
            template_dir: Directory name within the notifier.notifications package
        """
        self.app_url = app_url.rstrip("/")
        self.env = Environment(
            loader=PackageLoader("notifier.notifications", template_dir),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default_for_string=False),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.globals.update(
            app_name=app_name,
            app_url=self.app_url,
            support_email=support_email,
            currency_symbol=currency_symbol,
        )
        self.env.filters["money"] = _money

    @classmethod
    def from_settings(cls, settings) -> "TemplateRenderer":
        """Build a renderer from ``AppConfig.app``."""
        return cls(
            app_name=settings.app_name,
            app_url=settings.app_url,
            support_email=settings.support_email,
            currency_symbol=settings.currency_symbol,
        )

    def render(self, event_type: str, payload: Mapping[str, Any]) -> RenderedEmail:
        """Render the email for one queue row.

        Args:
            event_type: Event tag
            payload: Stored payload

        Returns:
            RenderedEmail with a single-line subject

        Raises:
            UnknownTemplateError: If the event type has no templates
            NotificationTemplateError: If the payload does not fit the
                event's schema or a template fails to render
        """
        try:
            coerce_event_type(event_type)
        except PayloadValidationError as e:
            raise UnknownTemplateError(event_type) from e

        try:
            typed = parse_payload(event_type, payload)
        except PayloadValidationError as e:
            raise NotificationTemplateError(str(e)) from e

        context = self._build_context(event_type, typed.model_dump())

        try:
            subject_template = self.env.get_template(f"{event_type}_subject.j2")
            html_template = self.env.get_template(f"{event_type}.html.j2")
            text_template = self.env.get_template(f"{event_type}.txt.j2")
        except TemplateNotFound as e:
            raise UnknownTemplateError(event_type) from e

        try:
            subject = " ".join(subject_template.render(context).split())
            html_body = html_template.render(context)
            text_body = text_template.render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for '{event_type}': {e}"
            logger.error(error_msg)
            raise NotificationTemplateError(error_msg) from e

        return RenderedEmail(subject=subject, html_body=html_body, text_body=text_body)

    def _build_context(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            **data,
            "event_type": event_type,
            "greeting_name": data.get("recipient_name") or "there",
            "action_url": action_url_for(event_type, data, self.app_url),
        }


def _money(value: Any) -> str:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return str(value)
    return f"{int(amount)}" if amount.is_integer() else f"{amount:.2f}"

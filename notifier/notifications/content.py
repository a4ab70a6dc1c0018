"""Short-form content for the in-app and push channels.

Content comes from a fixed table keyed by event type. An event type without
an entry, or a payload missing the fields an entry needs, falls back to a
generic notification; in-app delivery never fails on content.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from notifier.domain.models import EventType

from .models import InAppContent

# Paths are relative to the app URL
ACTION_PATHS: Dict[EventType, str] = {
    EventType.NEW_REFERRAL_REQUEST: "/referrals?tab=available",
    EventType.REFERRAL_CLAIMED: "/referrals?tab=seeker",
    EventType.REFERRAL_VERIFIED: "/wallet",
    EventType.SUPPORT_REPLY: "/support/tickets/{ticket_id}",
}

GENERIC_TITLE = "Notification"
GENERIC_BODY = "You have a new notification"
GENERIC_ICON = "bell"


def _format_amount(amount: Any, currency_symbol: str) -> str:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return f"{currency_symbol}{amount}"
    if value.is_integer():
        return f"{currency_symbol}{int(value)}"
    return f"{currency_symbol}{value:.2f}"


_CONTENT: Dict[EventType, Callable[[Mapping[str, Any], str], Dict[str, str]]] = {
    EventType.NEW_REFERRAL_REQUEST: lambda p, cur: {
        "title": "New Referral Request",
        "body": f"{p['seeker_name']} is looking for a referral at {p['company_name']}",
        "icon": "referral",
    },
    EventType.REFERRAL_CLAIMED: lambda p, cur: {
        "title": "Referral Claimed!",
        "body": f"{p['referrer_name']} claimed your referral for {p['job_title']}",
        "icon": "referral",
    },
    EventType.REFERRAL_VERIFIED: lambda p, cur: {
        "title": f"You earned {_format_amount(p['amount'], cur)}!",
        "body": f"{p['seeker_name']} verified your referral",
        "icon": "money",
    },
    EventType.SUPPORT_REPLY: lambda p, cur: {
        "title": "Support replied to your ticket",
        "body": p.get("reply_preview") or f"New reply on \"{p['subject']}\"",
        "icon": "support",
    },
}


def _event_type(value: str) -> Optional[EventType]:
    try:
        return EventType(value)
    except ValueError:
        return None


def action_url_for(event_type: str, payload: Mapping[str, Any], app_url: str) -> str:
    """Deep link for an event, or the app root when none applies."""
    resolved = _event_type(event_type)
    path = ACTION_PATHS.get(resolved) if resolved else None
    if path is None:
        return app_url
    try:
        return app_url + path.format(**payload)
    except (KeyError, IndexError):
        return app_url


def build_in_app_content(
    event_type: str,
    payload: Mapping[str, Any],
    app_url: str,
    currency_symbol: str = "₹",
) -> InAppContent:
    """Resolve title, body, icon and action URL for an event.

    Args:
        event_type: Event tag from the queue row
        payload: Stored payload
        app_url: Base URL for action links
        currency_symbol: Prefix for reward amounts

    Returns:
        Content for the event, or the generic fallback
    """
    resolved = _event_type(event_type)
    builder = _CONTENT.get(resolved) if resolved else None

    if builder is not None:
        try:
            fields = builder(payload, currency_symbol)
            return InAppContent(
                title=fields["title"],
                body=fields["body"],
                icon=fields["icon"],
                action_url=action_url_for(event_type, payload, app_url),
            )
        except KeyError:
            pass

    return InAppContent(
        title=GENERIC_TITLE,
        body=GENERIC_BODY,
        icon=GENERIC_ICON,
        action_url=app_url,
    )

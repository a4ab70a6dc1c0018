"""Fan-out: turn one business event into per-recipient, per-channel queue rows.

The fan-out never delivers anything itself. It writes ``pending`` rows and
returns; the processor picks them up on its next run. Each recipient's rows
are inserted in their own transaction so one failing recipient cannot stop
the others.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from notifier.domain.events import DEFAULT_CHANNELS, EventPayload, coerce_event_type, parse_payload, validate_payload
from notifier.domain.models import Channel, EventCategory, EventType, Recipient, UserPreferences, category_for
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence import PreferenceRepository, QueueRepository, SessionScope, get_session
from notifier.utils.timestamps import utc_now

from .directory import RecipientDirectory
from .preferences import DefaultsMap, build_defaults

logger = get_logger(__name__, component="fanout")


@dataclass
class FanoutResult:
    """
    Outcome of one fan-out.

    Attributes:
        event_type: Event that was fanned out
        recipient_count: Recipients considered
        enqueued_item_ids: Ids of the queue rows written
        skipped: (user_id, channel) pairs filtered out by preference or missing address
        failed_recipients: Users whose rows could not be written
        errors: Error messages for failed recipients
    """

    event_type: EventType
    recipient_count: int = 0
    enqueued_item_ids: List[str] = field(default_factory=list)
    skipped: List[tuple] = field(default_factory=list)
    failed_recipients: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def enqueued(self) -> int:
        return len(self.enqueued_item_ids)


class FanoutService:
    """Writes queue rows for business events."""

    def __init__(
        self,
        directory: Optional[RecipientDirectory] = None,
        preference_defaults: Optional[DefaultsMap] = None,
        max_retries: int = 3,
        session_scope: SessionScope = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the fan-out service.

        Args:
            directory: Resolves recipients of broadcast events
            preference_defaults: Category defaults (see ``build_defaults``)
            max_retries: Attempt budget written on every new row
            session_scope: Context manager factory yielding a Session
            clock: Source of the current UTC time
        """
        self.directory = directory
        self.defaults = preference_defaults if preference_defaults is not None else build_defaults()
        self.max_retries = max_retries
        self.session_scope = session_scope
        self.clock = clock

    def enqueue(
        self,
        event_type: Union[EventType, str],
        channel: Channel,
        payload: Union[EventPayload, Mapping[str, Any]],
        recipient_user_id: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> str:
        """Queue a single notification, bypassing recipient resolution and preferences.

        Args:
            event_type: Event tag
            channel: Delivery channel
            payload: Event data; validated against the event's schema
            recipient_user_id: Target user (required for in-app delivery)
            scheduled_at: Earliest delivery time (defaults to now)

        Returns:
            Id of the new queue row

        Raises:
            PayloadValidationError: If the payload does not match the event
            PersistenceError: If the row cannot be written
        """
        resolved = coerce_event_type(event_type)
        data = validate_payload(resolved, payload)

        with self.session_scope() as session:
            item = QueueRepository(session).enqueue(
                event_type=resolved.value,
                channel=Channel(channel),
                payload=data,
                recipient_user_id=recipient_user_id,
                scheduled_at=scheduled_at,
                max_retries=self.max_retries,
                now=self.clock(),
            )

        logger.info(
            f"Enqueued {resolved.value} via {item.channel.value}",
            extra={
                "event": "queue.item.enqueued",
                "queue_item_id": item.id,
                "event_type": resolved.value,
                "channel": item.channel.value,
                "recipient_user_id": recipient_user_id,
            },
        )
        return item.id

    def notify(
        self,
        event_type: Union[EventType, str],
        payload: Union[EventPayload, Mapping[str, Any]],
        recipients: Optional[Sequence[Recipient]] = None,
        channels: Optional[Sequence[Channel]] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> FanoutResult:
        """
        Fan an event out to its recipients.

        Recipients default to the directory's eligible referrers for broadcast
        events and to the payload's own recipient for transactional events.
        Each (recipient, channel) pair the recipient's preferences allow
        becomes one ``pending`` row carrying the payload plus that recipient's
        id, email and name.

        Args:
            event_type: Event tag
            payload: Event data; validated against the event's schema
            recipients: Explicit recipients, overriding resolution
            channels: Channels to consider (defaults to the event's defaults)
            scheduled_at: Earliest delivery time (defaults to now)

        Returns:
            FanoutResult; recipient-level failures are reported, not raised

        Raises:
            PayloadValidationError: If the payload does not match the event
        """
        resolved = coerce_event_type(event_type)
        typed = parse_payload(resolved, payload)
        base_payload = typed.model_dump(mode="json")
        channel_list = list(channels) if channels is not None else list(DEFAULT_CHANNELS[resolved])
        result = FanoutResult(event_type=resolved)

        with log_context(event_type=resolved.value, reference_id=_reference_id(base_payload)):
            if recipients is None:
                try:
                    recipients = self._resolve_recipients(resolved, typed)
                except Exception as e:
                    logger.error(
                        f"Failed to resolve recipients for fan-out: {e}",
                        exc_info=True,
                        extra={"event": "fanout.recipients.failed"},
                    )
                    result.errors.append(f"Recipient lookup failed: {e}")
                    return result
            result.recipient_count = len(recipients)

            if not recipients:
                logger.info("No recipients for event", extra={"event": "fanout.no_recipients"})
                return result

            try:
                preferences = self._load_preferences(recipients)
            except Exception as e:
                # Without preferences nobody can be filtered safely; report and stop
                logger.error(
                    f"Failed to load preferences for fan-out: {e}",
                    exc_info=True,
                    extra={"event": "fanout.preferences.failed"},
                )
                result.failed_recipients = [r.user_id for r in recipients]
                result.errors.append(f"Preference lookup failed: {e}")
                return result

            for recipient in recipients:
                self._enqueue_for_recipient(
                    resolved,
                    recipient,
                    base_payload,
                    channel_list,
                    preferences.get(recipient.user_id),
                    scheduled_at,
                    result,
                )

            logger.info(
                f"Fan-out complete: {result.enqueued} rows for {result.recipient_count} recipients "
                f"({len(result.skipped)} skipped, {len(result.failed_recipients)} failed)",
                extra={
                    "event": "fanout.completed",
                    "recipients": result.recipient_count,
                    "enqueued": result.enqueued,
                    "skipped": len(result.skipped),
                    "failed": len(result.failed_recipients),
                },
            )

        return result

    def _resolve_recipients(self, event_type: EventType, payload: EventPayload) -> List[Recipient]:
        if category_for(event_type) is EventCategory.BROADCAST:
            if self.directory is None:
                raise ValueError(f"A recipient directory is required to fan out {event_type.value}")
            return self.directory.find_eligible_referrers(
                payload.organization_id,
                exclude_user_id=getattr(payload, "seeker_id", None),
            )

        if payload.recipient_user_id:
            return [
                Recipient(
                    user_id=payload.recipient_user_id,
                    email=payload.recipient_email,
                    name=payload.recipient_name,
                )
            ]

        logger.warning(
            "Transactional event without recipient_user_id; nothing to fan out",
            extra={"event": "fanout.no_recipient_user"},
        )
        return []

    def _load_preferences(self, recipients: Sequence[Recipient]) -> Dict[str, UserPreferences]:
        with self.session_scope() as session:
            return PreferenceRepository(session).get_for_users(
                [r.user_id for r in recipients], self.defaults
            )

    def _enqueue_for_recipient(
        self,
        event_type: EventType,
        recipient: Recipient,
        base_payload: Dict[str, Any],
        channels: List[Channel],
        preferences: Optional[UserPreferences],
        scheduled_at: Optional[datetime],
        result: FanoutResult,
    ) -> None:
        prefs = preferences or UserPreferences(user_id=recipient.user_id, defaults=self.defaults)
        payload = {
            **base_payload,
            "recipient_user_id": recipient.user_id,
            "recipient_email": recipient.email,
            "recipient_name": recipient.name,
        }

        allowed = prefs.enabled_channels(event_type, channels)
        selected = []
        for channel in channels:
            if channel not in allowed:
                result.skipped.append((recipient.user_id, channel))
            elif channel is Channel.EMAIL and not payload["recipient_email"]:
                logger.debug(
                    "Skipping email for recipient without address",
                    extra={"event": "fanout.email.no_address", "recipient_user_id": recipient.user_id},
                )
                result.skipped.append((recipient.user_id, channel))
            else:
                selected.append(channel)

        if not selected:
            return

        try:
            with self.session_scope() as session:
                repo = QueueRepository(session)
                now = self.clock()
                item_ids = [
                    repo.enqueue(
                        event_type=event_type.value,
                        channel=channel,
                        payload=payload,
                        recipient_user_id=recipient.user_id,
                        scheduled_at=scheduled_at,
                        max_retries=self.max_retries,
                        now=now,
                    ).id
                    for channel in selected
                ]
        except Exception as e:
            # Isolated per recipient; remaining recipients still get their rows
            logger.error(
                f"Failed to enqueue notifications for recipient {recipient.user_id}: {e}",
                exc_info=True,
                extra={"event": "fanout.recipient.failed", "recipient_user_id": recipient.user_id},
            )
            result.failed_recipients.append(recipient.user_id)
            result.errors.append(f"{recipient.user_id}: {e}")
            return

        result.enqueued_item_ids.extend(item_ids)


def _reference_id(payload: Mapping[str, Any]) -> Optional[str]:
    for key in ("request_id", "ticket_id"):
        if payload.get(key):
            return str(payload[key])
    return None

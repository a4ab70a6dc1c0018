"""Event catalogue: typed payload schemas and default delivery channels.

Payloads travel through the queue as JSON, but producers and renderers work
with the typed models below. ``validate_payload`` is applied at enqueue time so
a malformed payload is rejected before it can occupy a queue row, and
``parse_payload`` gives renderers typed data back out of a stored row.
"""

from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import Channel, EventType


class PayloadValidationError(ValueError):
    """Raised when a payload does not match its event type's schema."""

    def __init__(self, event_type: str, message: str):
        self.event_type = event_type
        super().__init__(f"Invalid payload for event '{event_type}': {message}")


class EventPayload(BaseModel):
    """Fields shared by every payload: who the row is addressed to."""

    recipient_user_id: Optional[str] = Field(None, description="Target user id")
    recipient_email: Optional[str] = Field(None, description="Email address captured at event time")
    recipient_name: Optional[str] = Field(None, description="Greeting name")

    # Producers may attach extra context for templates
    model_config = ConfigDict(extra="allow")

    @field_validator("recipient_email")
    @classmethod
    def strip_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip()
        return stripped or None


class NewReferralRequestPayload(EventPayload):
    """A job seeker asked for a referral at an organization."""

    request_id: str = Field(..., min_length=1)
    organization_id: Union[int, str]
    job_title: str = Field(..., min_length=1)
    company_name: str = Field(..., min_length=1)
    seeker_id: str = Field(..., min_length=1)
    seeker_name: str = Field(..., min_length=1)
    job_id: Optional[str] = None


class ReferralClaimedPayload(EventPayload):
    """A referrer picked up the seeker's request."""

    request_id: str = Field(..., min_length=1)
    referrer_name: str = Field(..., min_length=1)
    job_title: str = Field(..., min_length=1)
    company_name: str = Field(..., min_length=1)


class ReferralVerifiedPayload(EventPayload):
    """The seeker confirmed a referral; the referrer earned a reward."""

    request_id: str = Field(..., min_length=1)
    seeker_name: str = Field(..., min_length=1)
    job_title: str = Field(..., min_length=1)
    company_name: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)
    new_balance: Optional[float] = None


class SupportReplyPayload(EventPayload):
    """An admin replied to the user's support ticket."""

    ticket_id: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    reply_preview: Optional[str] = None


PAYLOAD_SCHEMAS: Dict[EventType, Type[EventPayload]] = {
    EventType.NEW_REFERRAL_REQUEST: NewReferralRequestPayload,
    EventType.REFERRAL_CLAIMED: ReferralClaimedPayload,
    EventType.REFERRAL_VERIFIED: ReferralVerifiedPayload,
    EventType.SUPPORT_REPLY: SupportReplyPayload,
}

DEFAULT_CHANNELS: Dict[EventType, List[Channel]] = {
    EventType.NEW_REFERRAL_REQUEST: [Channel.EMAIL, Channel.IN_APP, Channel.PUSH],
    EventType.REFERRAL_CLAIMED: [Channel.EMAIL, Channel.IN_APP],
    EventType.REFERRAL_VERIFIED: [Channel.EMAIL, Channel.IN_APP, Channel.PUSH],
    EventType.SUPPORT_REPLY: [Channel.EMAIL, Channel.IN_APP],
}


def coerce_event_type(event_type: Union[EventType, str]) -> EventType:
    """Convert a raw tag to EventType.

    Raises:
        PayloadValidationError: If the tag is not a known event type
    """
    if isinstance(event_type, EventType):
        return event_type
    try:
        return EventType(event_type)
    except ValueError as e:
        raise PayloadValidationError(str(event_type), "unknown event type") from e


def parse_payload(
    event_type: Union[EventType, str],
    payload: Union[EventPayload, Mapping[str, Any]],
) -> EventPayload:
    """Validate raw payload data against the schema for ``event_type``.

    Args:
        event_type: Event tag
        payload: Mapping (e.g. decoded JSON) or an already typed payload

    Returns:
        Typed payload model for the event

    Raises:
        PayloadValidationError: If the event type is unknown or the data does
            not satisfy the schema
    """
    resolved = coerce_event_type(event_type)
    schema = PAYLOAD_SCHEMAS[resolved]

    if isinstance(payload, schema):
        return payload

    data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise PayloadValidationError(resolved.value, problems) from e


def validate_payload(
    event_type: Union[EventType, str],
    payload: Union[EventPayload, Mapping[str, Any]],
) -> Dict[str, Any]:
    """Validate and serialize a payload for storage.

    Returns:
        JSON-compatible dict including any extra producer fields
    """
    return parse_payload(event_type, payload).model_dump(mode="json")

"""Test helper utilities for referral notifier tests."""

from .fakes import (
    ManualClock,
    RecordingEmailTransport,
    make_dispatcher,
    referral_claimed_payload,
    referral_request_payload,
    referral_verified_payload,
    support_reply_payload,
)

__all__ = [
    "ManualClock",
    "RecordingEmailTransport",
    "make_dispatcher",
    "referral_request_payload",
    "referral_claimed_payload",
    "referral_verified_payload",
    "support_reply_payload",
]

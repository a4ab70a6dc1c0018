"""Soft checks for settings that are valid but probably not intended."""

import warnings
from typing import List

from .models import AppConfig


def check_for_warnings(config: AppConfig) -> List[str]:
    """
    Check a validated configuration for risky settings.

    Args:
        config: Validated application configuration

    Returns:
        List of warning messages
    """
    warning_messages = []
    queue = config.queue

    if queue.poll_interval_seconds is not None and queue.poll_interval_seconds < 30:
        warning_messages.append(
            f"Short poll_interval ({queue.poll_interval}) keeps the database busy with empty claims"
        )

    if queue.batch_size > queue.max_concurrency * 20:
        warning_messages.append(
            f"batch_size ({queue.batch_size}) is much larger than max_concurrency "
            f"({queue.max_concurrency}); claimed rows may wait long enough to look stale"
        )

    if config.retention.days_to_keep < 3:
        warning_messages.append(
            f"Short retention ({config.retention.days_to_keep} days) leaves little history "
            "for investigating delivery failures"
        )

    if (
        config.queue.stale_claim_timeout_seconds is not None
        and config.queue.stale_claim_timeout_seconds < config.email.timeout_seconds * 2
    ):
        warning_messages.append(
            f"stale_claim_timeout ({queue.stale_claim_timeout}) is close to the SMTP timeout; "
            "slow sends may be reclaimed while still in flight"
        )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """
    Emit warning messages using Python's warnings module.

    Args:
        warning_messages: List of warning messages to emit
    """
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)

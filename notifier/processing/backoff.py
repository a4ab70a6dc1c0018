"""Retry delay for failed queue rows."""

from datetime import timedelta

DEFAULT_BASE_SECONDS = 60
DEFAULT_MAX_SECONDS = 86400


def backoff_delay(
    retry_count: int,
    base_seconds: int = DEFAULT_BASE_SECONDS,
    max_seconds: int = DEFAULT_MAX_SECONDS,
) -> timedelta:
    """Delay before the next attempt of a row that has failed ``retry_count`` times before.

    ``base_seconds * 2**retry_count``, capped at ``max_seconds``. With the
    defaults a row waits 1, 2, 4, 8... minutes.

    Args:
        retry_count: Failures recorded before the one being handled
        base_seconds: Delay after the first failure
        max_seconds: Upper bound

    Returns:
        Delay as a timedelta
    """
    if retry_count < 0:
        raise ValueError("retry_count cannot be negative")

    # Avoid building huge integers for pathological retry budgets
    if retry_count >= 32:
        return timedelta(seconds=max_seconds)

    return timedelta(seconds=min(base_seconds * (2 ** retry_count), max_seconds))

"""Duration parsing for interval settings (poll interval, cleanup cadence, timeouts)."""

import re

_ISO8601_PATTERN = re.compile(
    r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
)
_HUMAN_PATTERN = re.compile(r"(\d+)\s*([smhd])")

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed or is out of range."""

    pass


def parse_duration(duration_str: str) -> int:
    """
    Parse a duration string to seconds.

    Supports both human-readable formats and ISO-8601 durations:
    - Human-readable: "30s", "1m", "1h30m", "7d"
    - ISO-8601: "PT30S", "PT1M", "PT1H30M", "P7D"

    Args:
        duration_str: Duration string to parse

    Returns:
        Duration in seconds

    Raises:
        DurationParseError: If the duration string is invalid or zero

    Examples:
        >>> parse_duration("1m")
        60
        >>> parse_duration("P7D")
        604800
    """
    if not isinstance(duration_str, str):
        raise DurationParseError(f"Duration must be a string, got {type(duration_str).__name__}")

    duration_str = duration_str.strip()
    if not duration_str:
        raise DurationParseError("Duration string cannot be empty")

    if duration_str.upper().startswith("P"):
        total = _parse_iso8601(duration_str.upper())
    else:
        total = _parse_human_readable(duration_str)

    if total == 0:
        raise DurationParseError(f"Duration cannot be zero: '{duration_str}'")

    return total


def _parse_iso8601(duration_str: str) -> int:
    match = _ISO8601_PATTERN.match(duration_str)
    if not match:
        raise DurationParseError(
            f"Invalid ISO-8601 duration format: '{duration_str}'. "
            "Expected format like 'P7D', 'PT1H30M', 'PT1M', or 'PT30S'"
        )

    days, hours, minutes, seconds = match.groups()
    return (
        int(days or 0) * _UNIT_SECONDS["d"]
        + int(hours or 0) * _UNIT_SECONDS["h"]
        + int(minutes or 0) * _UNIT_SECONDS["m"]
        + int(float(seconds or 0))
    )


def _parse_human_readable(duration_str: str) -> int:
    lowered = duration_str.lower()
    matches = _HUMAN_PATTERN.findall(lowered)

    if not matches:
        raise DurationParseError(
            f"Invalid duration format: '{duration_str}'. "
            "Expected format like '30s', '1m', '1h', '7d', or combinations like '1h30m'"
        )

    # Every character must belong to a number+unit pair
    if "".join(f"{num}{unit}" for num, unit in matches) != re.sub(r"\s+", "", lowered):
        raise DurationParseError(
            f"Invalid characters in duration: '{duration_str}'. "
            "Use only digits and units: s (seconds), m (minutes), h (hours), d (days)"
        )

    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in matches)


def validate_duration_range(
    duration_seconds: int,
    min_seconds: int,
    max_seconds: int,
    label: str = "Interval",
) -> None:
    """
    Validate that a duration is within an acceptable range.

    Args:
        duration_seconds: Duration in seconds to validate
        min_seconds: Minimum allowed duration
        max_seconds: Maximum allowed duration
        label: Setting name used in the error message

    Raises:
        DurationParseError: If duration is outside the valid range
    """
    if duration_seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {humanize_seconds(duration_seconds)}. "
            f"Minimum is {humanize_seconds(min_seconds)}."
        )

    if duration_seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {humanize_seconds(duration_seconds)}. "
            f"Maximum is {humanize_seconds(max_seconds)}."
        )


def humanize_seconds(seconds: int) -> str:
    """Render seconds in the largest whole unit ("15 minutes", "7 days")."""
    for unit_name, unit_seconds in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= unit_seconds:
            count = seconds // unit_seconds
            return f"{count} {unit_name}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"

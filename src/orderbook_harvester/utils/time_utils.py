"""Timestamp helpers for the CoinAPI wire format."""

import re
from datetime import datetime, timezone

# CoinAPI emits up to 7 fractional digits (100ns ticks), datetime keeps 6.
_ISO_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?)?)"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<tz>Z|z|[+-]\d{2}:?\d{2})?$"
)


def parse_timestamp(value) -> datetime:
    """
    Parse an ISO-8601 / RFC 3339 timestamp into an aware UTC datetime.

    Naive timestamps are interpreted as UTC. Fractions longer than
    microseconds are truncated.

    Raises:
        ValueError: If the value is not a recognisable timestamp.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)

    text = str(value).strip()
    match = _ISO_PATTERN.match(text)
    if not match:
        raise ValueError(f"Invalid timestamp: {value!r}")

    normalized = match.group("base")
    fraction = match.group("fraction")
    if fraction:
        normalized += "." + fraction[:6].ljust(6, "0")

    tz = match.group("tz")
    if tz and tz not in ("Z", "z"):
        if ":" not in tz:
            tz = f"{tz[:3]}:{tz[3:]}"
        normalized += tz

    return ensure_utc(datetime.fromisoformat(normalized))


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way CoinAPI expects query timestamps."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

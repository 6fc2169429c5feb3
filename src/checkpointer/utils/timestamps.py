"""Timestamp helpers."""

from datetime import datetime, timezone


def utc_now() -> str:
    """
    Current UTC time as an ISO-8601 string.

    Always rendered with microseconds and an explicit offset so stored
    timestamps sort lexicographically in chronological order.

    Returns:
        ISO-8601 timestamp string.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")

"""
Timestamp utility functions for epoch-millisecond timestamps.

This module provides utilities for:
- Reading the current time in milliseconds since the epoch
- Converting millisecond timestamps to ISO 8601 strings
- Computing the remaining time until a timestamp
"""

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def format_ms_to_iso(timestamp_ms: int) -> str:
    """
    Convert an epoch-millisecond timestamp to an ISO 8601 UTC string.

    Examples:
        0 -> "1970-01-01T00:00:00.000Z"
        1700000000123 -> "2023-11-14T22:13:20.123Z"
    """
    seconds, millis = divmod(timestamp_ms, 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


def ms_until(timestamp_ms: int) -> int:
    """Milliseconds from now until timestamp_ms (negative once it has passed)."""
    return timestamp_ms - now_ms()

"""
Time utilities.
Nostr timestamps are integer Unix seconds; session timeouts use a
monotonic clock so wall-clock jumps cannot expire or extend them.
"""

import time
from datetime import datetime, timezone


def unix_now() -> int:
    """
    Current Unix time in whole seconds.

    Returns:
        Seconds since the epoch
    """
    return int(time.time())


def monotonic() -> float:
    """Monotonic clock reading in seconds."""
    return time.monotonic()


def format_unix(timestamp: int) -> str:
    """
    Render a Unix timestamp as ISO 8601 UTC.

    Args:
        timestamp: Seconds since the epoch

    Returns:
        ISO 8601 formatted string
    """
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

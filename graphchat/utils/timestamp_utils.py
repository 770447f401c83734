"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime
from typing import Optional


def to_datetime(timestamp: Optional[float] = None) -> datetime:
    """Convert timestamp to datetime object.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        datetime object
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp)


def to_iso_str(value: datetime) -> str:
    """Render a datetime with full microsecond precision."""
    return value.isoformat(timespec='microseconds')


def from_iso_str(value: str) -> datetime:
    """Parse a string produced by `to_iso_str`.

    Raises:
        ValueError: If the string is not an ISO 8601 timestamp
    """
    return datetime.fromisoformat(value)

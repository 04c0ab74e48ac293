# courier-dispatch/courier_dispatch/utils.py
"""
Utility functions for the Medical Courier Dispatch Engine.

Provides time arithmetic and formatting helpers shared by the scheduler,
the reroute advisor and the host surfaces.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """
    Format a datetime as an ISO-8601 string with millisecond precision.

    Example:
        >>> to_iso(datetime(2026, 1, 15, 18, 7, 14, tzinfo=timezone.utc))
        '2026-01-15T18:07:14.000+00:00'
    """
    return moment.isoformat(timespec="milliseconds")


def add_minutes(moment: datetime, minutes: Union[int, float]) -> datetime:
    """
    Add a number of minutes to a datetime.

    Args:
        moment: The starting datetime
        minutes: Number of minutes to add (can be negative)

    Returns:
        A new datetime with the minutes added
    """
    return moment + timedelta(minutes=minutes)


def format_countdown(seconds: Optional[float]) -> str:
    """
    Format the time until the next scheduled run the way the console shows it.

    Args:
        seconds: Seconds remaining, or None when nothing is scheduled

    Returns:
        '' when nothing is scheduled, 'Now' when due, otherwise
        '12 sec', '1 min 5 sec' or '1h 5m'

    Example:
        >>> format_countdown(65)
        '1 min 5 sec'
    """
    if seconds is None:
        return ""
    if seconds <= 0:
        return "Now"

    total = int(seconds)
    minutes, secs = divmod(total, 60)
    if minutes < 1:
        return f"{secs} sec"
    if minutes < 60:
        return f"{minutes} min {secs} sec"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m"


def format_clock(moment: Optional[datetime]) -> str:
    """Format a datetime as HH:MM for compact display ('' for None)."""
    if moment is None:
        return ""
    return moment.strftime("%H:%M")


def short_id(identifier: str, length: int = 6) -> str:
    """Truncate an id for log lines and notifications."""
    if len(identifier) <= length:
        return identifier
    return f"{identifier[:length]}..."

"""Datetime utilities for consistent timezone handling across the application."""

from datetime import datetime, timezone
from typing import Optional


def utc_now_naive() -> datetime:
    """Get current UTC time as naive datetime for database operations.

    Returns:
        Current datetime in UTC as naive datetime (no timezone info).

    Note:
        The models use TIMESTAMP WITHOUT TIME ZONE columns, so every stored datetime is
        naive UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to a naive UTC datetime.

    Args:
        value: Seconds since the epoch, or None.

    Returns:
        Naive UTC datetime, or None when no timestamp was given.
    """
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC; naive input is assumed to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

"""Time utilities for message age checks."""
from datetime import date, datetime
from typing import Optional
import pytz

from cryptodigest.core.config import settings


def calendar_day(timestamp: float, timezone_str: Optional[str] = None) -> date:
    """
    Calendar day of a unix timestamp in a timezone.

    Args:
        timestamp: Seconds since epoch
        timezone_str: Timezone name (defaults to the configured timezone)
    """
    tz = pytz.timezone(timezone_str or settings.timezone)
    return datetime.fromtimestamp(timestamp, tz).date()


def get_local_time(timezone_str: Optional[str] = None) -> datetime:
    """
    Get current time in the configured timezone.

    Args:
        timezone_str: Timezone name (defaults to the configured timezone)

    Returns:
        Current timezone-aware datetime
    """
    tz = pytz.timezone(timezone_str or settings.timezone)
    return datetime.now(tz)


def is_different_day(
    timestamp: Optional[float],
    now: Optional[datetime] = None,
    timezone_str: Optional[str] = None
) -> bool:
    """
    Check whether a timestamp falls on a different calendar day than now.

    A missing timestamp has unknown age and counts as a different day.
    """
    if timestamp is None:
        return True

    tz_name = timezone_str or settings.timezone
    if now is None:
        now = get_local_time(tz_name)
    elif now.tzinfo is None:
        now = pytz.timezone(tz_name).localize(now)
    else:
        now = now.astimezone(pytz.timezone(tz_name))

    return calendar_day(timestamp, tz_name) != now.date()

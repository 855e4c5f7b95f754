"""
Time helpers.

Timestamps are stored as naive UTC in the database; the display time zone
only affects response headers and formatted strings.
"""
from datetime import datetime
from typing import Optional

import pytz

from ..core.config import settings


def get_display_tz():
    return pytz.timezone(settings.display_timezone)


def utc_now() -> datetime:
    """Current time as naive UTC, the form every model column uses."""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def format_display_time(dt: datetime, format_str: Optional[str] = None) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(get_display_tz()).strftime(format_str or settings.timezone_display_format)


def get_timezone_info() -> dict:
    now = datetime.now(get_display_tz())
    return {
        "timezone": settings.display_timezone,
        "offset": now.strftime("%z"),
        "current_time": format_display_time(now),
    }

"""
Timezone utilities for webcal.

Floating date-times and all-day dates carry no zone of their own; they are
interpreted in the configured local timezone. Everything that is compared
against a display window is first turned into an aware UTC instant.
"""

from datetime import datetime, date, tzinfo
from typing import Optional, Union
import time as _time
import pytz


# Default timezone - can be overridden by config
_local_timezone_name: str = "UTC"


def set_timezone(timezone_name: str):
    """Set the local timezone used for floating and all-day values."""
    global _local_timezone_name
    _local_timezone_name = timezone_name


def get_local_timezone():
    """
    Get the local timezone as a pytz timezone object.

    Returns:
        pytz timezone object for the configured local timezone.
    """
    try:
        return pytz.timezone(_local_timezone_name)
    except pytz.UnknownTimeZoneError:
        # Fallback: fixed offset of the host clock
        is_dst = _time.localtime().tm_isdst
        if is_dst:
            offset_seconds = -_time.altzone
        else:
            offset_seconds = -_time.timezone
        return pytz.FixedOffset(offset_seconds // 60)


def localize(naive: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """
    Attach a timezone to a naive wall-clock datetime.

    pytz zones need localize() to pick the right offset; zoneinfo and
    dateutil zones work with a plain replace().
    """
    if tz is None:
        tz = get_local_timezone()
    if hasattr(tz, 'localize'):
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)


def to_utc_datetime(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Naive values are assumed to be in the local timezone.
    """
    if dt.tzinfo is None:
        return localize(dt).astimezone(pytz.UTC)
    return dt.astimezone(pytz.UTC)


def to_local_datetime(dt: datetime) -> datetime:
    """Convert an aware datetime to the local timezone (naive values pass through)."""
    if dt.tzinfo is not None:
        return dt.astimezone(get_local_timezone())
    return dt


def as_instant(value: Union[datetime, date]) -> datetime:
    """
    Turn an iCalendar date or date-time value into an aware UTC instant.

    All-day dates map to local midnight of that day.
    """
    if not isinstance(value, datetime):
        value = datetime.combine(value, datetime.min.time())
    return to_utc_datetime(value)


def wall_time(dt: datetime) -> tuple[datetime, Optional[tzinfo]]:
    """Split a datetime into its naive wall-clock part and its tzinfo."""
    if dt.tzinfo is None:
        return dt, None
    tz = dt.tzinfo
    # pytz attaches a per-offset tzinfo; recover the zone it came from
    zone = getattr(tz, 'zone', None)
    if zone and hasattr(tz, 'localize'):
        tz = pytz.timezone(zone)
    return dt.replace(tzinfo=None), tz

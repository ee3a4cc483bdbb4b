"""
Occurrence data model.

A RawResource is one calendar object as returned by the server. Expanding
it against a TimeWindow produces Occurrence records: one per concrete
start, all pointing back at the same remote resource.
"""

from dataclasses import dataclass
from datetime import datetime, date, timedelta
from typing import Optional, Union

from .errors import ValidationError
from .timezone_utils import as_instant, to_utc_datetime


DateOrDateTime = Union[datetime, date]


@dataclass(frozen=True)
class TimeWindow:
    """
    Half-open display window [start, end).

    Naive bounds are taken as local time; both are stored as aware UTC.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        start = to_utc_datetime(self.start)
        end = to_utc_datetime(self.end)
        if end <= start:
            raise ValidationError(f"Window end {end} is not after start {start}")
        object.__setattr__(self, 'start', start)
        object.__setattr__(self, 'end', end)

    @classmethod
    def around(cls, center: datetime, past_days: int, future_days: int) -> 'TimeWindow':
        """Window reaching past_days back and future_days ahead of center."""
        return cls(
            start=center - timedelta(days=past_days),
            end=center + timedelta(days=future_days),
        )

    def overlaps(self, start: DateOrDateTime, end: DateOrDateTime) -> bool:
        """
        Check whether [start, end) intersects this window.

        A zero-length span counts as a point and is kept when it lies
        inside [window.start, window.end).
        """
        start_instant = as_instant(start)
        end_instant = as_instant(end)
        if start_instant >= self.end:
            return False
        if end_instant == start_instant:
            return start_instant >= self.start
        return end_instant > self.start


@dataclass(frozen=True)
class RawResource:
    """One calendar-protocol resource: its locator and unparsed text."""
    locator: str
    raw_text: str


@dataclass(frozen=True)
class Occurrence:
    """
    One concrete instance of an event.

    All occurrences expanded from the same recurring definition share
    event_uid and source_locator; start tells them apart. All-day
    occurrences carry date values, timed ones carry datetimes.
    """
    event_uid: str
    source_uid: str
    title: str
    start: DateOrDateTime
    end: DateOrDateTime
    all_day: bool = False
    rrule: Optional[str] = None  # e.g. "FREQ=WEEKLY;BYDAY=MO,WE"
    source_locator: Optional[str] = None

    @property
    def start_instant(self) -> datetime:
        return as_instant(self.start)

    @property
    def end_instant(self) -> datetime:
        return as_instant(self.end)

    @property
    def duration(self) -> timedelta:
        return self.end_instant - self.start_instant

    @property
    def is_recurring(self) -> bool:
        return self.rrule is not None

    @property
    def key(self) -> tuple[str, datetime]:
        """Unique key within one source: event uid plus start instant."""
        return (self.event_uid, self.start_instant)

    def __repr__(self):
        return f"Occurrence(uid={self.event_uid!r}, title={self.title!r}, start={self.start})"

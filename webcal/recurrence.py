"""
Recurrence rules.

Parses the RRULE of an event into a RecurrenceRule, serializes it back,
and iterates candidate start values anchored at DTSTART using
dateutil.rrule for the frequency/interval/BY* arithmetic.

Only FREQ, INTERVAL, BYDAY, BYMONTHDAY, BYMONTH, BYSETPOS, COUNT, UNTIL
and WKST are understood; other parts are dropped with a debug message.
"""

from dataclasses import dataclass
from datetime import datetime, date, time
from itertools import chain
from typing import Iterator, Optional, Union
import logging
import re

import pytz
from dateutil import rrule as du_rrule
from icalendar.prop import vRecur, vDDDTypes

from .errors import ParseError
from .timezone_utils import get_local_timezone, localize, wall_time

logger = logging.getLogger(__name__)


FREQUENCIES = {
    'YEARLY': du_rrule.YEARLY,
    'MONTHLY': du_rrule.MONTHLY,
    'WEEKLY': du_rrule.WEEKLY,
    'DAILY': du_rrule.DAILY,
    'HOURLY': du_rrule.HOURLY,
    'MINUTELY': du_rrule.MINUTELY,
}

SUB_DAILY = ('HOURLY', 'MINUTELY')

WEEKDAYS = {
    'MO': du_rrule.MO,
    'TU': du_rrule.TU,
    'WE': du_rrule.WE,
    'TH': du_rrule.TH,
    'FR': du_rrule.FR,
    'SA': du_rrule.SA,
    'SU': du_rrule.SU,
}

_KNOWN_PARTS = {
    'FREQ', 'INTERVAL', 'BYDAY', 'BYMONTHDAY', 'BYMONTH',
    'BYSETPOS', 'COUNT', 'UNTIL', 'WKST',
}

_BYDAY_RE = re.compile(r'^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$')


@dataclass(frozen=True)
class WeekdaySpec:
    """A BYDAY entry: weekday code plus optional ordinal (e.g. -1FR)."""
    weekday: str
    ordinal: Optional[int] = None

    @classmethod
    def parse(cls, text: str) -> 'WeekdaySpec':
        match = _BYDAY_RE.match(str(text).strip().upper())
        if not match:
            raise ParseError(f"Invalid BYDAY value: {text!r}")
        ordinal = int(match.group(1)) if match.group(1) else None
        if ordinal == 0 or (ordinal is not None and abs(ordinal) > 53):
            raise ParseError(f"Invalid BYDAY ordinal: {text!r}")
        return cls(weekday=match.group(2), ordinal=ordinal)

    def to_ical(self) -> str:
        if self.ordinal is None:
            return self.weekday
        return f"{self.ordinal}{self.weekday}"

    def to_dateutil(self):
        day = WEEKDAYS[self.weekday]
        return day(self.ordinal) if self.ordinal is not None else day


def _values(rule, key: str) -> list:
    value = rule.get(key)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _int_values(rule, key: str) -> tuple[int, ...]:
    try:
        return tuple(int(v) for v in _values(rule, key))
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid {key} value in recurrence rule: {e}") from e


@dataclass(frozen=True)
class RecurrenceRule:
    """Parsed RRULE. count and until may both be set; whichever is hit first ends the series."""
    frequency: str
    interval: int = 1
    by_weekday: tuple[WeekdaySpec, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_month: tuple[int, ...] = ()
    by_set_position: tuple[int, ...] = ()
    until: Optional[Union[datetime, date]] = None
    count: Optional[int] = None
    week_start: str = 'MO'

    def __post_init__(self):
        if self.frequency not in FREQUENCIES:
            raise ParseError(f"Unsupported recurrence frequency: {self.frequency!r}")
        if self.interval < 1:
            raise ParseError(f"Recurrence interval must be positive, got {self.interval}")
        if self.count is not None and self.count < 0:
            raise ParseError(f"Recurrence count must not be negative, got {self.count}")
        if any(d == 0 or abs(d) > 31 for d in self.by_month_day):
            raise ParseError(f"BYMONTHDAY out of range: {self.by_month_day}")
        if any(m < 1 or m > 12 for m in self.by_month):
            raise ParseError(f"BYMONTH out of range: {self.by_month}")
        if any(p == 0 or abs(p) > 366 for p in self.by_set_position):
            raise ParseError(f"BYSETPOS out of range: {self.by_set_position}")
        if self.week_start not in WEEKDAYS:
            raise ParseError(f"Invalid WKST: {self.week_start!r}")

    # ==================== Parsing ====================

    @classmethod
    def from_ical(cls, rule) -> 'RecurrenceRule':
        """
        Build from an icalendar vRecur (or any mapping of RRULE parts).

        Raises:
            ParseError: if a part is missing or malformed.
        """
        keys = {str(k).upper() for k in rule.keys()}
        ignored = keys - _KNOWN_PARTS
        if ignored:
            logger.debug("Ignoring unsupported RRULE parts: %s", sorted(ignored))

        freq = _values(rule, 'FREQ')
        if not freq:
            raise ParseError("Recurrence rule has no FREQ")

        interval = _int_values(rule, 'INTERVAL')
        count = _int_values(rule, 'COUNT')
        wkst = _values(rule, 'WKST')

        until = None
        until_values = _values(rule, 'UNTIL')
        if until_values:
            until = until_values[0]
            if isinstance(until, str):
                try:
                    until = vDDDTypes.from_ical(until)
                except ValueError as e:
                    raise ParseError(f"Invalid UNTIL value: {until!r}") from e

        return cls(
            frequency=str(freq[0]).upper(),
            interval=interval[0] if interval else 1,
            by_weekday=tuple(WeekdaySpec.parse(v) for v in _values(rule, 'BYDAY')),
            by_month_day=_int_values(rule, 'BYMONTHDAY'),
            by_month=_int_values(rule, 'BYMONTH'),
            by_set_position=_int_values(rule, 'BYSETPOS'),
            until=until,
            count=count[0] if count else None,
            week_start=str(wkst[0]).upper() if wkst else 'MO',
        )

    @classmethod
    def from_string(cls, text: str) -> 'RecurrenceRule':
        """Parse "FREQ=WEEKLY;BYDAY=MO" text, with or without an "RRULE:" prefix."""
        text = text.strip()
        if text.upper().startswith('RRULE:'):
            text = text[len('RRULE:'):]
        try:
            rule = vRecur.from_ical(text)
        except (ValueError, TypeError) as e:
            raise ParseError(f"Invalid recurrence rule {text!r}: {e}") from e
        return cls.from_ical(rule)

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        """RRULE parts as a dict suitable for icalendar's Event.add('rrule', ...)."""
        rrule = {'freq': self.frequency}
        if self.interval > 1:
            rrule['interval'] = self.interval
        if self.count is not None:
            rrule['count'] = self.count
        if self.until is not None:
            until = self.until
            if isinstance(until, datetime) and until.tzinfo is not None:
                until = until.astimezone(pytz.UTC)
            rrule['until'] = until
        if self.by_weekday:
            rrule['byday'] = [d.to_ical() for d in self.by_weekday]
        if self.by_month_day:
            rrule['bymonthday'] = list(self.by_month_day)
        if self.by_month:
            rrule['bymonth'] = list(self.by_month)
        if self.by_set_position:
            rrule['bysetpos'] = list(self.by_set_position)
        if self.week_start != 'MO':
            rrule['wkst'] = self.week_start
        return rrule

    def to_ical(self) -> str:
        """String form, e.g. "FREQ=WEEKLY;BYDAY=MO,WE,FR"."""
        return vRecur(self.to_dict()).to_ical().decode('utf-8')

    def __str__(self):
        return self.to_ical()

    # ==================== Iteration ====================

    def _until_bound(self, all_day: bool, tz) -> Optional[datetime]:
        """UNTIL as a naive wall-clock datetime comparable with the anchor."""
        until = self.until
        if until is None:
            return None
        if not isinstance(until, datetime):
            return datetime.combine(until, time.min if all_day else time.max)
        if until.tzinfo is not None:
            until = until.astimezone(tz if tz is not None else get_local_timezone())
            return until.replace(tzinfo=None)
        return until

    def iter_starts(self, dtstart: Union[datetime, date]) -> Iterator[Union[datetime, date]]:
        """
        Lazily yield every start of the series in ascending order.

        DTSTART is always the first occurrence and counts toward COUNT.
        Iteration happens on naive wall-clock time and each value is
        re-attached to DTSTART's zone, so a 09:00 meeting stays at 09:00
        across DST changes. HOURLY and MINUTELY series of a zoned DTSTART
        step on UTC instead, so no hour is skipped or doubled. The iterator
        is infinite when neither COUNT nor UNTIL is set; callers bound it by
        their window.
        """
        all_day = not isinstance(dtstart, datetime)
        display_tz = None
        if all_day:
            anchor, tz = datetime.combine(dtstart, time.min), None
        elif self.frequency in SUB_DAILY and dtstart.tzinfo is not None:
            display_tz = wall_time(dtstart)[1]
            anchor, tz = wall_time(dtstart.astimezone(pytz.UTC))
        else:
            anchor, tz = wall_time(dtstart)
        until = self._until_bound(all_day, tz)

        if self.count == 0:
            return

        kwargs = {
            'dtstart': anchor,
            'interval': self.interval,
            'wkst': WEEKDAYS[self.week_start],
        }
        if self.by_weekday:
            kwargs['byweekday'] = [d.to_dateutil() for d in self.by_weekday]
        if self.by_month_day:
            kwargs['bymonthday'] = list(self.by_month_day)
        if self.by_month:
            kwargs['bymonth'] = list(self.by_month)
        if self.by_set_position:
            kwargs['bysetpos'] = list(self.by_set_position)
        rule = du_rrule.rrule(FREQUENCIES[self.frequency], **kwargs)

        candidates = chain([anchor], (c for c in rule if c != anchor))
        emitted = 0
        for candidate in candidates:
            if self.count is not None and emitted >= self.count:
                return
            if until is not None and candidate > until:
                return
            emitted += 1
            if all_day:
                yield candidate.date()
            elif display_tz is not None:
                yield localize(candidate, tz).astimezone(display_tz)
            elif tz is not None:
                yield localize(candidate, tz)
            else:
                yield candidate

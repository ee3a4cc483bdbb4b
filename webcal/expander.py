"""
Recurrence expander.

Turns one RawResource into the Occurrences that overlap a TimeWindow.
Malformed resources are skipped with a warning rather than raised: one
bad object on the server must not abort a whole fetch cycle.
"""

from dataclasses import dataclass
from datetime import datetime, date, timedelta
from typing import Iterator, Optional, Union
import logging

from icalendar import Calendar as ICalCalendar, Event as ICalEvent

from .errors import ParseError
from .occurrence import Occurrence, RawResource, TimeWindow
from .recurrence import RecurrenceRule
from .timezone_utils import as_instant, localize, wall_time

logger = logging.getLogger(__name__)


DEFAULT_TITLE = "No Title"

# Upper bound on candidate starts inspected for one rule
DEFAULT_MAX_CANDIDATES = 1_000_000


def parse_event(raw_text: str) -> ICalEvent:
    """
    Parse calendar text and return its first VEVENT.

    Raises:
        ParseError: if the text is not iCalendar or holds no VEVENT.
    """
    try:
        vcal = ICalCalendar.from_ical(raw_text)
    except Exception as e:
        raise ParseError(f"Unparseable calendar data: {e}") from e
    events = vcal.walk('VEVENT')
    if not events:
        raise ParseError("No VEVENT in calendar data")
    return events[0]


def shift(value: Union[datetime, date], delta: timedelta) -> Union[datetime, date]:
    """Add delta on the wall clock, keeping value's zone."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        naive, tz = wall_time(value)
        return localize(naive + delta, tz)
    return value + delta


@dataclass
class EventDefinition:
    """The fields of one VEVENT the expander needs."""
    uid: str
    title: str
    start: Union[datetime, date]
    duration: timedelta
    all_day: bool
    rule: Optional[RecurrenceRule] = None
    rrule_text: Optional[str] = None

    @classmethod
    def from_component(cls, vevent: ICalEvent, locator: str) -> 'EventDefinition':
        """
        Extract uid, summary, start, duration and rule from a VEVENT.

        Raises:
            ParseError: on a missing DTSTART or inconsistent values.
        """
        dtstart = vevent.get('DTSTART')
        if dtstart is None:
            raise ParseError("VEVENT has no DTSTART")
        start = dtstart.dt
        all_day = not isinstance(start, datetime)

        dtend = vevent.get('DTEND')
        duration_prop = vevent.get('DURATION')
        if dtend is not None:
            end = dtend.dt
            if isinstance(end, datetime) != isinstance(start, datetime):
                raise ParseError("DTSTART and DTEND value types differ")
            duration = end - start
        elif duration_prop is not None:
            duration = duration_prop.dt
        else:
            duration = timedelta(days=1) if all_day else timedelta(0)
        if duration < timedelta(0):
            raise ParseError(f"Event ends before it starts ({duration})")

        rule = None
        rrule_text = None
        rrule = vevent.get('RRULE')
        if isinstance(rrule, list):
            logger.warning("Event %s has %d RRULEs, using the first", locator, len(rrule))
            rrule = rrule[0]
        if rrule is not None:
            rule = RecurrenceRule.from_ical(rrule)
            rrule_text = rrule.to_ical().decode('utf-8')

        uid = vevent.get('UID')
        summary = vevent.get('SUMMARY')
        return cls(
            uid=str(uid) if uid else locator,
            title=str(summary) if summary else DEFAULT_TITLE,
            start=start,
            duration=duration,
            all_day=all_day,
            rule=rule,
            rrule_text=rrule_text,
        )

    def occurrence_at(self, start: Union[datetime, date], source_uid: str, locator: str) -> Occurrence:
        return Occurrence(
            event_uid=self.uid,
            source_uid=source_uid,
            title=self.title,
            start=start,
            end=shift(start, self.duration),
            all_day=self.all_day,
            rrule=self.rrule_text,
            source_locator=locator,
        )


def expand_resource(
    resource: RawResource,
    source_uid: str,
    window: TimeWindow,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> Iterator[Occurrence]:
    """
    Lazily yield the occurrences of one resource that overlap window.

    Non-recurring events yield at most one occurrence. Recurring events
    are iterated from DTSTART and iteration stops at the first candidate
    at or past window.end, or when the rule's COUNT/UNTIL is exhausted.
    Never raises: problems are logged and the resource (or the rest of
    its series) is skipped.
    """
    try:
        definition = EventDefinition.from_component(parse_event(resource.raw_text), resource.locator)
    except ParseError as e:
        logger.warning("Skipping resource %s: %s", resource.locator, e)
        return
    except Exception:
        logger.exception("Unexpected error reading resource %s", resource.locator)
        return

    if definition.rule is None:
        occurrence = definition.occurrence_at(definition.start, source_uid, resource.locator)
        if window.overlaps(occurrence.start, occurrence.end):
            yield occurrence
        return

    inspected = 0
    try:
        for candidate in definition.rule.iter_starts(definition.start):
            if as_instant(candidate) >= window.end:
                break
            inspected += 1
            if inspected > max_candidates:
                logger.warning(
                    "Stopped expanding %s after %d candidates without reaching the window end",
                    definition.uid, max_candidates
                )
                break
            try:
                occurrence = definition.occurrence_at(candidate, source_uid, resource.locator)
                overlaps = window.overlaps(occurrence.start, occurrence.end)
            except Exception as e:
                logger.warning("Skipping occurrence %s of %s: %s", candidate, definition.uid, e)
                continue
            if overlaps:
                yield occurrence
    except Exception as e:
        logger.warning("Recurrence expansion of %s aborted: %s", definition.uid, e)

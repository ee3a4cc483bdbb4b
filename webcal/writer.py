"""
Event writer.

Serializes an edited Occurrence into a one-event VCALENDAR and creates,
updates or deletes it on the server, then refreshes the aggregator.

Editing any occurrence of a recurring event rewrites the whole series:
the edited start/end become the series' DTSTART/DTEND and the rule
replaces the old one. Single-occurrence overrides are not supported.
"""

from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime, date
from typing import Optional, Union
import logging
import random
import time

import pytz
from icalendar import Calendar as ICalCalendar, Event as ICalEvent

from .aggregator import EventAggregator
from .caldav_client import CalendarFetcher
from .errors import ValidationError, WriteError
from .occurrence import Occurrence
from .recurrence import RecurrenceRule
from .sources import SourceKind

logger = logging.getLogger(__name__)


PRODID = '-//webcal//webcal//EN'

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def _to_base36(number: int) -> str:
    digits = []
    while True:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
        if number == 0:
            return ''.join(reversed(digits))


def generate_event_uid() -> str:
    """Random base-36 token followed by the current time in milliseconds."""
    return f"{_to_base36(random.getrandbits(64))}{int(time.time() * 1000)}"


def _as_date(value: Union[datetime, date]) -> date:
    return value.date() if isinstance(value, datetime) else value


def _as_writable(value: datetime) -> datetime:
    """Aware values without a named zone (fixed offsets) are written as UTC."""
    tz = value.tzinfo
    if tz is None:
        return value
    if getattr(tz, 'zone', None) or getattr(tz, 'key', None):
        return value
    return value.astimezone(pytz.UTC)


def build_vevent(occurrence: Occurrence, now: Optional[datetime] = None) -> ICalEvent:
    """Build the VEVENT for an occurrence (the event uid must already be set)."""
    event = ICalEvent()
    event.add('uid', occurrence.event_uid)
    event.add('dtstamp', now or datetime.now(pytz.UTC))
    event.add('summary', occurrence.title or "")

    if occurrence.all_day:
        event.add('dtstart', _as_date(occurrence.start))
        event.add('dtend', _as_date(occurrence.end))
    else:
        event.add('dtstart', _as_writable(occurrence.start))
        event.add('dtend', _as_writable(occurrence.end))

    if occurrence.rrule:
        rule = RecurrenceRule.from_string(occurrence.rrule)
        event.add('rrule', rule.to_dict())

    return event


def serialize_occurrence(occurrence: Occurrence, now: Optional[datetime] = None) -> str:
    """
    Raw VCALENDAR text holding exactly one VEVENT for occurrence.

    Raises:
        ParseError: if the occurrence carries an invalid rule.
    """
    vcal = ICalCalendar()
    vcal.add('prodid', PRODID)
    vcal.add('version', '2.0')
    vcal.add_component(build_vevent(occurrence, now))
    return vcal.to_ical().decode('utf-8')


class EventWriter:
    """Creates, updates and deletes events through the fetcher's write operations."""

    def __init__(self, aggregator: EventAggregator, fetcher: CalendarFetcher):
        self._aggregator = aggregator
        self._fetcher = fetcher

    @property
    def _resolver(self):
        return self._aggregator.resolver

    def _writable_source(self, occurrence: Occurrence):
        source = self._resolver.source_for(occurrence)
        if source.kind != SourceKind.CALDAV:
            raise ValidationError(f"Calendar {source.display_name} is a read-only feed")
        return source

    def save(
        self,
        occurrence: Occurrence,
        is_edit: bool = False,
        original: Optional[Occurrence] = None
    ) -> Occurrence:
        """
        Create a new event or rewrite an existing one, then refetch.

        Args:
            occurrence: The user's version of the event
            is_edit: True to update the object behind original
            original: The occurrence being edited (required when is_edit)

        Returns:
            The occurrence as written, with its final event uid.

        Raises:
            ValidationError: unknown or read-only calendar, missing original.
            WriteError: the server rejected the write or was unreachable.
        """
        with self._aggregator.busy():
            self._aggregator.report_error(None)
            try:
                source = self._writable_source(occurrence)
                if is_edit:
                    if original is None:
                        raise ValidationError("Original event data not found")
                    if original.source_uid != occurrence.source_uid:
                        raise ValidationError("Moving an event to another calendar is not supported")
                    uid = original.event_uid
                else:
                    uid = occurrence.event_uid or generate_event_uid()
                written = replace(occurrence, event_uid=uid)
                ical_text = serialize_occurrence(written)

                if is_edit:
                    target = self._resolver.resolve(original)
                    self._fetcher.update_object(target.locator, ical_text, target.headers)
                    logger.info("Updated event %s at %s", uid, target.locator)
                else:
                    target = self._resolver.collection_target(source)
                    locator = self._fetcher.create_object(target.locator, f"{uid}.ics", ical_text, target.headers)
                    written = replace(written, source_locator=self._resolver.canonical_locator(source, locator))
                    logger.info("Created event %s in %s", uid, source.display_name)
            except (ValidationError, WriteError) as e:
                self._aggregator.report_error(str(e) or "Failed to save event")
                raise
            except Exception as e:
                self._aggregator.report_error(f"Failed to save event: {e}")
                raise WriteError(f"Failed to save event: {e}") from e

            self._aggregator.fetch()
            return written

    def delete(self, occurrence: Occurrence) -> None:
        """
        Delete the remote object behind occurrence (the whole series), then refetch.

        Raises:
            ValidationError: unknown calendar or occurrence without locator.
            WriteError: the server rejected the delete or was unreachable.
        """
        with self._aggregator.busy():
            self._aggregator.report_error(None)
            try:
                self._writable_source(occurrence)
                target = self._resolver.resolve(occurrence)
                self._fetcher.delete_object(target.locator, target.headers)
                logger.info("Deleted event %s at %s", occurrence.event_uid, target.locator)
            except (ValidationError, WriteError) as e:
                self._aggregator.report_error(str(e) or "Failed to delete event")
                raise
            except Exception as e:
                self._aggregator.report_error(f"Failed to delete event: {e}")
                raise WriteError(f"Failed to delete event: {e}") from e

            self._aggregator.fetch()

    def save_async(
        self,
        occurrence: Occurrence,
        is_edit: bool = False,
        original: Optional[Occurrence] = None
    ) -> Future:
        return self._aggregator.submit("save", self.save, occurrence, is_edit, original)

    def delete_async(self, occurrence: Occurrence) -> Future:
        return self._aggregator.submit("delete", self.delete, occurrence)

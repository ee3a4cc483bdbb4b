"""
ICS feeds for read-only calendar subscriptions.

Feeds are fetched as raw VCALENDAR text and expanded with
recurring_ical_events. They never enter the OccurrenceIndex: the display
layer asks a feed for the occurrences of its window directly.
"""

from datetime import datetime, date, timedelta
from typing import Iterable, Optional
import logging

import pytz
import requests
from icalendar import Calendar as ICalCalendar
from recurring_ical_events import of as recurring_events_of

from .expander import DEFAULT_TITLE
from .occurrence import Occurrence, TimeWindow
from .sources import CalendarSource, SourceKind

logger = logging.getLogger(__name__)


class ICSFeed:
    """
    One public ICS subscription.

    Errors are not raised; they are kept in `error` and the feed then
    reports no occurrences.
    """

    def __init__(self, source: CalendarSource, timeout: int = 30, cache_seconds: int = 300):
        self.source = source
        self.timeout = timeout
        self.cache_seconds = cache_seconds

        self._raw_data: Optional[str] = None
        self._last_fetch: Optional[datetime] = None
        self._error: Optional[str] = None

    @property
    def uid(self) -> str:
        return self.source.uid

    def fetch(self) -> bool:
        """
        Fetch the ICS file from the source url.

        Returns:
            True if successful, False otherwise.
        """
        try:
            response = requests.get(
                self.source.url,
                timeout=self.timeout,
                headers={
                    'User-Agent': 'webcal/1.0',
                    'Accept': 'text/calendar'
                }
            )
            response.raise_for_status()

            response.encoding = 'utf-8'
            self._raw_data = response.text
            self._last_fetch = datetime.now(pytz.UTC)
            self._error = None
            logger.debug("Fetched feed %s (%d bytes)", self.source.url, len(self._raw_data))
            return True

        except requests.RequestException as e:
            self._error = f"Network error: {e}"
        except Exception as e:
            self._error = f"Error: {e}"
        logger.error("Fetching feed %s failed: %s", self.source.display_name, self._error)
        return False

    def get_ical_text(self, force_fetch: bool = False) -> Optional[str]:
        """
        Get the raw VCALENDAR text, refetching once the cache is stale.

        Returns:
            Raw VCALENDAR text, or None if no fetch has succeeded.
        """
        should_fetch = (
            force_fetch or
            self._raw_data is None or
            self._last_fetch is None or
            (datetime.now(pytz.UTC) - self._last_fetch).total_seconds() > self.cache_seconds
        )

        if should_fetch:
            self.fetch()

        return self._raw_data

    @property
    def error(self) -> Optional[str]:
        """Get the last error message."""
        return self._error

    def occurrences(self, window: TimeWindow, force_fetch: bool = False) -> list[Occurrence]:
        """Occurrences of the feed overlapping window, sorted by start."""
        text = self.get_ical_text(force_fetch=force_fetch)
        if not text:
            return []

        try:
            vcal = ICalCalendar.from_ical(text)
            expanded = recurring_events_of(vcal).between(window.start, window.end)
        except Exception as e:
            self._error = f"Error: {e}"
            logger.error("Expanding feed %s failed: %s", self.source.display_name, e)
            return []

        occurrences = []
        for component in expanded:
            occurrence = self._to_occurrence(component)
            if occurrence is not None and window.overlaps(occurrence.start, occurrence.end):
                occurrences.append(occurrence)
        occurrences.sort(key=lambda o: o.start_instant)
        return occurrences

    def _to_occurrence(self, component) -> Optional[Occurrence]:
        dtstart = component.get('DTSTART')
        if dtstart is None:
            return None
        start = dtstart.dt
        all_day = isinstance(start, date) and not isinstance(start, datetime)

        dtend = component.get('DTEND')
        if dtend is not None:
            end = dtend.dt
        elif component.get('DURATION') is not None:
            end = start + component.get('DURATION').dt
        else:
            end = start + timedelta(days=1) if all_day else start

        rrule = component.get('RRULE')
        if isinstance(rrule, list):
            rrule = rrule[0] if rrule else None

        return Occurrence(
            event_uid=str(component.get('UID', '')) or self.source.url,
            source_uid=self.source.uid,
            title=str(component.get('SUMMARY', '')) or DEFAULT_TITLE,
            start=start,
            end=end,
            all_day=all_day,
            rrule=rrule.to_ical().decode('utf-8') if rrule is not None else None,
            source_locator=self.source.url,
        )


class ICSFeedManager:
    """Keeps one ICSFeed per enabled ICS source."""

    def __init__(self, timeout: int = 30, cache_seconds: int = 300):
        self.timeout = timeout
        self.cache_seconds = cache_seconds
        self._feeds: dict[str, ICSFeed] = {}

    def sync(self, sources: Iterable[CalendarSource]) -> None:
        """
        Match feeds to the given source list.

        Usable directly as a SourceRegistry observer.
        """
        wanted = {s.uid: s for s in sources if s.kind == SourceKind.ICS and s.enabled}
        for uid in list(self._feeds):
            if uid not in wanted or self._feeds[uid].source.url != wanted[uid].url:
                del self._feeds[uid]
        for uid, source in wanted.items():
            feed = self._feeds.get(uid)
            if feed is None:
                self._feeds[uid] = ICSFeed(source, self.timeout, self.cache_seconds)
            else:
                feed.source = source

    def get_feed(self, source_uid: str) -> Optional[ICSFeed]:
        return self._feeds.get(source_uid)

    def get_all_feeds(self) -> list[ICSFeed]:
        return list(self._feeds.values())

    def fetch_all(self) -> dict[str, bool]:
        """
        Fetch all feeds.

        Returns:
            Dict mapping source uid to success status.
        """
        return {uid: feed.fetch() for uid, feed in self._feeds.items()}

    def occurrences(self, window: TimeWindow) -> dict[str, list[Occurrence]]:
        """Occurrences per source uid for window."""
        return {uid: feed.occurrences(window) for uid, feed in self._feeds.items()}

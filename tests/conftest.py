"""Shared fixtures: an in-memory CalendarFetcher and iCalendar builders."""
import threading
from typing import Optional

import pytest

from webcal.occurrence import RawResource
from webcal.sources import CalendarSource, SourceKind, SourceRegistry
from webcal.timezone_utils import set_timezone


class FakeFetcher:
    """CalendarFetcher serving canned resources per collection url."""

    def __init__(self, collections: Optional[dict] = None):
        # url -> list[RawResource] or an Exception to raise
        self.collections = dict(collections or {})
        self.fetch_calls = []
        self.created = []
        self.updated = []
        self.deleted = []
        self.write_error: Optional[Exception] = None
        self._lock = threading.Lock()

    def fetch_objects(self, locator, window, headers):
        with self._lock:
            self.fetch_calls.append((locator, window, dict(headers)))
        result = self.collections.get(locator, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    def create_object(self, collection_locator, filename, raw_text, headers):
        if self.write_error:
            raise self.write_error
        locator = f"{collection_locator.rstrip('/')}/{filename}"
        self.created.append((collection_locator, filename, raw_text, dict(headers)))
        resources = self.collections.setdefault(collection_locator, [])
        if isinstance(resources, list):
            resources.append(RawResource(locator=locator, raw_text=raw_text))
        return locator

    def update_object(self, locator, raw_text, headers):
        if self.write_error:
            raise self.write_error
        self.updated.append((locator, raw_text, dict(headers)))
        self._store(locator, raw_text)

    def delete_object(self, locator, headers):
        if self.write_error:
            raise self.write_error
        self.deleted.append((locator, dict(headers)))
        self._store(locator, None)

    def _store(self, locator, raw_text):
        """Replace (or drop, for None) the stored resource fetched as locator."""
        for resources in self.collections.values():
            if not isinstance(resources, list):
                continue
            for i, resource in enumerate(resources):
                if resource.locator == locator:
                    if raw_text is None:
                        del resources[i]
                    else:
                        resources[i] = RawResource(locator=locator, raw_text=raw_text)
                    return


def make_ical(uid="event-1", summary="Meeting", dtstart="20240101T090000Z",
              dtend="20240101T100000Z", rrule=None, extra=""):
    """Build a one-event VCALENDAR; dtstart/dtend are raw property values."""
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Test//Test//EN",
        "BEGIN:VEVENT",
    ]
    if uid:
        lines.append(f"UID:{uid}")
    if summary:
        lines.append(f"SUMMARY:{summary}")
    if dtstart:
        lines.append(dtstart if ":" in dtstart else f"DTSTART:{dtstart}")
    if dtend:
        lines.append(dtend if ":" in dtend else f"DTEND:{dtend}")
    if rrule:
        lines.append(f"RRULE:{rrule}")
    if extra:
        lines.append(extra)
    lines += ["END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(lines) + "\r\n"


def make_resource(locator, **kwargs):
    return RawResource(locator=locator, raw_text=make_ical(**kwargs))


def make_source(uid, url=None, **kwargs):
    return CalendarSource(uid=uid, url=url or f"https://dav.example.com/cal/{uid}/", **kwargs)


@pytest.fixture(autouse=True)
def utc_local_timezone():
    """Floating and all-day values are interpreted in UTC unless a test says otherwise."""
    set_timezone("UTC")
    yield
    set_timezone("UTC")


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def registry():
    return SourceRegistry([
        make_source("work", name="Work"),
        make_source("home", name="Home"),
        make_source("feed", url="https://example.com/holidays.ics", name="Holidays", kind=SourceKind.ICS),
    ])

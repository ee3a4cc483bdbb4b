"""
webcal - recurring-event materialization for CalDAV and ICS calendars.

This package provides:
- Calendar source registry (sources.py)
- Recurrence rules and expansion (recurrence.py, expander.py)
- Occurrence index and event aggregator (occurrence_index.py, aggregator.py)
- Occurrence identity resolution and proxy handling (identity.py)
- Event writer (writer.py)
- CalDAV transport (caldav_client.py) and ICS feeds (ics_subscription.py)
- Configuration parsing (config.py)
"""

from .errors import WebcalError, ConfigError, ValidationError, ParseError, FetchError, WriteError
from .occurrence import TimeWindow, RawResource, Occurrence
from .recurrence import RecurrenceRule
from .expander import expand_resource
from .sources import CalendarSource, SourceKind, SourceRegistry
from .occurrence_index import OccurrenceIndex
from .identity import IdentityResolver, WriteTarget, proxy_url, unmangle_proxied_url
from .caldav_client import CalendarFetcher, CalDAVFetcher
from .aggregator import EventAggregator
from .writer import EventWriter, serialize_occurrence
from .ics_subscription import ICSFeed, ICSFeedManager
from .config import Config

__all__ = [
    'WebcalError',
    'ConfigError',
    'ValidationError',
    'ParseError',
    'FetchError',
    'WriteError',
    'TimeWindow',
    'RawResource',
    'Occurrence',
    'RecurrenceRule',
    'expand_resource',
    'CalendarSource',
    'SourceKind',
    'SourceRegistry',
    'OccurrenceIndex',
    'IdentityResolver',
    'WriteTarget',
    'proxy_url',
    'unmangle_proxied_url',
    'CalendarFetcher',
    'CalDAVFetcher',
    'EventAggregator',
    'EventWriter',
    'serialize_occurrence',
    'ICSFeed',
    'ICSFeedManager',
    'Config',
]

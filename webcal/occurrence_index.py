"""
Occurrence index: source uid -> event uid -> occurrence start -> Occurrence.

The nested mapping is the source of truth; flat lists are derived views.
A source's contribution is always swapped in as a whole under the lock,
so readers never see half of a source.
"""

from datetime import datetime
from typing import Iterable, Optional
import threading

from .occurrence import DateOrDateTime, Occurrence
from .timezone_utils import as_instant


SourceOccurrences = dict[str, dict[datetime, Occurrence]]


class OccurrenceIndex:
    """Thread-safe store of the occurrences of the current window."""

    def __init__(self):
        self._lock = threading.RLock()
        # Occurrences stored by source_uid -> event_uid -> start instant
        self._occurrences: dict[str, SourceOccurrences] = {}

    # ==================== Mutations ====================

    def replace_source(self, source_uid: str, occurrences: Iterable[Occurrence]) -> int:
        """
        Replace everything stored for a source.

        Returns number of occurrences stored.
        """
        events: SourceOccurrences = {}
        count = 0
        for occurrence in occurrences:
            by_start = events.setdefault(occurrence.event_uid, {})
            if occurrence.start_instant not in by_start:
                count += 1
            by_start[occurrence.start_instant] = occurrence
        with self._lock:
            self._occurrences[source_uid] = events
        return count

    def remove_source(self, source_uid: str) -> bool:
        """Drop all occurrences of a source."""
        with self._lock:
            return self._occurrences.pop(source_uid, None) is not None

    def retain_sources(self, source_uids: Iterable[str]) -> list[str]:
        """
        Drop every source not in source_uids.

        Returns the uids that were removed.
        """
        keep = set(source_uids)
        with self._lock:
            removed = [uid for uid in self._occurrences if uid not in keep]
            for uid in removed:
                del self._occurrences[uid]
        return removed

    def clear(self):
        with self._lock:
            self._occurrences = {}

    # ==================== Queries ====================

    def has_source(self, source_uid: str) -> bool:
        with self._lock:
            return source_uid in self._occurrences

    def source_uids(self) -> list[str]:
        with self._lock:
            return list(self._occurrences.keys())

    def get_occurrence(
        self,
        source_uid: str,
        event_uid: str,
        start: Optional[DateOrDateTime] = None
    ) -> Optional[Occurrence]:
        """
        Look up one occurrence.

        Without start, the earliest occurrence of the event is returned,
        which for a non-recurring event is its only one.
        """
        with self._lock:
            by_start = self._occurrences.get(source_uid, {}).get(event_uid)
            if not by_start:
                return None
            if start is None:
                return by_start[min(by_start)]
            return by_start.get(as_instant(start))

    def get_occurrences(self, source_uid: str, event_uid: str) -> list[Occurrence]:
        """All occurrences of one event, sorted by start."""
        with self._lock:
            by_start = self._occurrences.get(source_uid, {}).get(event_uid, {})
            return [by_start[k] for k in sorted(by_start)]

    def get_source_occurrences(self, source_uid: str) -> list[Occurrence]:
        with self._lock:
            events = self._occurrences.get(source_uid, {})
            occurrences = [o for by_start in events.values() for o in by_start.values()]
        occurrences.sort(key=lambda o: o.start_instant)
        return occurrences

    def all_occurrences(self) -> list[Occurrence]:
        """Flattened view over all sources, sorted by start."""
        with self._lock:
            occurrences = [
                o
                for events in self._occurrences.values()
                for by_start in events.values()
                for o in by_start.values()
            ]
        occurrences.sort(key=lambda o: o.start_instant)
        return occurrences

    def __len__(self):
        with self._lock:
            return sum(
                len(by_start)
                for events in self._occurrences.values()
                for by_start in events.values()
            )

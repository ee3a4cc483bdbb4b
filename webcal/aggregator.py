"""
Event aggregator.

Runs fetch cycles over all enabled CalDAV sources: fetch raw resources
per source, expand them against the window, and commit each source's
occurrences into the OccurrenceIndex. ICS feeds never enter the index;
see ics_subscription.

Every cycle gets a generation number. Only the latest cycle may write to
the index, so paging quickly through windows never mixes two windows.
"""

from concurrent.futures import ThreadPoolExecutor, Future, as_completed
from contextlib import contextmanager
from itertools import count
from typing import Callable, Iterator, Optional
import logging
import threading

from .caldav_client import CalendarFetcher
from .errors import FetchError
from .expander import DEFAULT_MAX_CANDIDATES, expand_resource
from .identity import IdentityResolver
from .network_worker import NetworkWorker
from .occurrence import DateOrDateTime, Occurrence, RawResource, TimeWindow
from .occurrence_index import OccurrenceIndex
from .sources import CalendarSource, SourceKind, SourceRegistry

logger = logging.getLogger(__name__)


class EventAggregator:
    """
    Owns the OccurrenceIndex and the loading/error state shown to the display layer.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        fetcher: CalendarFetcher,
        resolver: Optional[IdentityResolver] = None,
        index: Optional[OccurrenceIndex] = None,
        max_workers: int = 3,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
        worker: Optional[NetworkWorker] = None,
    ):
        self._registry = registry
        self._fetcher = fetcher
        self._resolver = resolver or IdentityResolver(registry)
        self._index = index or OccurrenceIndex()
        self.max_workers = max_workers
        self.max_candidates = max_candidates

        self._lock = threading.RLock()
        self._generation = 0
        self._in_flight = 0
        self._window: Optional[TimeWindow] = None
        self._error: Optional[str] = None
        self._errors: dict[str, str] = {}  # Per-source error messages
        self._on_change_callback: Optional[Callable[[], None]] = None

        self._worker = worker
        self._operation_ids = count(1)

        registry.add_observer(self._on_sources_changed)

    # ==================== Observable State ====================

    @property
    def index(self) -> OccurrenceIndex:
        return self._index

    @property
    def resolver(self) -> IdentityResolver:
        return self._resolver

    @property
    def fetcher(self) -> CalendarFetcher:
        return self._fetcher

    @property
    def window(self) -> Optional[TimeWindow]:
        return self._window

    @property
    def loading(self) -> bool:
        """True while any fetch or write is in flight."""
        with self._lock:
            return self._in_flight > 0

    @property
    def error(self) -> Optional[str]:
        """Most recent error message (last one wins)."""
        with self._lock:
            return self._error

    @property
    def errors(self) -> dict[str, str]:
        """Error messages of the current cycle keyed by source uid."""
        with self._lock:
            return dict(self._errors)

    def set_on_change_callback(self, callback: Callable[[], None]) -> None:
        self._on_change_callback = callback

    def _notify_change(self) -> None:
        if self._on_change_callback:
            self._on_change_callback()

    @contextmanager
    def busy(self) -> Iterator[None]:
        """Hold the loading flag for the duration of the block."""
        with self._lock:
            self._in_flight += 1
        self._notify_change()
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            self._notify_change()

    def report_error(self, message: Optional[str], source_uid: Optional[str] = None) -> None:
        """Record an error message (None clears the current one)."""
        with self._lock:
            self._error = message
            if source_uid is not None and message is not None:
                self._errors[source_uid] = message
        self._notify_change()

    # ==================== Queries ====================

    def get_event(
        self,
        source_uid: str,
        event_uid: str,
        start: Optional[DateOrDateTime] = None
    ) -> Optional[Occurrence]:
        """Look up a displayed occurrence; None if the source or event is unknown."""
        return self._index.get_occurrence(source_uid, event_uid, start)

    def get_events(self, source_uid: str, event_uid: str) -> list[Occurrence]:
        return self._index.get_occurrences(source_uid, event_uid)

    def get_all_events(self) -> list[Occurrence]:
        return self._index.all_occurrences()

    # ==================== Source Changes ====================

    def _on_sources_changed(self, sources: list[CalendarSource]) -> None:
        """Purge occurrences of sources that were removed or disabled."""
        removed = self._prune(sources)
        if removed:
            self._notify_change()

    def _prune(self, sources: list[CalendarSource]) -> list[str]:
        keep = [s.uid for s in sources if s.enabled and s.kind == SourceKind.CALDAV]
        with self._lock:
            removed = self._index.retain_sources(keep)
            for uid in removed:
                self._errors.pop(uid, None)
        if removed:
            logger.debug("Purged occurrences of sources %s", removed)
        return removed

    # ==================== Fetch Cycle ====================

    def fetch(self, window: Optional[TimeWindow] = None) -> dict[str, int]:
        """
        Run one fetch cycle and wait for it.

        Sources are fetched concurrently; each source's occurrences are
        committed as a unit. A failing source is recorded in error/errors
        and loses its entries, the other sources are unaffected.

        Args:
            window: Window to fetch; defaults to the last window used

        Returns:
            Number of occurrences committed per source uid (empty if there
            is no window yet or this cycle was superseded).
        """
        window = window or self._window
        if window is None:
            return {}

        with self._lock:
            self._generation += 1
            generation = self._generation
            if window != self._window:
                self._index.clear()
            self._window = window
            self._error = None
            self._errors = {}

        results: dict[str, int] = {}
        with self.busy():
            sources = self._registry.enabled_caldav_sources()
            self._prune(sources)
            if not sources:
                return results

            logger.debug("Fetch cycle %d: %d sources, %s to %s", generation, len(sources), window.start, window.end)
            workers = max(1, min(self.max_workers, len(sources)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
                futures = {pool.submit(self._collect_source, source, window): source for source in sources}
                for future in as_completed(futures):
                    source = futures[future]
                    try:
                        occurrences = future.result()
                    except FetchError as e:
                        self._record_failure(generation, source, e)
                        continue
                    except Exception as e:
                        error = FetchError(f"Failed to load {source.display_name}: {e}", source.uid)
                        self._record_failure(generation, source, error)
                        continue
                    if self._commit(generation, source, occurrences):
                        results[source.uid] = len(occurrences)
        return results

    def fetch_async(self, window: Optional[TimeWindow] = None) -> Future:
        """Run fetch() on the network worker and return its Future."""
        return self._get_worker().submit(f"fetch-{next(self._operation_ids)}", self.fetch, window)

    def submit(self, label: str, func: Callable, *args, **kwargs) -> Future:
        """Run any blocking operation (e.g. a write) on the network worker."""
        return self._get_worker().submit(f"{label}-{next(self._operation_ids)}", func, *args, **kwargs)

    def _get_worker(self) -> NetworkWorker:
        with self._lock:
            if self._worker is None:
                self._worker = NetworkWorker(max_workers=self.max_workers)
            return self._worker

    def shutdown(self, wait: bool = True) -> None:
        if self._worker is not None:
            self._worker.shutdown(wait=wait)

    def _collect_source(self, source: CalendarSource, window: TimeWindow) -> list[Occurrence]:
        """Fetch and expand one source. Raises FetchError on any fetch failure."""
        target = self._resolver.collection_target(source)
        try:
            resources = self._fetcher.fetch_objects(target.locator, window, target.headers)
        except FetchError as e:
            e.source_uid = source.uid
            raise
        except Exception as e:
            raise FetchError(f"Failed to fetch {source.display_name}: {e}", source.uid) from e

        occurrences: list[Occurrence] = []
        for resource in resources:
            try:
                locator = self._resolver.canonical_locator(source, resource.locator)
            except ValueError as e:
                logger.warning("Skipping resource %s of %s: %s", resource.locator, source.uid, e)
                continue
            occurrences.extend(expand_resource(
                RawResource(locator=locator, raw_text=resource.raw_text),
                source.uid,
                window,
                self.max_candidates,
            ))
        logger.debug("Source %s: %d resources, %d occurrences", source.uid, len(resources), len(occurrences))
        return occurrences

    def _is_current(self, generation: int, source: CalendarSource) -> bool:
        if generation != self._generation:
            logger.debug("Dropping results of superseded cycle %d for %s", generation, source.uid)
            return False
        current = self._registry.get(source.uid)
        if current is None or not current.enabled:
            logger.debug("Dropping results for %s: source removed or disabled meanwhile", source.uid)
            return False
        return True

    def _commit(self, generation: int, source: CalendarSource, occurrences: list[Occurrence]) -> bool:
        with self._lock:
            if not self._is_current(generation, source):
                return False
            self._index.replace_source(source.uid, occurrences)
        self._notify_change()
        return True

    def _record_failure(self, generation: int, source: CalendarSource, error: FetchError) -> None:
        logger.error("Fetching %s failed: %s", source.display_name, error)
        with self._lock:
            if not self._is_current(generation, source):
                return
            self._index.remove_source(source.uid)
            self._error = str(error)
            self._errors[source.uid] = str(error)
        self._notify_change()

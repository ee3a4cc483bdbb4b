"""
Calendar source registry.

Holds the configured CalDAV collections and ICS feeds. The registry is a
plain state container owned by the composition root; anything that needs
to react to changes (persistence, the aggregator's index pruning)
registers an observer instead of watching a global store.

Records use the same JSON keys as the exported calendars file:
uid, url, username, password, name, color, enabled, type, useProxy.
"""

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
import json
import logging
import threading
import uuid

from .errors import ValidationError

logger = logging.getLogger(__name__)


DEFAULT_COLOR = "#4285f4"


class SourceKind(Enum):
    """Types of calendar source."""
    CALDAV = "caldav"
    ICS = "ics"


def generate_source_uid() -> str:
    """Opaque id for a new source; generated once, never reused."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class CalendarSource:
    """One configured remote calendar."""
    uid: str
    url: str
    name: str = ""
    color: str = DEFAULT_COLOR
    username: Optional[str] = None
    password: Optional[str] = None
    kind: SourceKind = SourceKind.CALDAV
    enabled: bool = True
    use_proxy: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.url

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "uid": self.uid,
            "url": self.url,
            "username": self.username or "",
            "password": self.password or "",
            "name": self.name,
            "color": self.color,
            "enabled": self.enabled,
            "type": self.kind.value,
            "useProxy": self.use_proxy,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CalendarSource':
        """
        Create from dictionary (JSON deserialization).

        A missing type means CalDAV and a missing enabled flag means enabled.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Calendar record must be an object, got {type(data).__name__}")
        url = data.get("url")
        if not url:
            raise ValidationError("Calendar record has no url")
        try:
            kind = SourceKind(data.get("type") or SourceKind.CALDAV.value)
        except ValueError:
            raise ValidationError(f"Unknown calendar type: {data.get('type')!r}")
        return cls(
            uid=data.get("uid") or generate_source_uid(),
            url=url,
            name=data.get("name", ""),
            color=data.get("color") or DEFAULT_COLOR,
            username=data.get("username") or None,
            password=data.get("password") or None,
            kind=kind,
            enabled=data.get("enabled") is not False,
            use_proxy=bool(data.get("useProxy", False)),
        )


SourcesObserver = Callable[[list[CalendarSource]], None]


class SourceRegistry:
    """
    Ordered collection of CalendarSource records keyed by uid.

    Every mutation notifies the registered observers with the new list.
    """

    def __init__(self, sources: Optional[list[CalendarSource]] = None, path: Optional[Path] = None):
        """
        Args:
            sources: Initial sources
            path: If given, sources are loaded from this JSON file (when it
                exists) and saved back to it after every mutation
        """
        self._lock = threading.RLock()
        self._sources: dict[str, CalendarSource] = {}
        self._observers: list[SourcesObserver] = []
        self._path = path

        for source in sources or []:
            self._sources[source.uid] = source

        if path is not None:
            if path.exists():
                self.load(path)
            self.add_observer(lambda _sources: self.save(path))

    # ==================== Observers ====================

    def add_observer(self, callback: SourcesObserver) -> None:
        """Register a callback invoked with the source list after each change."""
        self._observers.append(callback)

    def remove_observer(self, callback: SourcesObserver) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def _notify_change(self) -> None:
        sources = self.sources()
        for callback in list(self._observers):
            callback(sources)

    # ==================== Queries ====================

    def sources(self) -> list[CalendarSource]:
        """All sources in insertion order."""
        with self._lock:
            return list(self._sources.values())

    def get(self, uid: str) -> Optional[CalendarSource]:
        with self._lock:
            return self._sources.get(uid)

    def enabled_caldav_sources(self) -> list[CalendarSource]:
        """Sources that take part in the aggregator's fetch cycle."""
        return [s for s in self.sources() if s.enabled and s.kind == SourceKind.CALDAV]

    def __len__(self):
        return len(self._sources)

    def __contains__(self, uid: str):
        return uid in self._sources

    # ==================== Mutations ====================

    def add(self, source: CalendarSource) -> CalendarSource:
        with self._lock:
            if source.uid in self._sources:
                raise ValidationError(f"Calendar {source.uid} already exists")
            self._sources[source.uid] = source
        self._notify_change()
        return source

    def update(self, source: CalendarSource) -> CalendarSource:
        """Replace the stored record with the same uid."""
        with self._lock:
            if source.uid not in self._sources:
                raise ValidationError(f"Unknown calendar: {source.uid}")
            self._sources[source.uid] = source
        self._notify_change()
        return source

    def set_enabled(self, uid: str, enabled: bool) -> CalendarSource:
        source = self.get(uid)
        if source is None:
            raise ValidationError(f"Unknown calendar: {uid}")
        return self.update(replace(source, enabled=enabled))

    def remove(self, uid: str) -> bool:
        with self._lock:
            removed = self._sources.pop(uid, None)
        if removed is None:
            return False
        self._notify_change()
        return True

    def replace_all(self, sources: list[CalendarSource]) -> None:
        """Swap in a whole new source list (import)."""
        with self._lock:
            self._sources = {s.uid: s for s in sources}
        self._notify_change()

    # ==================== Import / Export ====================

    def export_json(self) -> str:
        return json.dumps([s.to_dict() for s in self.sources()], indent=2)

    def import_json(self, text: str) -> list[CalendarSource]:
        """
        Replace all sources with the JSON array in text.

        Raises:
            ValidationError: if text is not a JSON array of calendar records.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Failed to parse JSON: {e}") from e
        if not isinstance(data, list):
            raise ValidationError("Invalid file format: expected an array")
        sources = [CalendarSource.from_dict(item) for item in data]
        self.replace_all(sources)
        return sources

    def load(self, path: Path) -> None:
        """Load sources from a JSON file without notifying observers."""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValidationError(f"{path}: expected a JSON array of calendars")
        with self._lock:
            self._sources = {}
            for item in data:
                source = CalendarSource.from_dict(item)
                self._sources[source.uid] = source
        logger.debug("Loaded %d calendars from %s", len(self._sources), path)

    def save(self, path: Optional[Path] = None) -> None:
        """Write sources to a JSON file."""
        path = path or self._path
        if path is None:
            raise ValidationError("No path to save calendars to")
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(self.export_json())

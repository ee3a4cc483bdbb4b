"""
Occurrence identity resolution.

Maps a displayed Occurrence back to the remote calendar object it came
from, and handles sources that are reached through a forwarding proxy
(requests go to "<proxy>/<real url>").
"""

from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit
import re

from .caldav_client import basic_auth_headers
from .errors import ValidationError
from .occurrence import Occurrence
from .sources import CalendarSource, SourceRegistry


DEFAULT_PROXY_URL = "http://localhost:8080/proxy"

# An absolute URL embedded in a proxied path; proxies may collapse "//" to "/"
_EMBEDDED_URL_RE = re.compile(r'/(https?):/{1,2}(.*)$', re.IGNORECASE)


def proxy_url(url: str, proxy_base: str = DEFAULT_PROXY_URL) -> str:
    """Wrap url so the request goes through the forwarding proxy."""
    if not url:
        return ""
    return f"{proxy_base.rstrip('/')}/{url}"


def unmangle_proxied_url(original_url: str, mangled_url: str) -> str:
    """
    Recover the real address of a resource fetched through the proxy.

    Keeps scheme, host and credentials of original_url and takes path,
    query and fragment from mangled_url. When the mangled path still
    embeds the real absolute URL ("/proxy/https://host/cal/e.ics"), the
    path is taken from that embedded URL.

    >>> unmangle_proxied_url("https://host/cal/", "https://proxy/proxy/https://host/cal/e.ics")
    'https://host/cal/e.ics'
    """
    original = urlsplit(original_url)
    mangled = urlsplit(mangled_url)

    path = mangled.path
    embedded = _EMBEDDED_URL_RE.search(path)
    if embedded:
        inner = urlsplit(f"{embedded.group(1)}://{embedded.group(2)}")
        path = inner.path

    return urlunsplit((original.scheme, original.netloc, path, mangled.query, mangled.fragment))


@dataclass(frozen=True)
class WriteTarget:
    """Where to send a request and the headers to send with it."""
    locator: str
    headers: dict[str, str] = field(default_factory=dict)


class IdentityResolver:
    """Resolves sources and occurrences to request targets."""

    def __init__(self, registry: SourceRegistry, proxy_base: str = DEFAULT_PROXY_URL):
        self._registry = registry
        self.proxy_base = proxy_base

    def _effective_url(self, source: CalendarSource, url: str) -> str:
        return proxy_url(url, self.proxy_base) if source.use_proxy else url

    def auth_headers(self, source: CalendarSource) -> dict[str, str]:
        return basic_auth_headers(source.username, source.password)

    def source_for(self, occurrence: Occurrence) -> CalendarSource:
        source = self._registry.get(occurrence.source_uid)
        if source is None:
            raise ValidationError(f"Calendar not found: {occurrence.source_uid}")
        return source

    def collection_target(self, source: CalendarSource) -> WriteTarget:
        """Target for fetching from, or creating in, the source's collection."""
        return WriteTarget(
            locator=self._effective_url(source, source.url),
            headers=self.auth_headers(source),
        )

    def canonical_locator(self, source: CalendarSource, fetched_locator: str) -> str:
        """The true remote address of a resource as reported by the fetcher."""
        if not source.use_proxy:
            return fetched_locator
        return unmangle_proxied_url(source.url, fetched_locator)

    def resolve(self, occurrence: Occurrence) -> WriteTarget:
        """
        Target for updating or deleting the resource behind an occurrence.

        Every occurrence of a series resolves to the same object.

        Raises:
            ValidationError: if the source is gone or the occurrence has no locator.
        """
        source = self.source_for(occurrence)
        if not occurrence.source_locator:
            raise ValidationError(f"Original event data not found for {occurrence.event_uid}")
        return WriteTarget(
            locator=self._effective_url(source, occurrence.source_locator),
            headers=self.auth_headers(source),
        )

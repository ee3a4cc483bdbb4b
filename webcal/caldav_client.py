"""
CalDAV transport for calendar objects.

The core only talks to the CalendarFetcher protocol; CalDAVFetcher is the
implementation on top of the caldav library. Every transport failure is
re-raised as FetchError (reads) or WriteError (writes).
"""

from typing import Optional, Protocol
import base64
import logging

import caldav

from .errors import FetchError, WriteError
from .occurrence import RawResource, TimeWindow

logger = logging.getLogger(__name__)


def basic_auth_headers(username: Optional[str], password: Optional[str]) -> dict[str, str]:
    """Build the Authorization header map for HTTP basic auth (empty without a username)."""
    if not username:
        return {}
    token = base64.b64encode(f"{username}:{password or ''}".encode('utf-8')).decode('ascii')
    return {'Authorization': f'Basic {token}'}


class CalendarFetcher(Protocol):
    """Wire-level access to calendar collections."""

    def fetch_objects(self, locator: str, window: TimeWindow, headers: dict[str, str]) -> list[RawResource]:
        ...

    def create_object(self, collection_locator: str, filename: str, raw_text: str, headers: dict[str, str]) -> str:
        ...

    def update_object(self, locator: str, raw_text: str, headers: dict[str, str]) -> None:
        ...

    def delete_object(self, locator: str, headers: dict[str, str]) -> None:
        ...


class CalDAVFetcher:
    """CalendarFetcher backed by caldav.DAVClient."""

    def __init__(self, timeout: int = 30):
        """
        Args:
            timeout: Request timeout in seconds
        """
        self.timeout = timeout

    def _client(self, url: str, headers: dict[str, str]) -> caldav.DAVClient:
        return caldav.DAVClient(url=url, headers=dict(headers), timeout=self.timeout)

    def fetch_objects(self, locator: str, window: TimeWindow, headers: dict[str, str]) -> list[RawResource]:
        """
        Run a time-range REPORT against a collection.

        Returns:
            One RawResource per calendar object, unexpanded.

        Raises:
            FetchError: on any network, auth or protocol failure.
        """
        try:
            client = self._client(locator, headers)
            calendar = caldav.Calendar(client=client, url=locator)
            objects = calendar.search(
                start=window.start,
                end=window.end,
                event=True,
                expand=False  # recurrence is expanded locally
            )
            resources = []
            for obj in objects:
                data = obj.data
                if isinstance(data, bytes):
                    data = data.decode('utf-8', errors='replace')
                resources.append(RawResource(locator=str(obj.url), raw_text=data or ""))
        except Exception as e:
            raise FetchError(f"Failed to fetch {locator}: {e}") from e
        logger.debug("Fetched %d objects from %s", len(resources), locator)
        return resources

    def create_object(self, collection_locator: str, filename: str, raw_text: str, headers: dict[str, str]) -> str:
        """
        Store a new calendar object as filename inside the collection.

        Returns:
            The locator of the created object.
        """
        try:
            client = self._client(collection_locator, headers)
            calendar = caldav.Calendar(client=client, url=collection_locator)
            url = calendar.url.join(filename)
            caldav.Event(client=client, url=url, data=raw_text, parent=calendar).save()
        except Exception as e:
            raise WriteError(f"Failed to create {filename} in {collection_locator}: {e}") from e
        return str(url)

    def update_object(self, locator: str, raw_text: str, headers: dict[str, str]) -> None:
        """Overwrite the calendar object at locator."""
        try:
            client = self._client(locator, headers)
            caldav.Event(client=client, url=locator, data=raw_text).save()
        except Exception as e:
            raise WriteError(f"Failed to update {locator}: {e}") from e

    def delete_object(self, locator: str, headers: dict[str, str]) -> None:
        """Delete the calendar object at locator."""
        try:
            client = self._client(locator, headers)
            caldav.Event(client=client, url=locator).delete()
        except Exception as e:
            raise WriteError(f"Failed to delete {locator}: {e}") from e

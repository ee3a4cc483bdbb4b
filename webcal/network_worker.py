"""
Network Worker - runs blocking network operations in background threads.

Uses ThreadPoolExecutor so callers stay responsive while CalDAV requests
are in flight. Results are delivered through callbacks, invoked on the
worker thread that ran the operation.
"""

from concurrent.futures import ThreadPoolExecutor, Future
from typing import Any, Callable, Optional
import logging
import threading

logger = logging.getLogger(__name__)


FinishedCallback = Callable[[str, Any], None]
ErrorCallback = Callable[[str, str], None]


class NetworkWorker:
    """
    Runs network operations in background threads.

    on_finished(operation_id, result) is called when an operation
    completes, on_error(operation_id, error_message) when it raises.
    """

    def __init__(
        self,
        max_workers: int = 3,
        on_finished: Optional[FinishedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="network")
        self._pending: dict[str, Future] = {}
        self._lock = threading.Lock()
        self.on_finished = on_finished
        self.on_error = on_error

    def submit(self, operation_id: str, func: Callable, *args, **kwargs) -> Future:
        """
        Submit a blocking operation to run in a background thread.

        Args:
            operation_id: Unique identifier for this operation (for callback matching)
            func: The blocking function to run
            *args, **kwargs: Arguments to pass to func

        Returns:
            The Future of the operation; its exception, if any, is also
            reported through on_error.
        """
        future = self._executor.submit(func, *args, **kwargs)
        with self._lock:
            self._pending[operation_id] = future
        future.add_done_callback(lambda f: self._on_done(operation_id, f))
        return future

    def _on_done(self, operation_id: str, future: Future) -> None:
        """Handle completion of a background operation."""
        with self._lock:
            if self._pending.get(operation_id) is future:
                del self._pending[operation_id]

        if future.cancelled():
            logger.debug("Operation '%s' cancelled", operation_id)
            return

        error = future.exception()
        if error is not None:
            error_msg = f"{type(error).__name__}: {error}"
            logger.error("Operation '%s' failed: %s", operation_id, error_msg)
            if self.on_error:
                self.on_error(operation_id, error_msg)
            return

        if self.on_finished:
            self.on_finished(operation_id, future.result())

    def is_pending(self, operation_id: str) -> bool:
        """Check if an operation is still pending."""
        with self._lock:
            return operation_id in self._pending

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def cancel(self, operation_id: str) -> bool:
        """
        Attempt to cancel a pending operation.

        Returns True if cancelled, False if already running or completed.
        """
        with self._lock:
            future = self._pending.get(operation_id)
        if future:
            return future.cancel()
        return False

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the executor, optionally waiting for pending operations."""
        self._executor.shutdown(wait=wait)

"""
Exception taxonomy for webcal.

ParseError never leaves the expander, FetchError is isolated per source by
the aggregator, WriteError is surfaced to whoever asked for the write.
"""

from typing import Optional


class WebcalError(Exception):
    """Base class for all webcal errors."""


class ConfigError(WebcalError, ValueError):
    """Invalid configuration file contents."""


class ValidationError(WebcalError, ValueError):
    """Input the core cannot work with (bad window, unknown source, ...)."""


class ParseError(WebcalError):
    """A raw calendar resource or recurrence rule could not be parsed."""


class FetchError(WebcalError):
    """Fetching resources for one calendar source failed."""

    def __init__(self, message: str, source_uid: Optional[str] = None):
        super().__init__(message)
        self.source_uid = source_uid


class WriteError(WebcalError):
    """Creating, updating or deleting a remote resource failed."""

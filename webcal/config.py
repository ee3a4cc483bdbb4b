"""
Configuration parser for webcal.

Handles TOML file parsing into dataclasses.
"""

import tomllib
import os
from pathlib import Path
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import pytz

from .errors import ConfigError
from .expander import DEFAULT_MAX_CANDIDATES
from .identity import DEFAULT_PROXY_URL
from .occurrence import TimeWindow


def _get_int(section: dict, section_name: str, key: str, default: int, minimum: int = 0) -> int:
    value = section.get(key, default)
    # bool is an int subclass; "true" is not a count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"[{section_name}] {key} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"[{section_name}] {key} must be at least {minimum}, got {value}")
    return value


@dataclass
class GeneralConfig:
    """Configuration for sources, network access and logging."""
    sources_file: Path
    timezone: str = "UTC"
    proxy_url: str = DEFAULT_PROXY_URL
    request_timeout: int = 30  # Seconds
    max_workers: int = 3  # Concurrent per-source fetches
    feed_cache_seconds: int = 300  # How long a fetched ICS feed is reused
    log_level: str = "WARNING"


@dataclass
class WindowConfig:
    """Default display window around now."""
    past_days: int = 7
    future_days: int = 35


@dataclass
class ExpansionConfig:
    """Limits for recurrence expansion."""
    max_candidates: int = DEFAULT_MAX_CANDIDATES


@dataclass
class Config:
    """Main configuration container for webcal."""

    general: GeneralConfig
    window: WindowConfig = field(default_factory=WindowConfig)
    expansion: ExpansionConfig = field(default_factory=ExpansionConfig)

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
        return Path(xdg_config) / 'webcal' / 'webcal.toml'

    @classmethod
    def get_default_state_path(cls) -> Path:
        """Get the default path of the calendar sources file."""
        xdg_state = os.environ.get('XDG_STATE_HOME', os.path.expanduser('~/.local/state'))
        return Path(xdg_state) / 'webcal' / 'calendars.json'

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from TOML file.

        Raises:
            FileNotFoundError: if the file does not exist.
            ConfigError: if the file is not valid TOML or a value has the wrong type.
        """
        if config_path is None:
            config_path = cls.get_default_config_path()
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'rb') as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"Invalid configuration file {config_path}: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """Build a Config from parsed TOML data; missing sections get defaults."""
        # Parse General section
        general_data = data.get('General', {})
        sources_file_str = general_data.get('sources_file', str(cls.get_default_state_path()))
        timezone = str(general_data.get('timezone', GeneralConfig.timezone))
        if timezone not in pytz.all_timezones_set:
            raise ConfigError(f"[General] timezone is not a known timezone: {timezone!r}")

        general = GeneralConfig(
            sources_file=Path(os.path.expanduser(sources_file_str)),
            timezone=timezone,
            proxy_url=str(general_data.get('proxy_url', GeneralConfig.proxy_url)),
            request_timeout=_get_int(general_data, 'General', 'request_timeout', GeneralConfig.request_timeout, 1),
            max_workers=_get_int(general_data, 'General', 'max_workers', GeneralConfig.max_workers, 1),
            feed_cache_seconds=_get_int(general_data, 'General', 'feed_cache_seconds', GeneralConfig.feed_cache_seconds),
            log_level=str(general_data.get('log_level', GeneralConfig.log_level)).upper(),
        )

        # Parse Window section
        window_data = data.get('Window', {})
        window = WindowConfig(
            past_days=_get_int(window_data, 'Window', 'past_days', WindowConfig.past_days),
            future_days=_get_int(window_data, 'Window', 'future_days', WindowConfig.future_days),
        )
        if window.past_days + window.future_days == 0:
            raise ConfigError("[Window] past_days and future_days must not both be 0")

        # Parse Expansion section
        expansion_data = data.get('Expansion', {})
        expansion = ExpansionConfig(
            max_candidates=_get_int(expansion_data, 'Expansion', 'max_candidates', ExpansionConfig.max_candidates, 1),
        )

        return cls(general=general, window=window, expansion=expansion)

    def default_window(self, now: Optional[datetime] = None) -> TimeWindow:
        """The configured display window around now."""
        if now is None:
            now = datetime.now(pytz.UTC)
        return TimeWindow.around(now, self.window.past_days, self.window.future_days)


SAMPLE_CONFIG = """\
[General]
timezone = "Europe/Berlin"
sources_file = "~/.local/state/webcal/calendars.json"
proxy_url = "http://localhost:8080/proxy"
request_timeout = 30
max_workers = 3

[Window]
past_days = 7
future_days = 35

[Expansion]
max_candidates = 1000000
"""

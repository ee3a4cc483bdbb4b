#!/usr/bin/env python3
"""
webcal - command line front end for CalDAV collections and ICS subscriptions.

This is the main entry point for the application.
"""

import sys
import argparse
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from webcal.aggregator import EventAggregator
from webcal.caldav_client import CalDAVFetcher
from webcal.config import Config, SAMPLE_CONFIG
from webcal.errors import ConfigError, WebcalError
from webcal.ics_subscription import ICSFeedManager
from webcal.identity import IdentityResolver
from webcal.occurrence import Occurrence, TimeWindow
from webcal.sources import SourceKind, SourceRegistry
from webcal.timezone_utils import set_timezone, to_local_datetime
from webcal.writer import EventWriter

logger = logging.getLogger("webcal")


def parse_args(argv: Optional[list[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="webcal - view and manage CalDAV calendars and ICS subscriptions"
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to configuration file (default: auto-detect)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    agenda = commands.add_parser("agenda", help="List occurrences in a window")
    agenda.add_argument("--start", type=datetime.fromisoformat, help="Window start (ISO 8601)")
    agenda.add_argument("--end", type=datetime.fromisoformat, help="Window end (ISO 8601)")

    commands.add_parser("sources", help="List configured calendars")

    import_cmd = commands.add_parser("import", help="Replace calendars with a JSON export")
    import_cmd.add_argument("file", type=Path)

    export_cmd = commands.add_parser("export", help="Write calendars to a JSON file")
    export_cmd.add_argument("file", type=Path)

    delete = commands.add_parser("delete", help="Delete an event (the whole series)")
    delete.add_argument("source_uid")
    delete.add_argument("event_uid")

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="[%(asctime)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def resolve_window(config: Config, start: Optional[datetime], end: Optional[datetime]) -> TimeWindow:
    if start is None and end is None:
        return config.default_window()
    span = timedelta(days=config.window.past_days + config.window.future_days)
    if start is None:
        start = end - span
    if end is None:
        end = start + span
    return TimeWindow(start, end)


def format_occurrence(occurrence: Occurrence) -> str:
    if occurrence.all_day:
        when = f"{occurrence.start.isoformat()}      "
    else:
        when = to_local_datetime(occurrence.start_instant).strftime("%Y-%m-%d %H:%M")
    marker = " (recurring)" if occurrence.is_recurring else ""
    return f"  {when}  {occurrence.title}{marker}  [{occurrence.event_uid}]"


def build_aggregator(config: Config, registry: SourceRegistry) -> EventAggregator:
    return EventAggregator(
        registry,
        CalDAVFetcher(timeout=config.general.request_timeout),
        resolver=IdentityResolver(registry, config.general.proxy_url),
        max_workers=config.general.max_workers,
        max_candidates=config.expansion.max_candidates,
    )


def cmd_agenda(config: Config, registry: SourceRegistry, args) -> int:
    window = resolve_window(config, args.start, args.end)
    aggregator = build_aggregator(config, registry)
    aggregator.fetch(window)

    feeds = ICSFeedManager(timeout=config.general.request_timeout, cache_seconds=config.general.feed_cache_seconds)
    feeds.sync(registry.sources())
    feed_occurrences = feeds.occurrences(window)

    errors = aggregator.errors
    for feed in feeds.get_all_feeds():
        if feed.error:
            errors[feed.uid] = feed.error

    print(f"{to_local_datetime(window.start):%Y-%m-%d %H:%M} - {to_local_datetime(window.end):%Y-%m-%d %H:%M}")
    active = [s for s in registry.sources() if s.enabled]
    for source in active:
        print(f"\n{source.display_name}")
        if source.uid in errors:
            print(f"  ERROR: {errors[source.uid]}")
            continue
        if source.kind == SourceKind.ICS:
            occurrences = feed_occurrences.get(source.uid, [])
        else:
            occurrences = aggregator.index.get_source_occurrences(source.uid)
        if not occurrences:
            print("  (no events)")
        for occurrence in occurrences:
            print(format_occurrence(occurrence))

    if active and all(s.uid in errors for s in active):
        return 1
    return 0


def cmd_sources(config: Config, registry: SourceRegistry, args) -> int:
    if len(registry) == 0:
        print(f"No calendars configured in {config.general.sources_file}")
        return 0
    for source in registry.sources():
        state = "enabled" if source.enabled else "disabled"
        proxy = ", via proxy" if source.use_proxy else ""
        print(f"{source.uid}  {source.kind.value:6}  {state:8}  {source.display_name}  <{source.url}>{proxy}")
    return 0


def cmd_import(config: Config, registry: SourceRegistry, args) -> int:
    sources = registry.import_json(args.file.read_text(encoding='utf-8'))
    print(f"Imported {len(sources)} calendars into {config.general.sources_file}")
    return 0


def cmd_export(config: Config, registry: SourceRegistry, args) -> int:
    args.file.write_text(registry.export_json(), encoding='utf-8')
    print(f"Exported {len(registry)} calendars to {args.file}")
    return 0


def cmd_delete(config: Config, registry: SourceRegistry, args) -> int:
    aggregator = build_aggregator(config, registry)
    aggregator.fetch(config.default_window())
    occurrence = aggregator.get_event(args.source_uid, args.event_uid)
    if occurrence is None:
        print(f"Event not found: {args.event_uid}")
        return 1
    EventWriter(aggregator, aggregator.fetcher).delete(occurrence)
    print(f"Deleted {occurrence.title}")
    return 0


COMMANDS = {
    "agenda": cmd_agenda,
    "sources": cmd_sources,
    "import": cmd_import,
    "export": cmd_export,
    "delete": cmd_delete,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = Config.load(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        print("\nPlease create a configuration file at:")
        print(f"  - {Config.get_default_config_path()}")
        print("\nExample configuration:\n")
        print(SAMPLE_CONFIG)
        return 1
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        return 1

    setup_logging("DEBUG" if args.debug else config.general.log_level)
    set_timezone(config.general.timezone)
    logger.debug("Loaded configuration from: %s", args.config or Config.get_default_config_path())

    try:
        registry = SourceRegistry(path=config.general.sources_file)
        return COMMANDS[args.command](config, registry, args)
    except (WebcalError, OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

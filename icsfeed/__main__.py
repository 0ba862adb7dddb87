"""Command-line entry for icsfeed.

Examples:
  icsfeed events --start 2025-01-01 --end 2025-01-31
  icsfeed search standup --limit 5 --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import Optional

from .core.config_manager import ConfigManager
from .exceptions import ConfigurationError
from .ics.models import ExpandedEvent
from .logging_config import configure_logging, get_logging_status
from .sources.event_store import CalendarEventStore

logger = logging.getLogger(__name__)

DESCRIPTION_PREVIEW_LENGTH = 400

_PLAIN_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the icsfeed CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="icsfeed",
        description="Fetch ICS calendars from CALENDAR_<NAME> sources and list their events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  icsfeed events --start 2025-01-01 --end 2025-01-31
  icsfeed search "team standup" --json
        """,
    )
    parser.add_argument("--env-file", type=Path, help="Path to .env file (default: ./.env)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    events = subparsers.add_parser("events", help="List occurrences in a date range")
    events.add_argument("--start", required=True, help="Range start (date or ISO date-time)")
    events.add_argument(
        "--end", required=True, help="Range end (date, meaning end of that day, or ISO date-time)"
    )
    events.add_argument("--limit", type=int, default=50, help="Maximum events (default: 50)")
    events.add_argument("--json", action="store_true", help="Print JSON instead of text")

    search = subparsers.add_parser("search", help="Keyword search across all events")
    search.add_argument("query", help="Whitespace-separated keywords")
    search.add_argument("--limit", type=int, default=50, help="Maximum matches (default: 50)")
    search.add_argument("--json", action="store_true", help="Print JSON instead of text")

    return parser


def _range_end(value: str) -> str:
    """A plain date as range end covers the whole day."""
    if _PLAIN_DATE_RE.match(value.strip()):
        return f"{value.strip()}T23:59:59Z"
    return value


def format_event(index: int, event: ExpandedEvent) -> str:
    """Human readable block for one event."""
    lines = [f"{index}. {event.summary}"]
    if event.source:
        lines.append(f"   Source: {event.source}")
    if event.all_day:
        lines.append(f"   Date: {event.start[:10]} (all day)")
    elif event.end and event.end != event.start:
        lines.append(f"   Time: {event.start} -> {event.end}")
    else:
        lines.append(f"   Time: {event.start}")
    if event.location:
        lines.append(f"   Location: {event.location}")
    if event.description:
        desc = event.description
        if len(desc) > DESCRIPTION_PREVIEW_LENGTH:
            desc = desc[:DESCRIPTION_PREVIEW_LENGTH] + "..."
        lines.append(f"   Description: {desc}")
    return "\n".join(lines)


def _print_errors(errors: list[str]) -> None:
    if errors:
        print("Errors encountered:")
        for error in errors:
            print(f"   - {error}")
        print()


async def _run_events(store: CalendarEventStore, args: argparse.Namespace) -> int:
    result = await store.get_events_between(args.start, _range_end(args.end), limit=args.limit)

    if args.json:
        payload = {
            "events": [event.model_dump(mode="json") for event in result.events],
            "total": result.total,
            "errors": result.errors,
        }
        print(json.dumps(payload, indent=2))
        return 1 if result.errors else 0

    if not result.events and not result.errors:
        print(f"No events found between {args.start} and {args.end}")
        return 0

    print(f"Calendar Events ({len(result.events)} of {result.total} from {len(store.sources)} source(s)):")
    print(f"Period: {args.start} to {args.end}")
    print()
    _print_errors(result.errors)
    for index, event in enumerate(result.events, start=1):
        print(format_event(index, event))
        print()
    return 1 if result.errors else 0


async def _run_search(store: CalendarEventStore, args: argparse.Namespace) -> int:
    matches = await store.search(args.query, limit=args.limit)
    snapshot = await store.snapshot()

    if args.json:
        payload = {
            "matches": [
                {
                    "event": match.event.model_dump(mode="json"),
                    "matched_keywords": match.matched_keywords,
                }
                for match in matches
            ],
            "errors": snapshot.errors,
        }
        print(json.dumps(payload, indent=2))
        return 1 if snapshot.errors else 0

    _print_errors(snapshot.errors)
    if not matches:
        print(f"No events match {args.query!r}")
        return 1 if snapshot.errors else 0

    print(f"Search results for {args.query!r} ({len(matches)} found):")
    print()
    for index, match in enumerate(matches, start=1):
        print(format_event(index, match.event))
        print(f"   Matched: {', '.join(match.matched_keywords)}")
        print()
    return 1 if snapshot.errors else 0


async def run(args: argparse.Namespace) -> int:
    """Load configuration, refresh every source once and run the command.

    Returns:
        Process exit status

    Raises:
        ConfigurationError: If no valid calendar source is configured
    """
    config = ConfigManager(args.env_file)
    config.load_env_file()
    settings = config.load_settings()
    configure_logging(settings.log_level, debug_mode=args.debug)
    logger.debug("Logger levels: %s", get_logging_status())
    sources = config.load_sources()

    async with CalendarEventStore(sources, settings) as store:
        if args.command == "events":
            return await _run_events(store, args)
        return await _run_search(store, args)


def main(argv: Optional[list[str]] = None) -> int:
    """Run the icsfeed CLI and return its exit status."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        return asyncio.run(run(args))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())

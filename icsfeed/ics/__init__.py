"""ICS parsing, timezone resolution and recurrence expansion.

Typical use::

    prepared = prepare(ics_text)
    cached = serialize(prepared)
    events = get_events_between(deserialize(cached), "2025-01-01T00:00:00Z", "2025-02-01T00:00:00Z")
"""

import logging
import re
from datetime import datetime

from pydantic import BaseModel, ValidationError

from ..core.timezone_utils import UTC
from ..exceptions import CacheError, IcsError
from .event_expander import expand_calendar_report, parse_unexpanded_event
from .models import (
    CalendarExpansion,
    Component,
    ExpandedEvent,
    PreparedIcs,
    TimeZoneData,
    UnexpandedEvent,
)
from .parser import parse_ics
from .property_parsers import parse_date_value
from .rrule_expander import DEFAULT_MAX_OCCURRENCES
from .timezone_processor import build_time_zone_data, create_time_zone_resolver

logger = logging.getLogger(__name__)

__all__ = [
    "ExpandedEvent",
    "PreparedIcs",
    "UnexpandedEvent",
    "deserialize",
    "get_events_between",
    "get_events_between_report",
    "get_unexpanded_events",
    "parse_range_bound",
    "prepare",
    "serialize",
]


class PreparedIcsWire(BaseModel):
    """JSON form of PreparedIcs: ``{"events": [...], "timezones": [[tzid, data], ...]}``."""

    events: list[Component]
    timezones: list[tuple[str, TimeZoneData]]


def prepare(text: str) -> PreparedIcs:
    """Parse ICS text and process its VTIMEZONE blocks.

    Raises:
        CalendarNotFoundError: If the text has no VCALENDAR
    """
    parsed = parse_ics(text)
    tz_data = build_time_zone_data(parsed.timezones)
    logger.debug(
        "Prepared ICS: %d events, %d timezones", len(parsed.events), len(tz_data)
    )
    return PreparedIcs(events=parsed.events, tz_data=tz_data)


def serialize(prepared: PreparedIcs) -> str:
    """Serialize prepared data to its JSON wire form."""
    wire = PreparedIcsWire(events=prepared.events, timezones=list(prepared.tz_data.items()))
    return wire.model_dump_json()


def deserialize(text: str) -> PreparedIcs:
    """Rebuild PreparedIcs from :func:`serialize` output.

    Raises:
        CacheError: If the text is not valid JSON or does not match the wire form
    """
    try:
        wire = PreparedIcsWire.model_validate_json(text)
    except ValidationError as e:
        raise CacheError(f"Serialized calendar data is corrupt: {e.error_count()} error(s)") from e
    return PreparedIcs(events=wire.events, tz_data=dict(wire.timezones))


_COMPACT_RE = re.compile(r"^\d{8}(T\d{6}Z?)?$")


def parse_range_bound(value: str) -> datetime:
    """Parse a query bound into an aware UTC datetime.

    Accepts ISO-8601 with ``Z`` or an offset, naive ISO values (read as UTC),
    plain dates (midnight UTC) and compact ICS values like ``20250110T090000Z``.

    Raises:
        ValueError: If the value cannot be parsed
    """
    raw = value.strip()
    if _COMPACT_RE.match(raw):
        try:
            parsed = parse_date_value(raw)
        except IcsError as e:
            raise ValueError(f"Invalid date-time: {value!r}") from e
        return parsed.value.replace(tzinfo=UTC)

    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        instant = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ValueError(f"Invalid date-time: {value!r}") from e
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


def _parse_range(range_start_iso: str, range_end_iso: str) -> tuple[datetime, datetime]:
    range_start = parse_range_bound(range_start_iso)
    range_end = parse_range_bound(range_end_iso)
    if range_end < range_start:
        raise ValueError(f"Range end {range_end_iso!r} is before range start {range_start_iso!r}")
    return range_start, range_end


def get_events_between_report(
    prepared: PreparedIcs,
    range_start_iso: str,
    range_end_iso: str,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> CalendarExpansion:
    """Expand prepared data over a range, keeping the per-event skip reasons."""
    range_start, range_end = _parse_range(range_start_iso, range_end_iso)
    resolver = create_time_zone_resolver(prepared.tz_data)
    return expand_calendar_report(
        prepared.events, resolver, range_start, range_end, max_occurrences=max_occurrences
    )


def get_events_between(
    prepared: PreparedIcs,
    range_start_iso: str,
    range_end_iso: str,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[ExpandedEvent]:
    """All occurrences overlapping ``[range_start_iso, range_end_iso]``, sorted by start.

    Args:
        prepared: Output of :func:`prepare` or :func:`deserialize`
        range_start_iso: Inclusive range start
        range_end_iso: Inclusive range end
        max_occurrences: Cap on generated occurrences per VEVENT

    Raises:
        ValueError: If a bound cannot be parsed or the range is reversed
    """
    return get_events_between_report(
        prepared, range_start_iso, range_end_iso, max_occurrences=max_occurrences
    ).events


def get_unexpanded_events(prepared: PreparedIcs) -> list[UnexpandedEvent]:
    """One record per usable VEVENT; events that cannot be parsed are skipped."""
    resolver = create_time_zone_resolver(prepared.tz_data)
    unexpanded = []
    for event in prepared.events:
        try:
            unexpanded.append(parse_unexpanded_event(event, resolver))
        except IcsError as e:
            logger.debug("Skipping unsearchable event: %s", e)
    return unexpanded

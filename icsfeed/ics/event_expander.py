"""Expansion of VEVENT components into concrete occurrences.

VEVENTs are grouped by UID. Within a group the master is the first
definition carrying RRULE or RDATE and no RECURRENCE-ID; definitions with a
RECURRENCE-ID override (or, when CANCELLED, remove) single instances of the
master; everything else is expanded as a standalone event.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..core.timezone_utils import UTC
from ..exceptions import IcsError, InvalidRRuleError, MissingDtstartError
from .models import (
    CalendarExpansion,
    Component,
    ExpandedEvent,
    SkippedEvent,
    UnexpandedEvent,
)
from .property_parsers import (
    IcsDateTime,
    parse_cal_address,
    parse_categories,
    parse_datetime_list,
    parse_duration,
    parse_ics_datetime,
    parse_rrule_string,
    unescape_text,
)
from .rrule_expander import DEFAULT_MAX_OCCURRENCES, expand_rrule
from .timezone_processor import TimeZoneResolver

logger = logging.getLogger(__name__)

SOURCE_PROPERTY = "X-MCP-SOURCE"
NO_SUMMARY = "(No Summary)"
ISO_UTC_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
# Wider than any UTC offset, so the local-time expansion window never misses an instance
_WINDOW_SLACK = timedelta(days=2)


def format_utc(instant: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return instant.astimezone(UTC).strftime(ISO_UTC_FORMAT)


def epoch_millis(instant: datetime) -> int:
    return (instant - _EPOCH) // timedelta(milliseconds=1)


def event_uid(event: Component) -> str:
    """UID of ``event``, or a stable generated one when it has none."""
    uid = event.get_value("UID")
    if uid and uid.strip():
        return uid.strip()
    digest = hashlib.sha1(
        "\n".join(f"{p.name}:{p.value}" for p in event.properties).encode("utf-8")
    ).hexdigest()[:16]
    return f"generated-{digest}"


def resolve_instant(
    value: IcsDateTime, resolver: TimeZoneResolver, default_tzid: Optional[str] = None
) -> datetime:
    """Turn a parsed DATE/DATE-TIME into an aware UTC datetime.

    UTC values are taken as-is, values with a TZID (or ``default_tzid``) go
    through the resolver, floating values are read as UTC.
    """
    if value.is_utc:
        return value.value.replace(tzinfo=UTC)
    tzid = value.tzid or default_tzid
    if tzid:
        return resolver.to_utc(tzid, value.value)
    return value.value.replace(tzinfo=UTC)


def _text(event: Component, name: str) -> Optional[str]:
    value = event.get_value(name)
    return unescape_text(value) if value is not None else None


def _event_details(event: Component) -> dict:
    """Static fields shared by every occurrence of ``event``."""
    organizer = parse_cal_address(event.find_property("ORGANIZER"))
    attendees = [
        address
        for address in (parse_cal_address(p) for p in event.find_properties("ATTENDEE"))
        if address is not None
    ]
    status = event.get_value("STATUS")
    return {
        "uid": event_uid(event),
        "summary": _text(event, "SUMMARY") or NO_SUMMARY,
        "description": _text(event, "DESCRIPTION"),
        "location": _text(event, "LOCATION"),
        "status": status.strip().upper() if status else None,
        "url": event.get_value("URL"),
        "categories": parse_categories(event.find_properties("CATEGORIES")),
        "organizer": organizer,
        "attendees": attendees,
        "source": event.get_value(SOURCE_PROPERTY),
    }


def _dtstart(event: Component) -> IcsDateTime:
    prop = event.find_property("DTSTART")
    if prop is None or not prop.value.strip():
        raise MissingDtstartError(event_uid(event))
    return parse_ics_datetime(prop)


def event_duration(
    event: Component, start: IcsDateTime, start_utc: datetime, resolver: TimeZoneResolver
) -> timedelta:
    """DTEND minus DTSTART, else DURATION, else one day (all-day) or zero."""
    dtend = event.find_property("DTEND")
    if dtend is not None:
        end_utc = resolve_instant(parse_ics_datetime(dtend), resolver, start.tzid)
        duration = end_utc - start_utc
    else:
        duration_prop = event.find_property("DURATION")
        if duration_prop is not None:
            duration = parse_duration(duration_prop.value)
        elif start.all_day:
            duration = timedelta(days=1)
        else:
            duration = timedelta(0)
    if duration < timedelta(0):
        logger.debug("Event %s ends before it starts; using zero duration", event_uid(event))
        return timedelta(0)
    return duration


def _date_list(
    event: Component, name: str, resolver: TimeZoneResolver, default_tzid: Optional[str]
) -> list[datetime]:
    return [
        resolve_instant(value, resolver, default_tzid)
        for prop in event.find_properties(name)
        for value in parse_datetime_list(prop)
    ]


def _overlaps(start: datetime, end: datetime, range_start: datetime, range_end: datetime) -> bool:
    # Closed interval on both ends
    return start <= range_end and end >= range_start


def _build_event(
    details: dict,
    start: datetime,
    duration: timedelta,
    all_day: bool,
    uid: Optional[str] = None,
    recurrence_id: Optional[datetime] = None,
) -> ExpandedEvent:
    data = dict(details)
    if uid is not None:
        data["uid"] = uid
    return ExpandedEvent(
        **data,
        start=format_utc(start),
        end=format_utc(start + duration),
        all_day=all_day,
        recurrence_id=format_utc(recurrence_id) if recurrence_id is not None else None,
    )


@dataclass
class _ExpansionContext:
    resolver: TimeZoneResolver
    range_start: datetime
    range_end: datetime
    max_occurrences: int
    skipped: list[SkippedEvent]

    def skip(self, uid: str, reason: str) -> None:
        logger.debug("Skipping event %s: %s", uid, reason)
        self.skipped.append(SkippedEvent(uid=uid, reason=reason))


def _recurrence_starts(
    event: Component,
    start: IcsDateTime,
    start_utc: datetime,
    duration: timedelta,
    ctx: _ExpansionContext,
) -> tuple[list[datetime], bool]:
    """UTC start instants of a recurring event that may touch the query range.

    DTSTART is always included. A malformed RRULE is reported and ignored.

    Returns:
        (sorted start instants, whether the event still recurs; False when
        its only rule was ignored and it has no RDATE)
    """
    uid = event_uid(event)
    starts = {epoch_millis(start_utc): start_utc}
    recurring = False

    def to_utc(local: datetime) -> datetime:
        if start.tzid and not start.is_utc:
            return ctx.resolver.to_utc(start.tzid, local)
        return local.replace(tzinfo=UTC)

    def in_range(local: datetime) -> bool:
        instant = to_utc(local)
        return _overlaps(instant, instant + duration, ctx.range_start, ctx.range_end)

    rrule_value = event.get_value("RRULE")
    if rrule_value:
        try:
            rule = parse_rrule_string(rrule_value)
            until = None
            if rule.until is not None:
                until = _until_in_event_frame(rule.until, start, ctx.resolver)
            window_start = ctx.range_start.replace(tzinfo=None) - duration - _WINDOW_SLACK
            window_end = ctx.range_end.replace(tzinfo=None) + _WINDOW_SLACK
            result = expand_rrule(
                rule,
                start.value,
                window_start,
                window_end,
                until=until,
                max_occurrences=ctx.max_occurrences,
                accept=in_range,
            )
        except InvalidRRuleError as e:
            ctx.skip(uid, f"RRULE ignored, expanded as a single event: {e.message}")
        else:
            recurring = True
            if result.truncated:
                ctx.skip(uid, f"only the first {ctx.max_occurrences} occurrences were expanded")
            for local in result.occurrences:
                instant = to_utc(local)
                starts[epoch_millis(instant)] = instant

    for instant in _date_list(event, "RDATE", ctx.resolver, start.tzid):
        recurring = True
        starts[epoch_millis(instant)] = instant

    return [starts[key] for key in sorted(starts)], recurring


def _until_in_event_frame(
    until: IcsDateTime, start: IcsDateTime, resolver: TimeZoneResolver
) -> datetime:
    """Express UNTIL in the naive wall-clock frame of the series start."""
    value = until.value
    if until.all_day and not start.all_day:
        # A DATE bound on a timed series covers that whole day
        value = value + timedelta(days=1) - timedelta(seconds=1)
    if until.is_utc and start.tzid and not start.is_utc:
        return resolver.to_local(start.tzid, value.replace(tzinfo=UTC))
    return value


def _expand_series(
    event: Component,
    ctx: _ExpansionContext,
    excluded: set[int],
) -> list[ExpandedEvent]:
    details = _event_details(event)
    start = _dtstart(event)
    start_utc = resolve_instant(start, ctx.resolver)
    duration = event_duration(event, start, start_utc, ctx.resolver)

    excluded = excluded | {
        epoch_millis(instant) for instant in _date_list(event, "EXDATE", ctx.resolver, start.tzid)
    }

    starts, recurring = _recurrence_starts(event, start, start_utc, duration, ctx)
    occurrences = []
    for instant in starts:
        millis = epoch_millis(instant)
        if millis in excluded:
            continue
        if _overlaps(instant, instant + duration, ctx.range_start, ctx.range_end):
            uid = f"{details['uid']}_{millis}" if recurring else None
            occurrences.append(_build_event(details, instant, duration, start.all_day, uid=uid))
    return occurrences


def _expand_single(
    event: Component,
    ctx: _ExpansionContext,
    uid: Optional[str] = None,
    recurrence_id: Optional[datetime] = None,
) -> list[ExpandedEvent]:
    details = _event_details(event)
    start = _dtstart(event)
    start_utc = resolve_instant(start, ctx.resolver)
    duration = event_duration(event, start, start_utc, ctx.resolver)
    if not _overlaps(start_utc, start_utc + duration, ctx.range_start, ctx.range_end):
        return []
    return [
        _build_event(
            details, start_utc, duration, start.all_day, uid=uid, recurrence_id=recurrence_id
        )
    ]


def _is_recurring(event: Component) -> bool:
    return event.find_property("RRULE") is not None or event.find_property("RDATE") is not None


def _expand_group(uid: str, group: list[Component], ctx: _ExpansionContext) -> list[ExpandedEvent]:
    master = next(
        (e for e in group if _is_recurring(e) and e.find_property("RECURRENCE-ID") is None), None
    )
    overrides = [e for e in group if e.find_property("RECURRENCE-ID") is not None]
    singles = [e for e in group if e is not master and e.find_property("RECURRENCE-ID") is None]

    master_tzid = None
    if master is not None:
        dtstart_prop = master.find_property("DTSTART")
        master_tzid = dtstart_prop.params.get("TZID") if dtstart_prop is not None else None

    expanded: list[ExpandedEvent] = []
    excluded: set[int] = set()
    pending_overrides: list[tuple[Component, datetime]] = []
    for override in overrides:
        try:
            recurrence_id = resolve_instant(
                parse_ics_datetime(override.find_property("RECURRENCE-ID")),
                ctx.resolver,
                master_tzid,
            )
        except IcsError as e:
            ctx.skip(uid, f"override with unusable RECURRENCE-ID: {e.message}")
            continue
        excluded.add(epoch_millis(recurrence_id))
        status = (override.get_value("STATUS") or "").strip().upper()
        if status == "CANCELLED":
            logger.debug("Instance %s of %s cancelled", format_utc(recurrence_id), uid)
            continue
        pending_overrides.append((override, recurrence_id))

    if master is not None:
        try:
            expanded.extend(_expand_series(master, ctx, excluded))
        except IcsError as e:
            ctx.skip(uid, e.message)

    for override, recurrence_id in pending_overrides:
        try:
            expanded.extend(
                _expand_single(
                    override,
                    ctx,
                    uid=f"{uid}_{epoch_millis(recurrence_id)}",
                    recurrence_id=recurrence_id,
                )
            )
        except IcsError as e:
            ctx.skip(uid, e.message)

    for single in singles:
        try:
            expanded.extend(_expand_single(single, ctx))
        except IcsError as e:
            ctx.skip(uid, e.message)

    return expanded


def _group_by_uid(events: list[Component]) -> dict[str, list[Component]]:
    groups: dict[str, list[Component]] = {}
    for event in events:
        groups.setdefault(event_uid(event), []).append(event)
    return groups


def expand_calendar_report(
    events: list[Component],
    resolver: TimeZoneResolver,
    range_start: datetime,
    range_end: datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> CalendarExpansion:
    """Expand VEVENTs into occurrences overlapping ``[range_start, range_end]``.

    A VEVENT that cannot be used (missing DTSTART, unresolvable TZID, ...)
    is reported in ``skipped`` and the rest of the calendar is still
    expanded.

    Args:
        events: VEVENT components
        resolver: Timezone resolver for the calendar
        range_start: Aware inclusive range start
        range_end: Aware inclusive range end
        max_occurrences: Cap on generated occurrences per VEVENT

    Returns:
        Occurrences sorted by start, plus the skip reasons
    """
    ctx = _ExpansionContext(
        resolver=resolver,
        range_start=range_start.astimezone(UTC),
        range_end=range_end.astimezone(UTC),
        max_occurrences=max_occurrences,
        skipped=[],
    )

    expanded: list[ExpandedEvent] = []
    for uid, group in _group_by_uid(events).items():
        expanded.extend(_expand_group(uid, group, ctx))

    expanded.sort(key=lambda e: (e.start, e.uid))
    if ctx.skipped:
        logger.info("Expansion skipped %d event(s) or rule(s)", len(ctx.skipped))
    return CalendarExpansion(events=expanded, skipped=ctx.skipped)


def expand_calendar(
    events: list[Component],
    resolver: TimeZoneResolver,
    range_start: datetime,
    range_end: datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[ExpandedEvent]:
    """Like :func:`expand_calendar_report` but returns only the occurrences."""
    return expand_calendar_report(
        events, resolver, range_start, range_end, max_occurrences=max_occurrences
    ).events


def parse_unexpanded_event(event: Component, resolver: TimeZoneResolver) -> UnexpandedEvent:
    """Describe one VEVENT definition without generating its occurrences.

    Raises:
        MissingDtstartError: If the event has no DTSTART
        IcsError: If dates, timezone or RRULE cannot be resolved
    """
    details = _event_details(event)
    start = _dtstart(event)
    start_utc = resolve_instant(start, resolver)
    duration = event_duration(event, start, start_utc, resolver)

    rrule_value = event.get_value("RRULE")
    if rrule_value:
        parse_rrule_string(rrule_value)

    recurrence_id = None
    recurrence_prop = event.find_property("RECURRENCE-ID")
    if recurrence_prop is not None:
        recurrence_id = format_utc(
            resolve_instant(parse_ics_datetime(recurrence_prop), resolver, start.tzid)
        )

    return UnexpandedEvent(
        **details,
        start=format_utc(start_utc),
        end=format_utc(start_utc + duration),
        all_day=start.all_day,
        recurrence_id=recurrence_id,
        rrule=rrule_value,
        rdates=[format_utc(d) for d in _date_list(event, "RDATE", resolver, start.tzid)],
        exdates=[format_utc(d) for d in _date_list(event, "EXDATE", resolver, start.tzid)],
    )

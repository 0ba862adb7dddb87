"""VTIMEZONE processing and TZID/instant to UTC offset resolution."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional

from ..core.timezone_utils import UTC, is_utc_alias, load_zone
from ..exceptions import IcsError, InvalidObservanceError, TimezoneNotFoundError
from .models import Component, ComponentKind, TimeZoneData, TimeZoneObservance
from .property_parsers import RecurrenceRule, parse_date_value, parse_offset, parse_rrule_string
from .rrule_expander import latest_occurrence_before

logger = logging.getLogger(__name__)

_OBSERVANCE_KINDS = (ComponentKind.STANDARD.value, ComponentKind.DAYLIGHT.value)


def process_vtimezone(component: Component) -> Optional[tuple[str, TimeZoneData]]:
    """Collect the observance rules of one VTIMEZONE.

    Observances missing DTSTART, TZOFFSETFROM or TZOFFSETTO, or carrying an
    unparseable offset, are skipped.

    Args:
        component: VTIMEZONE component

    Returns:
        (tzid, data), or None if there is no TZID or no usable observance
    """
    tzid = component.get_value("TZID")
    if not tzid:
        logger.debug("VTIMEZONE without TZID ignored")
        return None
    tzid = tzid.strip()

    observances = []
    for child in component.children:
        if child.kind not in _OBSERVANCE_KINDS:
            continue
        dtstart = child.get_value("DTSTART")
        offset_to = child.get_value("TZOFFSETTO")
        offset_from = child.get_value("TZOFFSETFROM")
        if not dtstart or not offset_to or not offset_from:
            logger.debug("Incomplete %s observance in %s skipped", child.kind, tzid)
            continue
        try:
            observance = TimeZoneObservance(
                kind=child.kind,
                dtstart=dtstart.strip(),
                offset_from=parse_offset(offset_from),
                offset_to=parse_offset(offset_to),
                rrule=child.get_value("RRULE"),
                rdates=tuple(
                    value.strip()
                    for prop in child.find_properties("RDATE")
                    for value in prop.value.split(",")
                    if value.strip()
                ),
                name=child.get_value("TZNAME"),
            )
        except IcsError as e:
            logger.warning("Invalid %s observance in %s skipped: %s", child.kind, tzid, e)
            continue
        observances.append(observance)

    if not observances:
        logger.warning("VTIMEZONE %s has no usable STANDARD/DAYLIGHT rules", tzid)
        return None

    return tzid, TimeZoneData(observances=tuple(observances), url=component.get_value("TZURL"))


def build_time_zone_data(timezones: list[Component]) -> dict[str, TimeZoneData]:
    """Map TZID to its rules for every usable VTIMEZONE. Later duplicates win."""
    tz_data: dict[str, TimeZoneData] = {}
    for component in timezones:
        processed = process_vtimezone(component)
        if processed is not None:
            tzid, data = processed
            tz_data[tzid] = data
    return tz_data


@dataclass(frozen=True)
class _CompiledObservance:
    """An observance with its dates and rule parsed, all in its TZOFFSETFROM frame."""

    start: datetime
    offset_from: int
    offset_to: int
    rule: Optional[RecurrenceRule]
    until: Optional[datetime]
    rdates: tuple[datetime, ...]
    raw_dtstart: str

    @classmethod
    def compile(cls, observance: TimeZoneObservance) -> "_CompiledObservance":
        rule = parse_rrule_string(observance.rrule) if observance.rrule else None
        until = None
        if rule is not None and rule.until is not None:
            until = rule.until.value
            if rule.until.is_utc:
                until += timedelta(minutes=observance.offset_from)
        return cls(
            start=parse_date_value(observance.dtstart).value,
            offset_from=observance.offset_from,
            offset_to=observance.offset_to,
            rule=rule,
            until=until,
            rdates=tuple(parse_date_value(raw).value for raw in observance.rdates),
            raw_dtstart=observance.dtstart,
        )

    def latest_transition(self, local: datetime) -> Optional[datetime]:
        """Latest onset of this observance not after ``local`` (same frame), or None."""
        if self.start > local:
            latest = None
        else:
            latest = self.start
        for rdate in self.rdates:
            if rdate <= local and (latest is None or rdate > latest):
                latest = rdate
        if self.rule is not None and self.start <= local:
            occurrence = latest_occurrence_before(
                self.rule, self._anchor_for(local), local, self.until
            )
            if occurrence is not None and (latest is None or occurrence > latest):
                latest = occurrence
        return latest

    def _anchor_for(self, local: datetime) -> datetime:
        """Series start moved two years before ``local`` when that cannot change the result.

        Only plain yearly rules qualify; the onset for each year is still
        computed from the rule itself.
        """
        rule = self.rule
        if (
            rule is None
            or rule.freq != "YEARLY"
            or rule.interval != 1
            or rule.count is not None
            or local.year - 2 <= self.start.year
        ):
            return self.start
        try:
            return self.start.replace(year=local.year - 2)
        except ValueError:
            # Feb 29 start
            return self.start


def _as_utc_naive(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(UTC).replace(tzinfo=None)


class TimeZoneResolver:
    """Resolve ``(tzid, instant)`` to a UTC offset in minutes east of UTC.

    TZIDs defined by a VTIMEZONE use its observance rules. Other TZIDs fall
    back to UTC aliases, Windows zone names and the IANA database; anything
    else raises :class:`TimezoneNotFoundError`. The resolver holds no mutable
    state once constructed.
    """

    def __init__(self, tz_data: Mapping[str, TimeZoneData]) -> None:
        compiled: dict[str, tuple[_CompiledObservance, ...]] = {}
        for tzid, data in tz_data.items():
            observances = []
            for observance in data.observances:
                try:
                    observances.append(_CompiledObservance.compile(observance))
                except IcsError as e:
                    logger.warning("Ignoring unusable %s rule of %s: %s", observance.kind, tzid, e)
            compiled[tzid] = tuple(observances)
        self._zones = compiled

    def __call__(self, tzid: str, instant: datetime) -> int:
        return self.offset_at(tzid, instant)

    def offset_at(self, tzid: str, instant: datetime) -> int:
        """UTC offset in minutes for ``tzid`` at ``instant``.

        Args:
            tzid: TZID parameter value
            instant: Aware datetime, or naive datetime taken as UTC

        Returns:
            Offset in minutes east of UTC

        Raises:
            TimezoneNotFoundError: If the TZID cannot be resolved
            InvalidObservanceError: If its VTIMEZONE has no usable rules
        """
        utc = _as_utc_naive(instant)
        observances = self._zones.get(tzid)
        if observances is not None:
            return self._vtimezone_offset(tzid, observances, utc)
        if is_utc_alias(tzid):
            return 0
        zone = load_zone(tzid)
        if zone is None:
            raise TimezoneNotFoundError(tzid)
        offset = utc.replace(tzinfo=UTC).astimezone(zone).utcoffset()
        return int(offset.total_seconds() // 60) if offset is not None else 0

    def to_utc(self, tzid: str, local: datetime) -> datetime:
        """Convert a naive wall-clock time in ``tzid`` to an aware UTC datetime.

        Ambiguous (repeated) times resolve to the earlier instant. Times
        inside a gap use the offset in effect before the gap.
        """
        local = local.replace(tzinfo=None)
        observances = self._zones.get(tzid)
        if observances is not None:
            if not observances:
                raise InvalidObservanceError(f"Timezone {tzid!r} has no usable observances")
            candidates = sorted(
                {o.offset_to for o in observances} | {o.offset_from for o in observances},
                reverse=True,
            )
            for offset in candidates:
                utc = local - timedelta(minutes=offset)
                if self._vtimezone_offset(tzid, observances, utc) == offset:
                    return utc.replace(tzinfo=UTC)
            before_gap = self._vtimezone_offset(
                tzid, observances, local - timedelta(minutes=candidates[0])
            )
            return (local - timedelta(minutes=before_gap)).replace(tzinfo=UTC)

        if is_utc_alias(tzid):
            return local.replace(tzinfo=UTC)
        zone = load_zone(tzid)
        if zone is None:
            raise TimezoneNotFoundError(tzid)
        return local.replace(tzinfo=zone, fold=0).astimezone(UTC)

    def to_local(self, tzid: str, instant: datetime) -> datetime:
        """Convert an instant to the naive wall-clock time in ``tzid``."""
        utc = _as_utc_naive(instant)
        return utc + timedelta(minutes=self.offset_at(tzid, utc))

    @staticmethod
    def _vtimezone_offset(
        tzid: str, observances: tuple[_CompiledObservance, ...], utc: datetime
    ) -> int:
        if not observances:
            raise InvalidObservanceError(f"Timezone {tzid!r} has no usable observances")

        latest_utc: Optional[datetime] = None
        offset: Optional[int] = None
        for observance in observances:
            transition = observance.latest_transition(
                utc + timedelta(minutes=observance.offset_from)
            )
            if transition is None:
                continue
            transition_utc = transition - timedelta(minutes=observance.offset_from)
            if latest_utc is None or transition_utc > latest_utc:
                latest_utc = transition_utc
                offset = observance.offset_to

        if offset is not None:
            return offset
        earliest = min(observances, key=lambda o: o.raw_dtstart)
        return earliest.offset_from


def create_time_zone_resolver(tz_data: Mapping[str, TimeZoneData]) -> TimeZoneResolver:
    """Build a resolver over ``tz_data``."""
    return TimeZoneResolver(tz_data)

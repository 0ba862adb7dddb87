"""Parsers for individual ICS property values (dates, offsets, durations, RRULEs, text)."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..exceptions import InvalidDateTimeError, InvalidOffsetError, InvalidRRuleError
from .models import CalAddress, Property

FREQUENCIES = ("YEARLY", "MONTHLY", "WEEKLY", "DAILY", "HOURLY", "MINUTELY", "SECONDLY")
WEEKDAYS = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

_OFFSET_RE = re.compile(r"^([+-])(\d{2})(\d{2})(\d{2})?$")
_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_DATETIME_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})(Z?)$")
_DURATION_RE = re.compile(
    r"^([+-])?P(?:(\d+)W)?(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$"
)
_BYDAY_RE = re.compile(r"^([+-]?\d{1,2})?(SU|MO|TU|WE|TH|FR|SA)$")


@dataclass(frozen=True)
class IcsDateTime:
    """A DATE or DATE-TIME value before timezone resolution.

    ``value`` is always naive: wall-clock time in ``tzid`` when one is given,
    UTC when ``is_utc`` is set, floating otherwise.
    """

    value: datetime
    tzid: Optional[str] = None
    is_utc: bool = False
    all_day: bool = False


@dataclass(frozen=True)
class WeekdayRule:
    """One BYDAY entry such as ``MO`` or ``-1SU``."""

    weekday: str
    n: Optional[int] = None


@dataclass(frozen=True)
class RecurrenceRule:
    """Structured RRULE value."""

    freq: str
    interval: int = 1
    count: Optional[int] = None
    until: Optional[IcsDateTime] = None
    wkst: Optional[str] = None
    byday: tuple[WeekdayRule, ...] = ()
    bymonth: tuple[int, ...] = ()
    bymonthday: tuple[int, ...] = ()
    byyearday: tuple[int, ...] = ()
    byweekno: tuple[int, ...] = ()
    byhour: tuple[int, ...] = ()
    byminute: tuple[int, ...] = ()
    bysecond: tuple[int, ...] = ()
    bysetpos: tuple[int, ...] = ()
    extra: dict[str, str] = field(default_factory=dict, compare=False)


def parse_offset(value: str) -> int:
    """Parse a UTC offset such as ``+0130`` or ``-0500`` into minutes east of UTC.

    Raises:
        InvalidOffsetError: If the value is not ``(+|-)HHMM[SS]``
    """
    match = _OFFSET_RE.match(value.strip())
    if not match:
        raise InvalidOffsetError(value)
    sign, hours, minutes, _seconds = match.groups()
    total = int(hours) * 60 + int(minutes)
    return -total if sign == "-" else total


def parse_date_value(value: str, params: Optional[dict[str, str]] = None) -> IcsDateTime:
    """Parse a raw DATE or DATE-TIME string.

    Args:
        value: Raw value such as ``20250110``, ``20250110T090000`` or ``20250110T090000Z``
        params: Property parameters (``TZID``, ``VALUE``)

    Returns:
        Parsed value

    Raises:
        InvalidDateTimeError: If the value is not a valid date or date-time
    """
    params = params or {}
    raw = value.strip()
    tzid = params.get("TZID") or None
    try:
        date_match = _DATE_RE.match(raw)
        if date_match:
            year, month, day = (int(part) for part in date_match.groups())
            return IcsDateTime(datetime(year, month, day), tzid=tzid, all_day=True)

        dt_match = _DATETIME_RE.match(raw)
        if dt_match:
            parts = [int(part) for part in dt_match.groups()[:6]]
            # Leap seconds are clamped rather than rejected
            parts[5] = min(parts[5], 59)
            is_utc = dt_match.group(7) == "Z"
            return IcsDateTime(
                datetime(*parts),
                tzid=None if is_utc else tzid,
                is_utc=is_utc,
                all_day=params.get("VALUE", "").upper() == "DATE",
            )
    except ValueError as e:
        raise InvalidDateTimeError(value) from e
    raise InvalidDateTimeError(value)


def parse_ics_datetime(prop: Property) -> IcsDateTime:
    """Parse a DTSTART/DTEND/RECURRENCE-ID style property."""
    return parse_date_value(prop.value, prop.params)


def parse_datetime_list(prop: Property) -> list[IcsDateTime]:
    """Parse a comma-separated EXDATE/RDATE property.

    PERIOD values (``start/end`` or ``start/duration``) contribute their start.
    """
    values = []
    for item in prop.value.split(","):
        item = item.strip()
        if not item:
            continue
        start, _, _ = item.partition("/")
        values.append(parse_date_value(start, prop.params))
    return values


def parse_duration(value: str) -> timedelta:
    """Parse an RFC 5545 duration such as ``PT1H30M``, ``P1D`` or ``-P2W``.

    Raises:
        InvalidDateTimeError: If the value is not a valid duration
    """
    match = _DURATION_RE.match(value.strip().upper())
    if not match or value.strip().upper().rstrip("T").endswith("P"):
        raise InvalidDateTimeError(value)
    sign, weeks, days, hours, minutes, seconds = match.groups()
    delta = timedelta(
        weeks=int(weeks or 0),
        days=int(days or 0),
        hours=int(hours or 0),
        minutes=int(minutes or 0),
        seconds=int(seconds or 0),
    )
    return -delta if sign == "-" else delta


def _int_list(key: str, value: str, valid: "range | tuple[range, ...]") -> tuple[int, ...]:
    ranges = valid if isinstance(valid, tuple) else (valid,)
    numbers = []
    for item in value.split(","):
        try:
            number = int(item)
        except ValueError as e:
            raise InvalidRRuleError(f"RRULE: {key} has a non-integer value {item!r}") from e
        if not any(number in r for r in ranges):
            raise InvalidRRuleError(f"RRULE: {key} value {number} is out of range")
        numbers.append(number)
    return tuple(numbers)


def _signed(low: int, high: int) -> tuple[range, range]:
    return range(low, high + 1), range(-high, -low + 1)


def _parse_byday(value: str) -> tuple[WeekdayRule, ...]:
    rules = []
    for item in value.split(","):
        match = _BYDAY_RE.match(item.strip().upper())
        if not match:
            raise InvalidRRuleError(f"RRULE: invalid BYDAY value {item!r}")
        n = int(match.group(1)) if match.group(1) else None
        if n is not None and (n == 0 or abs(n) > 53):
            raise InvalidRRuleError(f"RRULE: invalid BYDAY ordinal {item!r}")
        rules.append(WeekdayRule(weekday=match.group(2), n=n))
    return tuple(rules)


def parse_rrule_string(value: str) -> RecurrenceRule:
    """Parse and validate a raw RRULE value.

    Unknown parts are kept in ``extra`` and otherwise ignored.

    Args:
        value: RRULE value, e.g. ``FREQ=WEEKLY;COUNT=3;BYDAY=MO``

    Returns:
        Structured rule

    Raises:
        InvalidRRuleError: If FREQ is missing, any part is malformed or COUNT
            and UNTIL are both set
    """
    options: dict = {}
    extra: dict[str, str] = {}
    for part in value.strip().split(";"):
        key, sep, part_value = part.partition("=")
        key = key.strip().upper()
        part_value = part_value.strip()
        if not sep or not key:
            continue
        if key == "FREQ":
            freq = part_value.upper()
            if freq not in FREQUENCIES:
                raise InvalidRRuleError(f"RRULE: invalid FREQ value {part_value!r}")
            options["freq"] = freq
        elif key in ("INTERVAL", "COUNT"):
            try:
                number = int(part_value)
            except ValueError as e:
                raise InvalidRRuleError(f"RRULE: {key} must be an integer") from e
            if number <= 0:
                raise InvalidRRuleError(f"RRULE: {key} must be a positive integer")
            options[key.lower()] = number
        elif key == "UNTIL":
            try:
                options["until"] = parse_date_value(part_value)
            except InvalidDateTimeError as e:
                raise InvalidRRuleError(f"RRULE: invalid UNTIL value {part_value!r}") from e
        elif key == "WKST":
            if part_value.upper() not in WEEKDAYS:
                raise InvalidRRuleError("RRULE: WKST must be one of MO,TU,WE,TH,FR,SA,SU")
            options["wkst"] = part_value.upper()
        elif key == "BYDAY":
            options["byday"] = _parse_byday(part_value)
        elif key == "BYMONTH":
            options["bymonth"] = _int_list(key, part_value, range(1, 13))
        elif key == "BYMONTHDAY":
            options["bymonthday"] = _int_list(key, part_value, _signed(1, 31))
        elif key == "BYYEARDAY":
            options["byyearday"] = _int_list(key, part_value, _signed(1, 366))
        elif key == "BYWEEKNO":
            options["byweekno"] = _int_list(key, part_value, _signed(1, 53))
        elif key == "BYHOUR":
            options["byhour"] = _int_list(key, part_value, range(0, 24))
        elif key == "BYMINUTE":
            options["byminute"] = _int_list(key, part_value, range(0, 60))
        elif key == "BYSECOND":
            options["bysecond"] = _int_list(key, part_value, range(0, 61))
        elif key == "BYSETPOS":
            options["bysetpos"] = _int_list(key, part_value, _signed(1, 366))
        else:
            extra[key] = part_value

    if "freq" not in options:
        raise InvalidRRuleError("RRULE: FREQ is required")
    if "count" in options and "until" in options:
        raise InvalidRRuleError("RRULE: COUNT and UNTIL must not both be set")
    return RecurrenceRule(extra=extra, **options)


_ESCAPES = {"n": "\n", "N": "\n", ",": ",", ";": ";", "\\": "\\"}


def unescape_text(value: str) -> str:
    """Undo RFC 5545 TEXT escaping (``\\n``, ``\\,``, ``\\;``, ``\\\\``)."""
    if "\\" not in value:
        return value
    out = []
    chars = iter(value)
    for char in chars:
        if char == "\\":
            following = next(chars, "")
            out.append(_ESCAPES.get(following, following))
        else:
            out.append(char)
    return "".join(out)


def parse_integer(prop: Optional[Property]) -> Optional[int]:
    if prop is None or not prop.value:
        return None
    try:
        return int(prop.value.strip())
    except ValueError:
        return None


def parse_categories(props: list[Property]) -> list[str]:
    """Flatten one or more CATEGORIES properties into a list of names."""
    categories = []
    for prop in props:
        for raw in re.split(r"(?<!\\),", prop.value):
            name = unescape_text(raw).strip()
            if name:
                categories.append(name)
    return categories


def parse_cal_address(prop: Optional[Property]) -> Optional[CalAddress]:
    """Parse an ORGANIZER or ATTENDEE property."""
    if prop is None or not prop.value:
        return None
    email = re.sub(r"^mailto:", "", prop.value.strip(), flags=re.IGNORECASE)
    return CalAddress(
        email=email,
        common_name=prop.params.get("CN"),
        partstat=prop.params.get("PARTSTAT"),
        role=prop.params.get("ROLE"),
    )

"""RRULE expansion on top of dateutil.rrule.

All datetimes handled here are naive and share one frame: the wall clock of
the event (or observance) the rule belongs to. Callers convert the results.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from dateutil import rrule as du_rrule

from ..exceptions import InvalidRRuleError
from .property_parsers import RecurrenceRule

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 1000

# Upper bound on rrule steps taken for one expansion, in or before the window
MAX_SCANNED_CANDIDATES = 100_000

_FREQ_MAP = {
    "YEARLY": du_rrule.YEARLY,
    "MONTHLY": du_rrule.MONTHLY,
    "WEEKLY": du_rrule.WEEKLY,
    "DAILY": du_rrule.DAILY,
    "HOURLY": du_rrule.HOURLY,
    "MINUTELY": du_rrule.MINUTELY,
    "SECONDLY": du_rrule.SECONDLY,
}

_WEEKDAY_MAP = {
    "MO": du_rrule.MO,
    "TU": du_rrule.TU,
    "WE": du_rrule.WE,
    "TH": du_rrule.TH,
    "FR": du_rrule.FR,
    "SA": du_rrule.SA,
    "SU": du_rrule.SU,
}

_FIXED_PERIODS = {
    "WEEKLY": timedelta(weeks=1),
    "DAILY": timedelta(days=1),
    "HOURLY": timedelta(hours=1),
    "MINUTELY": timedelta(minutes=1),
    "SECONDLY": timedelta(seconds=1),
}


@dataclass
class ExpansionResult:
    """Occurrences found for one rule plus whether the cap cut the list short."""

    occurrences: list[datetime]
    truncated: bool = False


def build_rrule(
    rule: RecurrenceRule, dtstart: datetime, until: Optional[datetime] = None
) -> du_rrule.rrule:
    """Map a RecurrenceRule onto a dateutil rrule.

    Args:
        rule: Parsed RRULE
        dtstart: Naive series start
        until: Naive UNTIL in the same frame as ``dtstart``; ignored when the
            rule has a COUNT

    Returns:
        dateutil rrule iterator

    Raises:
        InvalidRRuleError: If dateutil rejects the combination of parts
    """
    kwargs: dict[str, Any] = {"dtstart": dtstart, "interval": rule.interval}
    if rule.count is not None:
        kwargs["count"] = rule.count
    elif until is not None:
        kwargs["until"] = until
    if rule.wkst:
        kwargs["wkst"] = _WEEKDAY_MAP[rule.wkst]
    if rule.byday:
        kwargs["byweekday"] = [
            _WEEKDAY_MAP[day.weekday](day.n) if day.n else _WEEKDAY_MAP[day.weekday]
            for day in rule.byday
        ]
    for name in (
        "bymonth",
        "bymonthday",
        "byyearday",
        "byweekno",
        "byhour",
        "byminute",
        "bysecond",
        "bysetpos",
    ):
        values = getattr(rule, name)
        if values:
            kwargs[name] = list(values)

    try:
        return du_rrule.rrule(_FREQ_MAP[rule.freq], **kwargs)
    except (ValueError, TypeError) as e:
        raise InvalidRRuleError(f"RRULE rejected: {e}") from e


def anchor_near(rule: RecurrenceRule, dtstart: datetime, window_start: datetime) -> datetime:
    """Move the series start forward to just before ``window_start``.

    Only rules without COUNT and with a fixed-length period (WEEKLY and
    shorter) are moved, and only by whole multiples of ``INTERVAL`` periods,
    so weekday, time of day and interval phase stay the same and dateutil
    generates the same occurrences from the window onwards.
    """
    unit = _FIXED_PERIODS.get(rule.freq)
    if unit is None or rule.count is not None or dtstart >= window_start:
        return dtstart
    step = unit * rule.interval
    # One spare period so the first occurrence of the window's period is kept
    periods = (window_start - dtstart) // step - 1
    if periods <= 0:
        return dtstart
    return dtstart + step * periods


def expand_rrule(
    rule: RecurrenceRule,
    dtstart: datetime,
    window_start: datetime,
    window_end: datetime,
    until: Optional[datetime] = None,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
    accept: Optional[Callable[[datetime], bool]] = None,
) -> ExpansionResult:
    """Generate the occurrences of ``rule`` that fall inside a window.

    Args:
        rule: Parsed RRULE
        dtstart: Naive series start (always the first occurrence)
        window_start: Inclusive lower bound, same frame as ``dtstart``
        window_end: Inclusive upper bound, same frame as ``dtstart``
        until: Naive UNTIL bound in the same frame
        max_occurrences: Cap on the number of occurrences returned
        accept: Optional finer filter; only occurrences it accepts are
            returned and counted against ``max_occurrences``

    Returns:
        ExpansionResult with occurrences in ascending order

    Raises:
        InvalidRRuleError: If the rule cannot be evaluated
    """
    rr = build_rrule(rule, anchor_near(rule, dtstart, window_start), until)
    occurrences: list[datetime] = []
    truncated = False
    scanned = 0
    try:
        for occurrence in rr:
            if occurrence > window_end:
                break
            if until is not None and occurrence > until:
                break
            scanned += 1
            if scanned > MAX_SCANNED_CANDIDATES:
                logger.warning(
                    "RRULE %s starting %s needs more than %d steps to reach the window; "
                    "expansion stopped",
                    rule.freq,
                    dtstart.isoformat(),
                    MAX_SCANNED_CANDIDATES,
                )
                truncated = True
                break
            if occurrence < window_start:
                continue
            if accept is not None and not accept(occurrence):
                continue
            if len(occurrences) >= max_occurrences:
                logger.warning(
                    "RRULE %s starting %s hit the limit of %d occurrences; later ones dropped",
                    rule.freq,
                    dtstart.isoformat(),
                    max_occurrences,
                )
                truncated = True
                break
            occurrences.append(occurrence)
    except ValueError as e:
        raise InvalidRRuleError(f"RRULE could not be evaluated: {e}") from e

    return ExpansionResult(occurrences=occurrences, truncated=truncated)


def latest_occurrence_before(
    rule: RecurrenceRule, dtstart: datetime, instant: datetime, until: Optional[datetime] = None
) -> Optional[datetime]:
    """Return the last occurrence of ``rule`` not after ``instant``, or None."""
    rr = build_rrule(rule, dtstart, until)
    try:
        return rr.before(instant, inc=True)
    except ValueError as e:
        raise InvalidRRuleError(f"RRULE could not be evaluated: {e}") from e

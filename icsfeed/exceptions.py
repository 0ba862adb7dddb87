"""Exception hierarchy for icsfeed."""

from typing import Optional


class IcsError(Exception):
    """Base exception for errors raised while fetching, parsing or expanding ICS data."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CalendarNotFoundError(IcsError):
    """The ICS text has no top-level VCALENDAR component."""

    def __init__(self, message: str = "No VCALENDAR component found") -> None:
        super().__init__(message)


class MissingDtstartError(IcsError):
    """A VEVENT has no DTSTART property."""

    def __init__(self, uid: Optional[str] = None) -> None:
        super().__init__(f"Event {uid or '<no uid>'} has no DTSTART")
        self.uid = uid


class InvalidDateTimeError(IcsError):
    """A DATE or DATE-TIME value could not be parsed."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid date-time value: {value!r}")
        self.value = value


class InvalidOffsetError(IcsError):
    """A UTC offset value (TZOFFSETFROM/TZOFFSETTO) could not be parsed."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid UTC offset: {value!r}")
        self.value = value


class InvalidRRuleError(IcsError):
    """An RRULE value is malformed or uses values outside the allowed ranges."""


class TimezoneNotFoundError(IcsError):
    """A TZID is neither defined by a VTIMEZONE nor a known zone name."""

    def __init__(self, tzid: str) -> None:
        super().__init__(f"Unknown timezone: {tzid!r}")
        self.tzid = tzid


class InvalidObservanceError(IcsError):
    """Timezone data has no usable STANDARD/DAYLIGHT observance."""


class CacheError(IcsError):
    """A cache file is missing, unreadable or corrupt."""


class FetchError(IcsError):
    """Base exception for ICS fetch errors."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchAuthError(FetchError):
    """Authentication error during ICS fetch."""


class FetchNetworkError(FetchError):
    """Network error during ICS fetch."""


class FetchTimeoutError(FetchError):
    """Timeout error during ICS fetch."""


class ConfigurationError(Exception):
    """Startup configuration is missing or invalid."""

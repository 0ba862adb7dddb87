"""Data models for parsed and expanded ICS calendar data."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ComponentKind(str, Enum):
    """Component kinds the pipeline looks at. Other BEGIN types are kept as plain strings."""

    VCALENDAR = "VCALENDAR"
    VEVENT = "VEVENT"
    VTIMEZONE = "VTIMEZONE"
    STANDARD = "STANDARD"
    DAYLIGHT = "DAYLIGHT"


class Property(BaseModel):
    """One ICS content line: ``NAME;PARAM=VALUE:value``."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    params: dict[str, str] = Field(default_factory=dict)


class Component(BaseModel):
    """One BEGIN/END block with its properties and nested components."""

    model_config = ConfigDict(frozen=True)

    kind: str
    properties: tuple[Property, ...] = ()
    children: tuple["Component", ...] = ()

    def find_property(self, name: str) -> Optional[Property]:
        """Return the first property called ``name`` or None."""
        name = name.upper()
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def find_properties(self, name: str) -> list[Property]:
        name = name.upper()
        return [prop for prop in self.properties if prop.name == name]

    def get_value(self, name: str) -> Optional[str]:
        prop = self.find_property(name)
        return prop.value if prop is not None else None

    def children_of_kind(self, kind: str) -> list["Component"]:
        return [child for child in self.children if child.kind == kind]

    def with_property(self, prop: Property) -> "Component":
        """Return a copy of this component with ``prop`` appended.

        Args:
            prop: Property to add

        Returns:
            New component; ``self`` is left untouched
        """
        return self.model_copy(update={"properties": (*self.properties, prop)})


Component.model_rebuild()


class ParsedIcs(BaseModel):
    """Top-level VEVENT and VTIMEZONE blocks of one VCALENDAR."""

    events: list[Component] = Field(default_factory=list)
    timezones: list[Component] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list, description="Non-fatal parse diagnostics")


class ObservanceKind(str, Enum):
    STANDARD = "STANDARD"
    DAYLIGHT = "DAYLIGHT"


class TimeZoneObservance(BaseModel):
    """One STANDARD or DAYLIGHT rule of a VTIMEZONE.

    Offsets are minutes east of UTC. ``dtstart`` and ``rdates`` keep the raw
    local ``YYYYMMDDTHHMMSS`` values, ``rrule`` the raw RRULE value.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    kind: ObservanceKind
    dtstart: str
    offset_from: int
    offset_to: int
    rrule: Optional[str] = None
    rdates: tuple[str, ...] = ()
    name: Optional[str] = None

    @property
    def is_daylight(self) -> bool:
        return self.kind == ObservanceKind.DAYLIGHT.value


class TimeZoneData(BaseModel):
    """Offset-transition rules for one TZID."""

    model_config = ConfigDict(frozen=True)

    observances: tuple[TimeZoneObservance, ...]
    url: Optional[str] = None


class PreparedIcs(BaseModel):
    """Parse result of one or more merged calendar sources."""

    events: list[Component] = Field(default_factory=list)
    tz_data: dict[str, TimeZoneData] = Field(default_factory=dict)


class CalAddress(BaseModel):
    """Organizer or attendee address."""

    email: str
    common_name: Optional[str] = None
    partstat: Optional[str] = None
    role: Optional[str] = None


class ExpandedEvent(BaseModel):
    """One concrete occurrence. ``start``/``end`` are ``YYYY-MM-DDTHH:MM:SSZ`` strings."""

    uid: str
    summary: str = ""
    start: str
    end: Optional[str] = None
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    url: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    organizer: Optional[CalAddress] = None
    attendees: list[CalAddress] = Field(default_factory=list)
    recurrence_id: Optional[str] = None
    source: Optional[str] = None


class UnexpandedEvent(ExpandedEvent):
    """One record per VEVENT definition, recurrence data left as-is."""

    rrule: Optional[str] = None
    rdates: list[str] = Field(default_factory=list)
    exdates: list[str] = Field(default_factory=list)


class SkippedEvent(BaseModel):
    """A VEVENT (or part of one) that could not be used, with the reason."""

    uid: str
    reason: str


class CalendarExpansion(BaseModel):
    """Expanded occurrences plus the skip reasons collected along the way."""

    events: list[ExpandedEvent] = Field(default_factory=list)
    skipped: list[SkippedEvent] = Field(default_factory=list)

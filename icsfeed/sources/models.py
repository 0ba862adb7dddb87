"""Models for calendar sources and refresh results."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.timezone_utils import now_utc
from ..ics.models import ExpandedEvent, PreparedIcs


class CalendarSource(BaseModel):
    """One configured calendar feed."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Source name, from the CALENDAR_<NAME> variable")
    url: str = Field(..., description="ICS calendar URL")


class SourceOutcome(BaseModel):
    """Result of refreshing one source."""

    source: CalendarSource
    prepared: Optional[PreparedIcs] = None
    error: Optional[str] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.prepared is not None and self.error is None


class RefreshResult(BaseModel):
    """Merged data of all sources plus per-source error strings."""

    prepared: PreparedIcs = Field(default_factory=PreparedIcs)
    errors: list[str] = Field(default_factory=list)
    refreshed_at: datetime = Field(default_factory=now_utc)


class EventsResult(BaseModel):
    """Events for a query window with the errors of the snapshot they came from."""

    events: list[ExpandedEvent] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    total: int = 0

"""icsfeed - fetch, cache and expand ICS calendar feeds.

The parsing pipeline lives in :mod:`icsfeed.ics`; multi-source fetching and
caching in :mod:`icsfeed.sources`.
"""

__version__ = "0.1.0"

from .exceptions import ConfigurationError, IcsError
from .ics import (
    ExpandedEvent,
    PreparedIcs,
    UnexpandedEvent,
    deserialize,
    get_events_between,
    get_unexpanded_events,
    prepare,
    serialize,
)

__all__ = [
    "ConfigurationError",
    "ExpandedEvent",
    "IcsError",
    "PreparedIcs",
    "UnexpandedEvent",
    "__version__",
    "deserialize",
    "get_events_between",
    "get_unexpanded_events",
    "prepare",
    "serialize",
]

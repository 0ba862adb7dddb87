"""Keyword search over unexpanded calendar events."""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from .ics.models import UnexpandedEvent

logger = logging.getLogger(__name__)

SEARCHED_FIELDS = ("summary", "description", "location", "source")


class SearchMatch(BaseModel):
    """An event with the keywords it matched."""

    event: UnexpandedEvent
    matched_keywords: list[str] = Field(default_factory=list)

    @property
    def score(self) -> int:
        return len(self.matched_keywords)


def split_keywords(query: str) -> list[str]:
    """Lower-cased, de-duplicated whitespace-separated keywords of ``query``."""
    keywords: list[str] = []
    for word in query.lower().split():
        if word not in keywords:
            keywords.append(word)
    return keywords


def _haystack(event: UnexpandedEvent) -> str:
    return "\n".join((getattr(event, name) or "").lower() for name in SEARCHED_FIELDS)


def search_events(
    events: list[UnexpandedEvent], query: str, limit: Optional[int] = None
) -> list[SearchMatch]:
    """Events matching at least one keyword, best match first.

    Keywords are matched as case-insensitive substrings of the summary,
    description, location and source name. Results are ordered by the number
    of matched keywords, then by start time.

    Args:
        events: Events to search
        query: Whitespace-separated keywords
        limit: Maximum matches to return (all when None)

    Returns:
        Matching events with the keywords each one matched

    Raises:
        ValueError: If ``query`` has no keywords
    """
    keywords = split_keywords(query)
    if not keywords:
        raise ValueError("Search query must contain at least one keyword")

    matches = []
    for event in events:
        haystack = _haystack(event)
        found = [keyword for keyword in keywords if keyword in haystack]
        if found:
            matches.append(SearchMatch(event=event, matched_keywords=found))

    # start strings are ISO UTC, so they sort chronologically
    matches.sort(key=lambda m: (-m.score, m.event.start))
    logger.debug("Search %r matched %d of %d events", query, len(matches), len(events))
    return matches if limit is None else matches[:limit]

"""Multi-source event store: fetch, prepare, cache and query calendars."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..core.config_manager import Settings
from ..core.refresh import RefreshCoordinator
from ..exceptions import CacheError, IcsError
from ..ics import get_events_between, get_unexpanded_events, prepare
from ..ics.event_expander import SOURCE_PROPERTY
from ..ics.models import Property, PreparedIcs, UnexpandedEvent
from ..search import SearchMatch, search_events
from .cache import PreparedCache
from .fetcher import IcsFetcher, create_http_client
from .models import CalendarSource, EventsResult, RefreshResult, SourceOutcome

logger = logging.getLogger(__name__)


def tag_source(prepared: PreparedIcs, source_name: str) -> PreparedIcs:
    """Copy of ``prepared`` with every event carrying an ``X-MCP-SOURCE`` property."""
    tag = Property(name=SOURCE_PROPERTY, value=source_name)
    return PreparedIcs(
        events=[event.with_property(tag) for event in prepared.events],
        tz_data=dict(prepared.tz_data),
    )


def merge_outcomes(outcomes: list[SourceOutcome]) -> RefreshResult:
    """Merge per-source outcomes in source order.

    Events are concatenated. Timezone entries with the same TZID are taken
    from the later source.
    """
    result = RefreshResult()
    for outcome in outcomes:
        if outcome.prepared is not None:
            result.prepared.events.extend(outcome.prepared.events)
            result.prepared.tz_data.update(outcome.prepared.tz_data)
        if outcome.error:
            result.errors.append(outcome.error)
    return result


class CalendarEventStore:
    """Keeps a merged snapshot of all configured calendars.

    The store owns one HTTP client (unless one is passed in), a file cache
    and a :class:`RefreshCoordinator` so concurrent refresh requests share a
    single round of fetches. Use it as an async context manager or call
    :meth:`aclose` when done.
    """

    def __init__(
        self,
        sources: list[CalendarSource],
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.sources = list(sources)
        self.settings = settings or Settings()
        self._owns_client = client is None
        self._client = client or create_http_client(self.settings.request_timeout)
        self.fetcher = IcsFetcher(self.settings, self._client)
        self.cache = PreparedCache(self.settings.cache_dir)
        self._coordinator: RefreshCoordinator[RefreshResult] = RefreshCoordinator(
            self.refresh_all, name="calendar refresh"
        )

    async def __aenter__(self) -> "CalendarEventStore":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def refresh_source(self, source: CalendarSource) -> SourceOutcome:
        """Fetch and prepare one source, falling back to its cache file.

        Never raises for fetch, parse or cache problems; they are reported
        in the outcome's ``error``.
        """
        try:
            text = await self.fetcher.fetch_ics(source)
            prepared = tag_source(prepare(text), source.name)
        except IcsError as e:
            return await self._fallback_to_cache(source, e)

        try:
            await self.cache.write(source.url, prepared)
        except CacheError as e:
            logger.warning("[%s] Could not update cache: %s", source.name, e)

        logger.info("[%s] Refreshed %d events", source.name, len(prepared.events))
        return SourceOutcome(source=source, prepared=prepared)

    async def _fallback_to_cache(self, source: CalendarSource, cause: IcsError) -> SourceOutcome:
        try:
            cached = await self.cache.read(source.url)
        except CacheError as e:
            error = f"[{source.name}] Fetch failed and cache is unavailable or corrupt."
            logger.error("%s Fetch error: %s; cache error: %s", error, cause, e)
            return SourceOutcome(source=source, error=error)

        error = f"[{source.name}] Fetch failed: {cause.message}. Using cached data."
        logger.warning(error)
        return SourceOutcome(source=source, prepared=cached, error=error, from_cache=True)

    async def refresh_all(self) -> RefreshResult:
        """Refresh every source concurrently and merge the outcomes."""
        if not self.sources:
            logger.error("No sources configured, skipping refresh")
            return RefreshResult()

        results = await asyncio.gather(
            *(self.refresh_source(source) for source in self.sources), return_exceptions=True
        )

        outcomes = []
        for source, outcome in zip(self.sources, results):
            if isinstance(outcome, BaseException):
                logger.exception("[%s] Unexpected refresh failure", source.name, exc_info=outcome)
                outcomes.append(
                    SourceOutcome(source=source, error=f"[{source.name}] Refresh failed: {outcome}")
                )
            else:
                outcomes.append(outcome)

        merged = merge_outcomes(outcomes)
        logger.debug(
            "Refresh complete: %d events from %d sources (%d fresh), %d errors",
            len(merged.prepared.events),
            len(self.sources),
            sum(1 for outcome in outcomes if outcome.ok),
            len(merged.errors),
        )
        return merged

    async def start(self) -> RefreshResult:
        """Run the first refresh; later reads are served from its snapshot."""
        return await self._coordinator.refresh()

    async def refresh(self) -> RefreshResult:
        """Start a refresh, or join the one already running."""
        return await self._coordinator.refresh()

    async def snapshot(self) -> RefreshResult:
        """Latest merged data, waiting only if a refresh is in flight or none has run."""
        return await self._coordinator.get()

    @property
    def is_refreshing(self) -> bool:
        return self._coordinator.is_refreshing

    async def get_events_between(
        self,
        start_iso: str,
        end_iso: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> EventsResult:
        """Expanded occurrences of all sources within ``[start_iso, end_iso]``.

        Args:
            start_iso: Inclusive range start
            end_iso: Inclusive range end
            offset: Number of sorted occurrences to skip
            limit: Maximum occurrences to return (all when None)

        Returns:
            The requested page, the snapshot's errors and the unpaged total

        Raises:
            ValueError: If a bound cannot be parsed, the range is reversed or
                ``offset``/``limit`` is negative
        """
        if offset < 0 or (limit is not None and limit < 0):
            raise ValueError("offset and limit must not be negative")

        snapshot = await self.snapshot()
        events = await asyncio.to_thread(
            get_events_between,
            snapshot.prepared,
            start_iso,
            end_iso,
            max_occurrences=self.settings.max_occurrences,
        )
        end = None if limit is None else offset + limit
        return EventsResult(events=events[offset:end], errors=list(snapshot.errors), total=len(events))

    async def get_unexpanded_events(self) -> list[UnexpandedEvent]:
        snapshot = await self.snapshot()
        return await asyncio.to_thread(get_unexpanded_events, snapshot.prepared)

    async def search(self, query: str, limit: Optional[int] = 50) -> list[SearchMatch]:
        """Keyword search over the unexpanded events of all sources.

        Raises:
            ValueError: If the query has no keywords
        """
        events = await self.get_unexpanded_events()
        return search_events(events, query, limit=limit)

    async def start_refresh_loop(self, stop_event: asyncio.Event) -> None:
        """Background refresher: immediate refresh then periodic refreshes.

        Args:
            stop_event: Event to signal shutdown
        """
        interval = self.settings.refresh_interval_seconds
        logger.debug("Refresh loop starting with interval %d seconds", interval)

        logger.debug("Starting initial refresh")
        try:
            await self.refresh()
            logger.debug("Initial refresh completed")
        except Exception:
            logger.exception("Initial refresh failed")

        while not stop_event.is_set():
            try:
                logger.debug("Sleeping for %d seconds until next refresh", interval)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    pass
                logger.debug("Starting periodic refresh")
                await self.refresh()
                logger.debug("Periodic refresh completed")
            except Exception:
                logger.exception("Refresh loop unexpected error")

    async def aclose(self) -> None:
        """Wait for a pending refresh and close the HTTP client if the store created it."""
        await self._coordinator.aclose()
        if self._owns_client:
            await self._client.aclose()

"""Deduplicating async refresh of a cached value."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RefreshCoordinator(Generic[T]):
    """Holds the last value produced by an async refresh function.

    Concurrent ``refresh()`` calls share one in-flight run. ``get()`` waits
    for an in-flight run, otherwise answers from the last completed value
    (or re-raises the last failure) and only triggers a run when nothing has
    ever been produced.
    """

    def __init__(self, refresh_fn: Callable[[], Awaitable[T]], name: str = "refresh") -> None:
        self._refresh_fn = refresh_fn
        self._name = name
        self._task: Optional[asyncio.Task[T]] = None
        self._value: Optional[T] = None
        self._has_value = False
        self._error: Optional[Exception] = None
        self._closed = False

    @property
    def has_value(self) -> bool:
        return self._has_value

    @property
    def is_refreshing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_error(self) -> Optional[Exception]:
        return self._error

    def peek(self) -> Optional[T]:
        """Last completed value without waiting, or None."""
        return self._value

    async def refresh(self) -> T:
        """Run the refresh function, or join the run already in flight.

        Raises:
            RuntimeError: If the coordinator was closed
            Exception: Whatever the refresh function raised
        """
        if self._closed:
            raise RuntimeError(f"{self._name} coordinator is closed")
        if self._task is None or self._task.done():
            logger.debug("Starting %s", self._name)
            self._task = asyncio.create_task(self._run())
        else:
            logger.debug("Joining in-flight %s", self._name)
        return await asyncio.shield(self._task)

    async def _run(self) -> T:
        try:
            value = await self._refresh_fn()
        except Exception as e:
            self._error = e
            logger.warning("%s failed: %s", self._name, e)
            raise
        self._value = value
        self._has_value = True
        self._error = None
        return value

    async def get(self) -> T:
        """Current value; see the class docstring for when this waits."""
        if self.is_refreshing:
            assert self._task is not None
            return await asyncio.shield(self._task)
        if self._error is not None:
            raise self._error
        if self._has_value:
            return self._value  # type: ignore[return-value]
        return await self.refresh()

    async def aclose(self) -> None:
        """Wait for a pending refresh, then refuse further refreshes."""
        self._closed = True
        task = self._task
        if task is not None and not task.done():
            logger.debug("Waiting for pending %s before close", self._name)
            with contextlib.suppress(Exception):
                await task

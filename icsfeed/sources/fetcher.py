"""HTTP client for downloading ICS calendar files."""

import asyncio
import logging
import random
from typing import Any, Optional

import httpx

from ..core.config_manager import is_http_url
from ..exceptions import FetchAuthError, FetchError, FetchNetworkError, FetchTimeoutError
from .models import CalendarSource

logger = logging.getLogger(__name__)

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

DEFAULT_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0 Safari/537.36"
    ),
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
}


def create_http_client(request_timeout: float = 30.0) -> httpx.AsyncClient:
    """Create the AsyncClient shared by all fetches of one event store.

    Args:
        request_timeout: Read timeout in seconds; connect and pool timeouts are capped by it
    """
    timeout = httpx.Timeout(
        connect=min(10.0, request_timeout),
        read=request_timeout,
        write=10.0,
        pool=min(30.0, request_timeout),
    )
    limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)
    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        follow_redirects=True,
        headers=DEFAULT_BROWSER_HEADERS,
    )


class IcsFetcher:
    """Downloads ICS text with a bounded timeout and jittered retries."""

    def __init__(self, settings: Any, client: httpx.AsyncClient) -> None:
        """Initialize ICS fetcher.

        Args:
            settings: Object with ``request_timeout``, ``max_retries`` and
                ``retry_backoff_factor`` attributes
            client: HTTP client owned by the caller
        """
        self.settings = settings
        self.client = client

    async def fetch_ics(self, source: CalendarSource) -> str:
        """Download the ICS text of ``source``.

        Args:
            source: Calendar source to fetch

        Returns:
            Response body as text

        Raises:
            FetchAuthError: On HTTP 401/403
            FetchTimeoutError: If every attempt timed out
            FetchNetworkError: If every attempt failed at the network level
            FetchError: On other HTTP errors, blocked URLs or empty bodies
        """
        if not is_http_url(source.url):
            raise FetchError(f"URL blocked: {source.url!r} is not an http(s) URL")

        logger.debug("Fetching ICS for %s from %s", source.name, source.url)
        try:
            response = await self._make_request_with_retry(source.url)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                raise FetchAuthError(
                    f"Authentication failed (HTTP {status})", status_code=status
                ) from e
            raise FetchError(
                f"HTTP {status}: {e.response.reason_phrase}", status_code=status
            ) from e
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(
                f"Request timeout after {self.settings.request_timeout}s"
            ) from e
        except httpx.RequestError as e:
            raise FetchNetworkError(f"Network error: {e}") from e

        text = response.text
        if not text.strip():
            raise FetchError("Empty response body", status_code=response.status_code)
        logger.debug("Fetched %d bytes for %s", len(response.content), source.name)
        return text

    def _calculate_backoff(self, attempt: int, backoff_factor: float) -> float:
        """Exponential backoff for ``attempt`` (0-indexed) plus random jitter, capped."""
        base_backoff = min(backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def _make_request_with_retry(self, url: str) -> httpx.Response:
        """GET ``url``, retrying timeouts and transport errors.

        HTTP status errors are not retried.
        """
        max_retries = int(getattr(self.settings, "max_retries", 2))
        backoff_factor = float(getattr(self.settings, "retry_backoff_factor", 1.5))
        timeout = float(getattr(self.settings, "request_timeout", 30.0))
        last_exception: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                response = await self.client.get(url, timeout=timeout)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError:
                raise
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_exception = e
                if attempt >= max_retries:
                    logger.warning("All %d attempts failed for %s: %s", attempt + 1, url, e)
                    raise
                backoff_time = self._calculate_backoff(attempt, backoff_factor)
                logger.warning(
                    "Request failed (attempt %s/%s), retrying in %.1fs: %s",
                    attempt + 1,
                    max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)

        if last_exception is not None:
            raise last_exception
        raise FetchError("Maximum retries exceeded")

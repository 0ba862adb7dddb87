"""Unit tests for icsfeed.sources.fetcher."""

from types import SimpleNamespace
from typing import Callable

import httpx
import pytest

from icsfeed.exceptions import FetchAuthError, FetchError, FetchNetworkError, FetchTimeoutError
from icsfeed.sources.fetcher import DEFAULT_BROWSER_HEADERS, IcsFetcher, create_http_client
from icsfeed.sources.models import CalendarSource
from tests.fixtures.ics_samples import SIMPLE_CALENDAR

pytestmark = [pytest.mark.unit, pytest.mark.fast]

SOURCE = CalendarSource(name="WORK", url="https://calendar.example.com/work.ics")


def _fetcher(
    handler: Callable[[httpx.Request], httpx.Response], settings: SimpleNamespace
) -> IcsFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = IcsFetcher(settings, client)
    # No real sleeping between retries
    fetcher._calculate_backoff = lambda attempt, factor: 0.0  # type: ignore[method-assign]
    return fetcher


class TestFetchIcs:
    """Tests for IcsFetcher.fetch_ics."""

    @pytest.mark.asyncio
    async def test_fetch_ics_when_ok_then_returns_text(self, simple_settings: SimpleNamespace) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=SIMPLE_CALENDAR)

        fetcher = _fetcher(handler, simple_settings)

        text = await fetcher.fetch_ics(SOURCE)

        assert text == SIMPLE_CALENDAR
        assert str(seen[0].url) == SOURCE.url
        await fetcher.client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_fetch_ics_when_unauthorized_then_auth_error(
        self, simple_settings: SimpleNamespace, status: int
    ) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(status), simple_settings)

        with pytest.raises(FetchAuthError) as exc_info:
            await fetcher.fetch_ics(SOURCE)

        assert exc_info.value.status_code == status
        await fetcher.client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_ics_when_server_error_then_fetch_error_without_retry(
        self, simple_settings: SimpleNamespace
    ) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        simple_settings.max_retries = 2
        fetcher = _fetcher(handler, simple_settings)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_ics(SOURCE)

        assert exc_info.value.status_code == 500
        assert "HTTP 500" in exc_info.value.message
        assert len(calls) == 1
        await fetcher.client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_ics_when_empty_body_then_fetch_error(
        self, simple_settings: SimpleNamespace
    ) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(200, text="  \r\n"), simple_settings)

        with pytest.raises(FetchError, match="Empty response body"):
            await fetcher.fetch_ics(SOURCE)
        await fetcher.client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_ics_when_timeouts_then_retried_then_timeout_error(
        self, simple_settings: SimpleNamespace
    ) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        simple_settings.max_retries = 2
        fetcher = _fetcher(handler, simple_settings)

        with pytest.raises(FetchTimeoutError):
            await fetcher.fetch_ics(SOURCE)

        assert len(calls) == 3
        await fetcher.client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_ics_when_transient_error_then_recovers(
        self, simple_settings: SimpleNamespace
    ) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, text=SIMPLE_CALENDAR)

        simple_settings.max_retries = 1
        fetcher = _fetcher(handler, simple_settings)

        assert await fetcher.fetch_ics(SOURCE) == SIMPLE_CALENDAR
        assert len(calls) == 2
        await fetcher.client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_ics_when_network_error_then_network_error(
        self, simple_settings: SimpleNamespace
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = _fetcher(handler, simple_settings)

        with pytest.raises(FetchNetworkError):
            await fetcher.fetch_ics(SOURCE)
        await fetcher.client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_ics_when_not_http_url_then_blocked(
        self, simple_settings: SimpleNamespace
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        fetcher = _fetcher(handler, simple_settings)

        with pytest.raises(FetchError, match="URL blocked"):
            await fetcher.fetch_ics(CalendarSource(name="LOCAL", url="file:///etc/passwd"))
        await fetcher.client.aclose()


class TestBackoff:
    """Tests for retry backoff calculation."""

    def test_calculate_backoff_when_attempts_grow_then_increases_with_jitter(
        self, simple_settings: SimpleNamespace
    ) -> None:
        fetcher = IcsFetcher(simple_settings, client=None)  # type: ignore[arg-type]

        first = fetcher._calculate_backoff(0, 2.0)
        third = fetcher._calculate_backoff(2, 2.0)

        assert 1.1 <= first <= 1.3
        assert 4.4 <= third <= 5.2

    def test_calculate_backoff_when_large_attempt_then_capped(
        self, simple_settings: SimpleNamespace
    ) -> None:
        fetcher = IcsFetcher(simple_settings, client=None)  # type: ignore[arg-type]

        assert fetcher._calculate_backoff(20, 2.0) <= 30.0 * 1.3


class TestCreateHttpClient:
    """Tests for the shared client factory."""

    @pytest.mark.asyncio
    async def test_create_http_client_when_called_then_configured(self) -> None:
        client = create_http_client(request_timeout=12.0)

        try:
            assert client.timeout.read == 12.0
            assert client.timeout.connect == 10.0
            assert client.follow_redirects is True
            assert client.headers["Accept"] == DEFAULT_BROWSER_HEADERS["Accept"]
        finally:
            await client.aclose()

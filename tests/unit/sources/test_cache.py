"""Unit tests for icsfeed.sources.cache."""

from pathlib import Path

import pytest

from icsfeed.exceptions import CacheError
from icsfeed.ics import prepare
from icsfeed.sources.cache import MAX_STEM_LENGTH, PreparedCache, cache_file_name
from tests.fixtures.ics_samples import BERLIN_CALENDAR

pytestmark = [pytest.mark.unit, pytest.mark.fast]

URL = "https://calendar.example.com/work.ics?token=abc"


class TestCacheFileName:
    """Tests for URL to file name mapping."""

    def test_cache_file_name_when_url_then_non_alphanumerics_replaced(self) -> None:
        assert cache_file_name("https://a.b/c.ics") == "https___a_b_c_ics.json"

    def test_cache_file_name_when_too_long_then_truncated_with_digest(self) -> None:
        base = "https://example.com/" + "x" * 400

        first = cache_file_name(base + "1")
        second = cache_file_name(base + "2")

        assert len(first) == MAX_STEM_LENGTH + len(".json")
        assert first != second
        assert first.endswith(".json")


class TestPreparedCache:
    """Tests for cache reads and writes."""

    @pytest.mark.asyncio
    async def test_write_then_read_when_prepared_then_equal(self, tmp_path: Path) -> None:
        cache = PreparedCache(tmp_path / "cache")
        prepared = prepare(BERLIN_CALENDAR)

        path = await cache.write(URL, prepared)

        assert path == cache.path_for(URL)
        assert path.exists()
        assert await cache.read(URL) == prepared

    @pytest.mark.asyncio
    async def test_write_when_existing_then_replaced_without_temp_files(self, tmp_path: Path) -> None:
        cache = PreparedCache(tmp_path)
        await cache.write(URL, prepare(BERLIN_CALENDAR))

        await cache.write(URL, prepare(BERLIN_CALENDAR))

        assert [p.name for p in tmp_path.iterdir()] == [cache_file_name(URL)]

    @pytest.mark.asyncio
    async def test_read_when_missing_then_cache_error(self, tmp_path: Path) -> None:
        with pytest.raises(CacheError, match="No cache file"):
            await PreparedCache(tmp_path).read(URL)

    @pytest.mark.asyncio
    async def test_read_when_corrupt_then_cache_error(self, tmp_path: Path) -> None:
        cache = PreparedCache(tmp_path)
        cache.path_for(URL).write_text("{not valid json", encoding="utf-8")

        with pytest.raises(CacheError):
            await cache.read(URL)

    @pytest.mark.asyncio
    async def test_write_when_directory_unwritable_then_cache_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        # cache_dir below a regular file cannot be created
        cache = PreparedCache(blocker / "cache")

        with pytest.raises(CacheError, match="Could not write"):
            await cache.write(URL, prepare(BERLIN_CALENDAR))

"""Unit tests for icsfeed.core.config_manager."""

import os
from pathlib import Path

import pytest

from icsfeed.core.config_manager import (
    MAX_REFRESH_INTERVAL_SECONDS,
    MIN_REFRESH_INTERVAL_SECONDS,
    ConfigManager,
    Settings,
    is_http_url,
    load_calendar_sources,
    parse_env_file,
)
from icsfeed.exceptions import ConfigurationError

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class TestParseEnvFile:
    """Tests for .env parsing."""

    def test_parse_env_file_when_missing_then_empty(self, tmp_path: Path) -> None:
        assert parse_env_file(tmp_path / ".env") == {}

    def test_parse_env_file_when_mixed_lines_then_pairs(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# calendars\n"
            "\n"
            'CALENDAR_WORK="https://example.com/work.ics"\n'
            "export CALENDAR_HOME='https://example.com/home.ics'\n"
            "ICSFEED_LOG_LEVEL = debug\n"
            "not a pair\n"
            "URL_WITH_EQUALS=https://example.com/a.ics?x=1\n",
            encoding="utf-8",
        )

        assert parse_env_file(env_file) == {
            "CALENDAR_WORK": "https://example.com/work.ics",
            "CALENDAR_HOME": "https://example.com/home.ics",
            "ICSFEED_LOG_LEVEL": "debug",
            "URL_WITH_EQUALS": "https://example.com/a.ics?x=1",
        }


class TestLoadCalendarSources:
    """Tests for CALENDAR_<NAME> discovery."""

    def test_load_calendar_sources_when_several_then_sorted_by_name(self) -> None:
        sources = load_calendar_sources(
            {
                "CALENDAR_WORK": "https://example.com/work.ics",
                "CALENDAR_HOME": " http://example.com/home.ics ",
                "PATH": "/usr/bin",
            }
        )

        assert [(s.name, s.url) for s in sources] == [
            ("HOME", "http://example.com/home.ics"),
            ("WORK", "https://example.com/work.ics"),
        ]

    def test_load_calendar_sources_when_none_then_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="No calendar sources configured"):
            load_calendar_sources({"CALENDAR_": "https://example.com/a.ics"})

    @pytest.mark.parametrize("url", ["ftp://example.com/a.ics", "example.com/a.ics", "https://"])
    def test_load_calendar_sources_when_not_http_then_configuration_error(self, url: str) -> None:
        with pytest.raises(ConfigurationError, match="CALENDAR_WORK"):
            load_calendar_sources({"CALENDAR_WORK": url})

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("https://example.com/a.ics", True),
            ("http://localhost:8080/a.ics", True),
            ("file:///tmp/a.ics", False),
            ("", False),
        ],
    )
    def test_is_http_url_when_value_then_expected(self, value: str, expected: bool) -> None:
        assert is_http_url(value) is expected


class TestSettings:
    """Tests for Settings.from_env."""

    def test_from_env_when_empty_then_defaults(self) -> None:
        assert Settings.from_env({}) == Settings()

    def test_from_env_when_values_then_parsed(self, tmp_path: Path) -> None:
        settings = Settings.from_env(
            {
                "ICSFEED_CACHE_DIR": str(tmp_path),
                "ICSFEED_REQUEST_TIMEOUT": "12.5",
                "ICSFEED_MAX_RETRIES": "4",
                "ICSFEED_MAX_OCCURRENCES": "50",
                "ICSFEED_REFRESH_INTERVAL": "120",
                "ICSFEED_LOG_LEVEL": "debug",
            }
        )

        assert settings.cache_dir == tmp_path
        assert settings.request_timeout == 12.5
        assert settings.max_retries == 4
        assert settings.max_occurrences == 50
        assert settings.refresh_interval_seconds == 120
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("5", MIN_REFRESH_INTERVAL_SECONDS), ("999999", MAX_REFRESH_INTERVAL_SECONDS)],
    )
    def test_from_env_when_interval_out_of_range_then_clamped(self, raw: str, expected: int) -> None:
        settings = Settings.from_env({"ICSFEED_REFRESH_INTERVAL": raw})

        assert settings.refresh_interval_seconds == expected

    def test_from_env_when_invalid_numbers_then_defaults(self) -> None:
        settings = Settings.from_env(
            {"ICSFEED_MAX_RETRIES": "many", "ICSFEED_REQUEST_TIMEOUT": "soon"}
        )

        assert settings.max_retries == Settings().max_retries
        assert settings.request_timeout == Settings().request_timeout

    def test_from_env_when_negative_then_floored(self) -> None:
        settings = Settings.from_env({"ICSFEED_MAX_RETRIES": "-3", "ICSFEED_MAX_OCCURRENCES": "0"})

        assert settings.max_retries == 0
        assert settings.max_occurrences == 1


class TestConfigManager:
    """Tests for ConfigManager .env handling."""

    def test_load_env_file_when_present_then_only_unset_keys_applied(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "CALENDAR_TESTA=https://example.com/a.ics\nCALENDAR_TESTB=https://example.com/b.ics\n",
            encoding="utf-8",
        )
        monkeypatch.delenv("CALENDAR_TESTA", raising=False)
        monkeypatch.setenv("CALENDAR_TESTB", "https://override.example.com/b.ics")

        loaded = ConfigManager(env_file).load_env_file()

        try:
            assert loaded == ["CALENDAR_TESTA"]
            assert os.environ["CALENDAR_TESTA"] == "https://example.com/a.ics"
            assert os.environ["CALENDAR_TESTB"] == "https://override.example.com/b.ics"
        finally:
            os.environ.pop("CALENDAR_TESTA", None)

    def test_load_env_file_when_missing_then_nothing_loaded(self, tmp_path: Path) -> None:
        assert ConfigManager(tmp_path / "absent.env").load_env_file() == []

"""Unit tests for icsfeed.logging_config."""

import logging
from collections.abc import Iterator

import pytest

from icsfeed.logging_config import NOISY_LOGGERS, PACKAGE_LOGGERS, configure_logging, get_logging_status

pytestmark = [pytest.mark.unit, pytest.mark.fast]


@pytest.fixture(autouse=True)
def restore_levels(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.delenv("ICSFEED_DEBUG", raising=False)
    monkeypatch.delenv("ICSFEED_LOG_LEVEL", raising=False)
    names = ("", *NOISY_LOGGERS, *PACKAGE_LOGGERS)
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


class TestConfigureLogging:
    """Tests for root, package and third-party logger levels."""

    def test_configure_logging_when_warning_then_status_reports_levels(self) -> None:
        configure_logging("warning")

        assert get_logging_status() == {
            "root": "WARNING",
            "icsfeed": "WARNING",
            "httpx": "WARNING",
            "httpcore": "WARNING",
            "asyncio": "WARNING",
        }

    def test_configure_logging_when_debug_mode_then_package_debug_and_http_quiet(self) -> None:
        configure_logging("ERROR", debug_mode=True)

        status = get_logging_status()
        assert status["root"] == "DEBUG"
        assert status["icsfeed"] == "DEBUG"
        assert status["httpx"] == "WARNING"

    def test_configure_logging_when_unknown_level_then_info(self) -> None:
        configure_logging("chatty")

        assert get_logging_status()["root"] == "INFO"
        assert get_logging_status()["icsfeed"] == "INFO"

    def test_configure_logging_when_env_level_then_overrides_argument(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ICSFEED_LOG_LEVEL", "error")

        configure_logging("DEBUG")

        assert get_logging_status()["root"] == "ERROR"
        assert get_logging_status()["icsfeed"] == "ERROR"

    def test_configure_logging_when_env_debug_then_debug(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ICSFEED_DEBUG", "yes")

        configure_logging()

        assert get_logging_status()["icsfeed"] == "DEBUG"

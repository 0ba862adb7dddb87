"""Shared pytest configuration for icsfeed tests."""

from types import SimpleNamespace
from typing import Any

import pytest


def pytest_configure(config: Any) -> None:
    """Register test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "fast: Tests that finish in well under a second")
    config.addinivalue_line("markers", "integration: Tests spanning several modules")


@pytest.fixture
def simple_settings(tmp_path: Any) -> SimpleNamespace:
    """Lightweight settings object for fetcher and event store tests.

    Retries are disabled and the backoff factor is tiny so failure paths
    stay fast.
    """
    return SimpleNamespace(
        cache_dir=tmp_path / "cache",
        request_timeout=5.0,
        max_retries=0,
        retry_backoff_factor=0.01,
        max_occurrences=1000,
        refresh_interval_seconds=60,
        log_level="INFO",
    )

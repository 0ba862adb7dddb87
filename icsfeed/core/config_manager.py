"""Configuration from environment variables and .env files."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from ..exceptions import ConfigurationError
from ..sources.models import CalendarSource

logger = logging.getLogger(__name__)

SOURCE_PREFIX = "CALENDAR_"
SETTINGS_PREFIX = "ICSFEED_"

MIN_REFRESH_INTERVAL_SECONDS = 60
MAX_REFRESH_INTERVAL_SECONDS = 86400


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Accepts an optional leading ``export``
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :]

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


def is_http_url(value: str) -> bool:
    """True for absolute http(s) URLs with a hostname."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def load_calendar_sources(environ: Mapping[str, str] | None = None) -> list[CalendarSource]:
    """Build the calendar sources from ``CALENDAR_<NAME>`` variables.

    Args:
        environ: Variables to read (defaults to ``os.environ``)

    Returns:
        Sources sorted by variable name

    Raises:
        ConfigurationError: If no source is configured or a value is not an
            http(s) URL
    """
    env = os.environ if environ is None else environ
    sources = []
    for key in sorted(env):
        if not key.startswith(SOURCE_PREFIX) or len(key) == len(SOURCE_PREFIX):
            continue
        url = env[key].strip()
        if not is_http_url(url):
            raise ConfigurationError(
                f"Environment variable {key} must be an http:// or https:// URL, got {url!r}"
            )
        sources.append(CalendarSource(name=key[len(SOURCE_PREFIX) :], url=url))

    if not sources:
        raise ConfigurationError(
            "No calendar sources configured. Set at least one CALENDAR_<NAME>=<ics url> "
            "environment variable (e.g. CALENDAR_WORK=https://example.com/work.ics)."
        )

    logger.debug("Configured calendar sources: %s", ", ".join(s.name for s in sources))
    return sources


def _coerce(env: Mapping[str, str], name: str, default: Any, cast: Callable[[str], Any]) -> Any:
    raw = env.get(SETTINGS_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning("Invalid %s%s=%r; using default %r", SETTINGS_PREFIX, name, raw, default)
        return default


@dataclass
class Settings:
    """Runtime settings, read from ``ICSFEED_*`` variables."""

    cache_dir: Path = field(default_factory=lambda: Path.cwd() / "data" / "ics-prepared")
    request_timeout: float = 30.0
    max_retries: int = 2
    retry_backoff_factor: float = 1.5
    max_occurrences: int = 1000
    refresh_interval_seconds: int = 900
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from the environment, falling back to defaults on bad values."""
        env = os.environ if environ is None else environ
        defaults = cls()

        cache_dir = env.get(SETTINGS_PREFIX + "CACHE_DIR")
        interval = _coerce(env, "REFRESH_INTERVAL", defaults.refresh_interval_seconds, int)
        clamped = max(MIN_REFRESH_INTERVAL_SECONDS, min(interval, MAX_REFRESH_INTERVAL_SECONDS))
        if clamped != interval:
            logger.warning("Refresh interval %ss out of range; using %ss", interval, clamped)

        settings = cls(
            cache_dir=Path(cache_dir).expanduser() if cache_dir else defaults.cache_dir,
            request_timeout=max(1.0, _coerce(env, "REQUEST_TIMEOUT", defaults.request_timeout, float)),
            max_retries=max(0, _coerce(env, "MAX_RETRIES", defaults.max_retries, int)),
            retry_backoff_factor=_coerce(
                env, "RETRY_BACKOFF_FACTOR", defaults.retry_backoff_factor, float
            ),
            max_occurrences=max(1, _coerce(env, "MAX_OCCURRENCES", defaults.max_occurrences, int)),
            refresh_interval_seconds=clamped,
            log_level=(env.get(SETTINGS_PREFIX + "LOG_LEVEL") or defaults.log_level).upper(),
        )
        return settings


class ConfigManager:
    """Loads configuration from environment variables and an optional .env file."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def load_sources(self) -> list[CalendarSource]:
        return load_calendar_sources()

    def load_settings(self) -> Settings:
        return Settings.from_env()

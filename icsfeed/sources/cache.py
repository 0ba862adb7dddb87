"""File-backed cache of prepared calendar data, one JSON file per source URL."""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path

from ..exceptions import CacheError
from ..ics import deserialize, serialize
from ..ics.models import PreparedIcs

logger = logging.getLogger(__name__)

# Keeps file names well under the 255 byte limit of common filesystems
MAX_STEM_LENGTH = 180

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9]")


def cache_file_name(url: str) -> str:
    """File name for ``url``: every non-alphanumeric character replaced by ``_``, plus ``.json``.

    Names that would be too long are truncated and suffixed with a SHA-1 of
    the URL so distinct URLs keep distinct files.
    """
    stem = _UNSAFE_CHARS.sub("_", url)
    if len(stem) > MAX_STEM_LENGTH:
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()
        stem = f"{stem[: MAX_STEM_LENGTH - len(digest) - 1]}_{digest}"
    return f"{stem}.json"


class PreparedCache:
    """Reads and atomically writes serialized PreparedIcs files."""

    def __init__(self, cache_dir: Path | str) -> None:
        self.cache_dir = Path(cache_dir)

    def path_for(self, url: str) -> Path:
        return self.cache_dir / cache_file_name(url)

    def _write_sync(self, url: str, payload: str) -> Path:
        target = self.path_for(url)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        # NamedTemporaryFile in the same directory so the replace is atomic
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self.cache_dir, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tf:
                tmp_path = Path(tf.name)
                tf.write(payload)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            tmp_path.replace(target)
        except OSError:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise
        return target

    def _read_sync(self, url: str) -> str:
        return self.path_for(url).read_text(encoding="utf-8")

    async def write(self, url: str, prepared: PreparedIcs) -> Path:
        """Persist ``prepared`` for ``url``.

        Raises:
            CacheError: If the file cannot be written
        """
        payload = serialize(prepared)
        try:
            path = await asyncio.to_thread(self._write_sync, url, payload)
        except OSError as e:
            raise CacheError(f"Could not write cache file for {url}: {e}") from e
        logger.debug("Wrote cache file %s (%d bytes)", path, len(payload))
        return path

    async def read(self, url: str) -> PreparedIcs:
        """Load the cached data for ``url``.

        Raises:
            CacheError: If the file is missing, unreadable or corrupt
        """
        try:
            payload = await asyncio.to_thread(self._read_sync, url)
        except FileNotFoundError as e:
            raise CacheError(f"No cache file for {url}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise CacheError(f"Could not read cache file for {url}: {e}") from e
        return deserialize(payload)

"""Disk-backed store accumulating fetched contributions across runs."""

import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from .config import APP_DIRECTORY, DEFAULT_BASE_BRANCHES
from .dedup import deduplicate_contributions
from .errors import CacheReadError, CacheWriteError
from .models import CacheEntry, CacheMetadata, CacheStatus, Contribution

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIRECTORY = APP_DIRECTORY / "cache"

_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_username(username: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with an underscore."""
    return _UNSAFE_CHARACTERS.sub("_", username)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CacheStore:
    """One JSON file per (platform, user), merged on every save.

    The store never decides what to fetch: callers always fetch the
    requested range upstream and hand the result to save().
    """

    def __init__(
        self,
        cache_dir: str | Path = DEFAULT_CACHE_DIRECTORY,
        base_branches: Iterable[str] = DEFAULT_BASE_BRANCHES,
    ):
        """Initialize the cache store.

        Args:
            cache_dir: Directory holding the cache files
            base_branches: Branch names preferred when merging duplicates
        """
        self.cache_dir = Path(cache_dir)
        self.base_branches = tuple(base_branches)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def get_cache_path(self, platform: str, username: str) -> Path:
        """Return the cache file path for a platform and user."""
        return self.cache_dir / f"{platform}-{sanitize_username(username)}.json"

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(path.name, threading.Lock())

    def _read_entry(self, path: Path) -> dict:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CacheReadError(f"Cannot read cache file {path}: {e}") from e

        if not isinstance(data, dict):
            raise CacheReadError(f"Cache file {path} does not hold an object")
        return data

    def _load_contributions(self, path: Path) -> list[Contribution]:
        data = self._read_entry(path)
        try:
            return [Contribution.from_dict(item) for item in data.get("contributions") or []]
        except (TypeError, ValueError) as e:
            raise CacheReadError(f"Cache file {path} holds an invalid contribution: {e}") from e

    def load(self, platform: str, username: str) -> list[Contribution]:
        """Load cached contributions for a platform and user.

        A missing or unreadable file is treated as an empty cache.

        Args:
            platform: Platform name (e.g. "GitHub")
            username: Username on that platform

        Returns:
            Cached contributions, oldest first
        """
        path = self.get_cache_path(platform, username)
        if not path.exists():
            return []

        try:
            return self._load_contributions(path)
        except CacheReadError as e:
            logger.warning(f"Ignoring cache for {platform}/{username}, starting fresh: {e}")
            return []

    def save(self, platform: str, username: str, new_contributions: Iterable[Contribution]) -> CacheMetadata:
        """Merge new contributions into the cached entry and write it back.

        Args:
            platform: Platform name (e.g. "GitHub")
            username: Username on that platform
            new_contributions: Freshly fetched contributions

        Returns:
            Metadata of the entry as written

        Raises:
            CacheWriteError: If the entry cannot be written to disk
        """
        path = self.get_cache_path(platform, username)

        with self._lock_for(path):
            merged = deduplicate_contributions(
                [*self.load(platform, username), *new_contributions], self.base_branches
            )
            merged.sort(key=lambda c: c.occurred_at)

            now = _utc_now()
            metadata = CacheMetadata(
                platform=platform,
                username=username,
                last_updated=now,
                contribution_count=len(merged),
                earliest=merged[0].timestamp if merged else now,
                latest=merged[-1].timestamp if merged else now,
            )
            entry = CacheEntry(metadata=metadata, contributions=merged)

            self._write_entry(path, entry)

        logger.debug(f"Cache: wrote {len(merged)} contributions to {path}")
        return metadata

    def _write_entry(self, path: Path, entry: CacheEntry) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entry.to_dict(), f, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CacheWriteError(f"Failed to write cache file {path}: {e}") from e

    def clear(self) -> int:
        """Delete every cache file.

        Returns:
            Number of files deleted
        """
        if not self.cache_dir.is_dir():
            return 0

        deleted = 0
        for path in self.cache_dir.glob("*.json"):
            path.unlink()
            deleted += 1
        return deleted

    def status(self) -> CacheStatus:
        """Summarize the cache directory from each file's metadata block."""
        if not self.cache_dir.is_dir():
            return CacheStatus(exists=False, size=0)

        entries = []
        total_size = 0
        for path in sorted(self.cache_dir.glob("*.json")):
            total_size += path.stat().st_size
            try:
                entries.append(CacheMetadata.from_dict(self._read_entry(path)["metadata"]))
            except (CacheReadError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable cache file {path.name}: {e}")

        return CacheStatus(exists=bool(entries), size=total_size, entries=entries)

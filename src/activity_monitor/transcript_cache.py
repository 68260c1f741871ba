"""Per-monitor memo of parsed transcripts keyed by (path, mtime)."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .models import AgentActivity, CacheEntry

logger = logging.getLogger(__name__)


class TranscriptCache:
    """Parsed-transcript cache owned by a single monitor.

    Only the monitor's event loop writes to the cache. Poll workers get a
    snapshot() copy and hand their new entries back for commit.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))

    def lookup(self, path: str, mtime: int) -> AgentActivity | None:
        """Return the cached activity only if path was parsed at exactly mtime."""
        entry = self._entries.get(path)
        if entry is None or entry.mtime != mtime:
            return None
        return entry.activity

    def get(self, path: str) -> CacheEntry | None:
        """Return the entry for path, stale or not."""
        return self._entries.get(path)

    def insert(self, entry: CacheEntry) -> None:
        self._entries[entry.path] = entry

    def update(self, entries: dict[str, CacheEntry]) -> None:
        self._entries.update(entries)

    def snapshot(self) -> dict[str, CacheEntry]:
        """Shallow copy safe to hand to a worker thread."""
        return dict(self._entries)

    def evict_oldest(self, max_entries: int) -> int:
        """Drop the oldest entries by mtime until at most max_entries remain.

        Args:
            max_entries: Upper bound on the cache size after eviction.

        Returns:
            Number of entries removed.
        """
        count = len(self._entries)
        if count <= max_entries:
            return 0

        logger.info(f"Cleaning cache, {count} entries")
        by_age = sorted(self._entries.values(), key=lambda e: e.mtime)
        to_remove = by_age[: count - max(max_entries, 0)]
        for entry in to_remove:
            del self._entries[entry.path]

        logger.info(f"Cleaned {len(to_remove)} cache entries, {len(self._entries)} remaining")
        return len(to_remove)

    def discard(self, paths: Iterable[str]) -> int:
        """Remove entries for paths, ignoring unknown ones. Returns the number removed."""
        removed = 0
        for path in paths:
            if self._entries.pop(path, None) is not None:
                removed += 1
        return removed

    def clear(self) -> None:
        self._entries.clear()

"""
This module holds the in-memory registry of announced scrape targets.

`TargetRegistry` maps each announcing source to its most recent
`TimestampedEntry`. Announcements replace earlier ones from the same source
(last write wins) and entries that stop being refreshed are removed by
`evict_older_than`. Every read and write goes through a single lock, so the
bus subscriber thread, the materializer and the eviction pass can use the same
instance concurrently.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from .schemas import ScrapeTarget, TimestampedEntry

Clock = Callable[[], float]


class TargetRegistry:
    """
    Thread-safe mapping of ``source -> TimestampedEntry``.

    Attributes:
        clock: Monotonic time source used when callers do not pass ``now``.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self.clock = clock
        self._entries: Dict[str, TimestampedEntry] = {}
        self._lock = threading.Lock()

    def upsert(self, target: ScrapeTarget, now: Optional[float] = None) -> TimestampedEntry:
        """
        Inserts or replaces the entry for ``target.source``.

        Args:
            target: The decoded announcement.
            now: Receive time; defaults to the registry clock.

        Returns:
            The stored entry.
        """
        received_at = self.clock() if now is None else now
        entry = TimestampedEntry(target=target, received_at=received_at)
        with self._lock:
            self._entries[target.source] = entry
        return entry

    def snapshot(self) -> Dict[str, TimestampedEntry]:
        """Returns a copy of all current entries taken under the registry lock."""
        with self._lock:
            return dict(self._entries)

    def evict_older_than(self, ttl: float, now: Optional[float] = None) -> int:
        """
        Removes every entry whose age is greater than or equal to ``ttl``.

        Args:
            ttl: Maximum age in seconds.
            now: Reference time; defaults to the registry clock.

        Returns:
            The number of entries removed.
        """
        reference = self.clock() if now is None else now
        with self._lock:
            expired = [
                source
                for source, entry in self._entries.items()
                if entry.age(reference) >= ttl
            ]
            for source in expired:
                del self._entries[source]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["TargetRegistry", "Clock"]

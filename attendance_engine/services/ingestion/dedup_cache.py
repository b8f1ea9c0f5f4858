"""
Sliding-window dedup cache.

Remembers event keys for a fixed window. A key seen again inside the window
is a duplicate; outside the window it is accepted again. The table is pruned
lazily once it grows past `max_entries`, so memory stays bounded without a
background sweeper.
"""

import time
from collections.abc import Callable


class DedupCache:
    def __init__(
        self,
        window_seconds: float = 5.0,
        max_entries: int = 200,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._seen: dict[str, float] = {}

    def is_duplicate(self, key: str) -> bool:
        """Return True if `key` was recorded within the window; otherwise record it."""
        now = self._clock()
        last = self._seen.get(key)
        if last is not None and (now - last) < self.window_seconds:
            return True

        self._seen[key] = now
        if len(self._seen) > self.max_entries:
            self.prune(now)
        return False

    def prune(self, now: float | None = None) -> int:
        """Drop entries older than the window. Returns how many were removed."""
        now = self._clock() if now is None else now
        cutoff = now - self.window_seconds
        stale = [key for key, seen_at in self._seen.items() if seen_at < cutoff]
        for key in stale:
            del self._seen[key]
        return len(stale)

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: str) -> bool:
        return key in self._seen

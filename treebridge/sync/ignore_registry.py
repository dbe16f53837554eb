"""Short-lived suppression of watcher events caused by our own writes."""
from __future__ import annotations

import threading
import time
from typing import Callable


class IgnoreRegistry:
    """Maps relative paths to a monotonic expiry instant.

    An unexpired entry swallows watcher events for its path; expired entries
    are dropped the next time they are looked at.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, float] = {}

    def suppress(self, relative_path: str, window_seconds: float) -> None:
        with self._lock:
            self._entries[relative_path] = self._clock() + max(0.0, float(window_seconds))

    def is_suppressed(self, relative_path: str) -> bool:
        with self._lock:
            expiry = self._entries.get(relative_path)
            if expiry is None:
                return False
            if self._clock() < expiry:
                return True
            del self._entries[relative_path]
            return False

    def __contains__(self, relative_path: str) -> bool:
        with self._lock:
            return relative_path in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

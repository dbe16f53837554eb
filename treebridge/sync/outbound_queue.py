"""Per-session queue of filesystem changes waiting for the editor to poll."""
from __future__ import annotations

import threading

from treebridge.models import ChangeRecord


class OutboundQueue:
    """FIFO of ChangeRecords holding at most one record per path."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: list[ChangeRecord] = []

    def push(self, record: ChangeRecord) -> None:
        """Append `record`, dropping any queued record for the same path."""
        with self._lock:
            self._items = [item for item in self._items if item.path != record.path]
            self._items.append(record)

    def drain(self) -> list[ChangeRecord]:
        with self._lock:
            items, self._items = self._items, []
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

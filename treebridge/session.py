"""State held for one connected editor instance."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from treebridge.models import ProjectFile, ProjectIdentity
from treebridge.sync import ChangeWatcher, IgnoreRegistry, OutboundQueue, PathAssigner


@dataclass
class Session:
    identity: ProjectIdentity
    initial_files: list[ProjectFile] = field(default_factory=list)
    bound_directory: Optional[Path] = None
    outbound_queue: OutboundQueue = field(default_factory=OutboundQueue)
    ignore_registry: IgnoreRegistry = field(default_factory=IgnoreRegistry)
    watcher: Optional[ChangeWatcher] = None
    path_assigner: Optional[PathAssigner] = None
    last_heartbeat: float = field(default_factory=time.monotonic)

    @property
    def session_id(self) -> str:
        return self.identity.sessionId

    @property
    def is_bound(self) -> bool:
        return self.bound_directory is not None and self.path_assigner is not None

    def touch(self, now: Optional[float] = None) -> None:
        self.last_heartbeat = time.monotonic() if now is None else now

    def is_stale(self, timeout_seconds: float, now: Optional[float] = None) -> bool:
        current = time.monotonic() if now is None else now
        return current - self.last_heartbeat > timeout_seconds

    @property
    def state(self) -> str:
        """One of "bound" / "unbound" (staleness is decided by the sweep)."""
        return "bound" if self.is_bound else "unbound"

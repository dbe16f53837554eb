"""Filesystem side of the bridge: path mapping, anti-loop, outbound changes."""

from treebridge.sync.path_assigner import PathAssigner
from treebridge.sync.ignore_registry import IgnoreRegistry
from treebridge.sync.outbound_queue import OutboundQueue
from treebridge.sync.file_watcher import ChangeWatcher

__all__ = [
    "PathAssigner",
    "IgnoreRegistry",
    "OutboundQueue",
    "ChangeWatcher",
]

"""File watcher service using watchfiles.

Monitors a session's bound directory and turns file edits into outbound
ChangeRecords for the editor to poll. Writes that treebridge made itself are
swallowed through the session's IgnoreRegistry.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

from treebridge import config
from treebridge.models import ChangeRecord
from treebridge.observability import record_outbound_change
from treebridge.sync.ignore_registry import IgnoreRegistry
from treebridge.sync.outbound_queue import OutboundQueue
from treebridge.sync.path_assigner import content_type_from_filename

logger = logging.getLogger("treebridge.watcher")


class ChangeWatcher:
    """Background watcher feeding one session's outbound queue.

    Uses `watchfiles` (Rust-accelerated) for efficient watching.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self.root: Optional[Path] = None
        self._queue: Optional[OutboundQueue] = None
        self._ignore: Optional[IgnoreRegistry] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(
        self,
        directory: Path | str,
        outbound_queue: OutboundQueue,
        ignore_registry: IgnoreRegistry,
    ) -> bool:
        """Start watching `directory` in a background task.

        Returns False (after logging) when the watch cannot be established; the
        session then only syncs editor -> disk.
        """
        if self._running:
            logger.warning(f"File watcher already running for {self.root}")
            return True

        root = Path(directory)
        if not root.is_dir():
            logger.warning(f"Cannot watch {root}: not a directory, outbound sync disabled")
            return False

        self._bind(root, outbound_queue, ignore_registry)
        self._stop_event = asyncio.Event()
        self._running = True
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(f"File watcher started for {self.root}")
        return True

    def _bind(self, root: Path, outbound_queue: OutboundQueue, ignore_registry: IgnoreRegistry) -> None:
        self.root = root.resolve()
        self._queue = outbound_queue
        self._ignore = ignore_registry

    async def stop(self) -> None:
        """Stop the file watcher."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"File watcher stopped for {self.root}")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self) -> None:
        assert self.root is not None
        try:
            async for changes in awatch(self.root, stop_event=self._stop_event, recursive=True):
                if not self._running:
                    break
                try:
                    pushed = self.handle_changes(changes)
                except Exception as e:
                    logger.error(f"Error handling changes under {self.root}: {e}")
                    continue
                if pushed:
                    logger.info(f"Queued {pushed} outbound changes from {self.root}")
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error(f"File watcher error for {self.root}: {e}")
        finally:
            self._running = False

    def handle_changes(self, changes: Iterable[tuple[Change, str]]) -> int:
        """Convert raw watchfiles changes into queued records.

        Returns how many records were pushed.
        """
        if self.root is None or self._queue is None or self._ignore is None:
            return 0

        pushed = 0
        for change_type, path_str in changes:
            record = self._to_record(change_type, Path(path_str))
            if record is None:
                continue
            self._queue.push(record)
            record_outbound_change(record.changeType, session_id=self.label)
            pushed += 1
        return pushed

    def _relative(self, path: Path) -> Optional[str]:
        assert self.root is not None
        for candidate in (path, path.resolve(strict=False)):
            try:
                return candidate.relative_to(self.root).as_posix()
            except ValueError:
                continue
        return None

    def _to_record(self, change_type: Change, path: Path) -> Optional[ChangeRecord]:
        # Only care about script sources and attribute json
        if not path.name.endswith(config.WATCH_EXTENSIONS):
            return None

        relative = self._relative(path)
        if relative is None:
            return None

        if change_type == Change.deleted:
            content = None
        elif change_type in (Change.modified, Change.added):
            if not path.is_file():
                return None
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                # A later event for the same path will retrigger the read
                logger.debug(f"Skipping unreadable {relative}: {e}")
                return None
        else:
            return None

        assert self._ignore is not None
        if self._ignore.is_suppressed(relative):
            logger.debug(f"Ignoring self-write on {relative}")
            return None

        return ChangeRecord(
            changeType="delete" if change_type == Change.deleted else "write",
            path=relative,
            content=content,
            isScript=relative.endswith(".lua"),
            nodeId=None,
            contentTypeHint=content_type_from_filename(relative),
        )

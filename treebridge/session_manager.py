"""Session manager: connected editors, their project folders and sync queues."""
from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Iterable, Optional

from treebridge import config
from treebridge.errors import ClaimExhausted, ReadFailure, SessionNotFound, TreeBridgeError
from treebridge.models import ChangeRecord, InboundResult, ProjectFile, ProjectIdentity
from treebridge.observability import record_inbound_write, record_session_event, start_span
from treebridge.session import Session
from treebridge.sync import ChangeWatcher, PathAssigner
from treebridge.sync.path_assigner import sanitize_segment

logger = logging.getLogger("treebridge.sessions")

DEFAULT_PROJECT_NAME = "Untitled"


class SessionManager:
    """Registers editor sessions and routes changes between editor and disk.

    The session table and the staging area share one lock that is only held
    for lookups and structural changes. Per-session queues, ignore registries
    and path assigners carry their own locks, so disk I/O never runs while the
    table is locked.
    """

    def __init__(
        self,
        projects_dir: Path,
        *,
        marker_filename: str = config.MARKER_FILENAME,
        claim_max_attempts: int = config.CLAIM_MAX_ATTEMPTS,
        ignore_window_seconds: float = config.IGNORE_WINDOW_SECONDS,
        session_timeout_seconds: float = config.SESSION_TIMEOUT_SECONDS,
        staging_timeout_seconds: float = config.STAGING_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.projects_dir = Path(projects_dir)
        self.marker_filename = marker_filename
        self.claim_max_attempts = claim_max_attempts
        self.ignore_window_seconds = ignore_window_seconds
        self.session_timeout_seconds = session_timeout_seconds
        self.staging_timeout_seconds = staging_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._staging: dict[str, list[ProjectFile]] = {}
        self._staged_at: dict[str, float] = {}

    # ── Registration ────────────────────────────────────────────────

    def stage_files(self, external_id: str, files: Iterable[ProjectFile]) -> int:
        """Hold chunked uploads until the matching connect call arrives."""
        with self._lock:
            staged = self._staging.setdefault(external_id, [])
            staged.extend(files)
            self._staged_at[external_id] = self._clock()
            count = len(staged)
        logger.info(f"Staging: accumulated {count} files for {external_id}")
        return count

    def claim_directory(self, display_name: str, resolved_id: str) -> Path:
        """Find the project folder owned by `resolved_id`, claiming one if needed.

        Candidates are `name`, `name_1`, `name_2`, ... under the projects root.
        A missing folder or one without a marker is claimed; a folder whose
        marker holds another id (or cannot be read) is skipped. Folder and
        marker are both created exclusively, so two concurrent claims never
        end up owning the same folder.
        """
        safe_name = sanitize_segment(display_name).strip() or DEFAULT_PROJECT_NAME

        for attempt in range(self.claim_max_attempts):
            candidate_name = safe_name if attempt == 0 else f"{safe_name}_{attempt}"
            candidate = self.projects_dir / candidate_name
            marker = candidate / self.marker_filename

            created = False
            try:
                candidate.mkdir(parents=True, exist_ok=False)
                created = True
            except FileExistsError:
                if not candidate.is_dir():
                    continue
            except OSError as e:
                logger.error(f"Failed to create project folder {candidate}: {e}")
                continue

            try:
                with open(marker, "x", encoding="utf-8") as fh:
                    fh.write(resolved_id)
            except FileExistsError:
                pass
            except OSError as e:
                logger.error(f"Failed to write marker in {candidate}: {e}")
                continue
            else:
                if created:
                    logger.info(f"Claimed new project folder {candidate}")
                else:
                    logger.info(f"Adopted unowned project folder {candidate}")
                return candidate

            try:
                stored_id = self._read_marker(marker)
            except ReadFailure as e:
                logger.warning(f"Unreadable marker in {candidate}, treating as claimed: {e}")
                continue

            if stored_id == resolved_id:
                logger.info(f"Reconnected to project folder {candidate}")
                return candidate

        raise ClaimExhausted(safe_name, self.claim_max_attempts)

    @staticmethod
    def _read_marker(marker: Path) -> str:
        try:
            return marker.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise ReadFailure(str(marker), str(e)) from e

    async def register_session(self, identity: ProjectIdentity, files: Iterable[ProjectFile] = ()) -> str:
        """Register a connecting editor and return its durable project id.

        Any prior session with the same session id or project id is evicted
        and released before the new one writes its snapshot, so a folder is
        never watched by two sessions at once.
        """
        with self._lock:
            staged = self._staging.pop(identity.externalId, [])
            self._staged_at.pop(identity.externalId, None)
        merged = staged + list(files)
        if staged:
            logger.info(f"Merging {len(staged)} staged files into connection {identity.sessionId}")

        resolved_id = identity.resolvedProjectId or str(uuid.uuid4())
        identity = identity.model_copy(update={"resolvedProjectId": resolved_id})

        await self._evict_duplicates(identity.sessionId, resolved_id)

        directory: Optional[Path] = None
        with start_span("treebridge.claim_directory", {"project_id": resolved_id}):
            try:
                directory = await asyncio.to_thread(self.claim_directory, identity.displayName, resolved_id)
            except ClaimExhausted as e:
                logger.warning(f"{e}; session {identity.sessionId} stays unbound")

        logger.info(f"Registering {identity.displayName!r} ({identity.sessionId})")
        session = Session(identity=identity, initial_files=merged, last_heartbeat=self._clock())
        if directory is not None:
            await self._attach_directory(session, directory, write_snapshot=True)

        # A racing registration for the same project may have slipped in meanwhile
        await self._evict_duplicates(identity.sessionId, resolved_id, replacement=session)

        record_session_event("registered")
        return resolved_id

    async def _evict_duplicates(
        self, session_id: str, project_id: str, replacement: Optional[Session] = None
    ) -> None:
        with self._lock:
            evicted = [
                self._sessions.pop(sid)
                for sid, existing in list(self._sessions.items())
                if sid == session_id or existing.identity.resolvedProjectId == project_id
            ]
            if replacement is not None:
                self._sessions[session_id] = replacement

        for old in evicted:
            logger.info(f"Dedup: removed session {old.session_id} (project {project_id})")
            record_session_event("evicted")
            await self._release(old)

    async def _attach_directory(self, session: Session, directory: Path, write_snapshot: bool = False) -> None:
        assigner = PathAssigner(directory)

        if write_snapshot and session.initial_files:
            with start_span("treebridge.write_snapshot", {"session_id": session.session_id}):
                written = await asyncio.to_thread(self._write_snapshot, session, assigner)
            logger.info(f"Wrote {written}/{len(session.initial_files)} initial files to {directory}")

        watcher = ChangeWatcher(label=session.session_id)
        started = await watcher.start(directory, session.outbound_queue, session.ignore_registry)

        session.bound_directory = directory
        session.path_assigner = assigner
        session.watcher = watcher if started else None

    def _write_snapshot(self, session: Session, assigner: PathAssigner) -> int:
        written = 0
        for file in session.initial_files:
            try:
                session.ignore_registry.suppress(file.path, self.ignore_window_seconds)
                assigner.write_relative(file.path, file.content)
                written += 1
            except TreeBridgeError as e:
                logger.error(f"Failed to write initial file {file.path}: {e}")
        return written

    async def _release(self, session: Session) -> None:
        if session.watcher is not None:
            await session.watcher.stop()
            session.watcher = None
        session.path_assigner = None

    async def unregister_session(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await self._release(session)
        logger.info(f"Unregistered session {session_id} ({session.identity.displayName!r})")
        record_session_event("unregistered")
        return True

    async def bind_folder(self, session_id: str, folder_path: Path | str) -> Path:
        """Bind a session to an explicit folder, replacing any previous binding."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        directory = Path(folder_path).expanduser()
        logger.info(f"Binding session {session_id} to folder {directory}")
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)

        if session.watcher is not None:
            await session.watcher.stop()
            session.watcher = None
        await self._attach_directory(session, directory)
        return directory

    # ── Sync paths ──────────────────────────────────────────────────

    def _bound_handles(self, session_id: str) -> tuple[Session, PathAssigner]:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        assigner = session.path_assigner
        if assigner is None:
            raise SessionNotFound(session_id, "Session is not bound to a folder")
        return session, assigner

    async def apply_inbound_changes(self, session_id: str, changes: Iterable[ChangeRecord]) -> InboundResult:
        """Write editor changes to disk.

        Every written path is suppressed in the session's ignore registry
        before the file is touched, so the watcher does not echo it back.
        A failing change is logged and skipped; the rest of the batch proceeds.
        """
        session, assigner = self._bound_handles(session_id)
        registry = session.ignore_registry
        window = self.ignore_window_seconds

        def suppress(relative_path: str) -> None:
            registry.suppress(relative_path, window)

        result = InboundResult()
        with start_span("treebridge.apply_inbound", {"session_id": session_id}):
            for change in changes:
                identifier = change.nodeId or change.path
                try:
                    if change.changeType == "delete":
                        relative = await asyncio.to_thread(
                            assigner.delete_node,
                            identifier,
                            change.path,
                            change.isScript,
                            change.contentTypeHint,
                            suppress,
                        )
                    elif change.content is not None:
                        relative = await asyncio.to_thread(
                            assigner.write_node,
                            identifier,
                            change.path,
                            change.isScript,
                            change.contentTypeHint,
                            change.content,
                            suppress,
                        )
                    else:
                        continue
                except (TreeBridgeError, ValueError) as e:
                    logger.error(f"Sync error for {change.path} in session {session_id}: {e}")
                    result.failed.append({"path": change.path, "error": str(e)})
                    record_inbound_write("error", change.changeType, session_id=session_id)
                    continue

                logger.info(f"Synced {change.path} -> {relative} ({identifier})")
                result.applied.append(relative)
                record_inbound_write("ok", change.changeType, session_id=session_id)

        return result

    async def proxy_write(self, session_id: str, relative_path: str, content: str) -> Path:
        """Write a file on behalf of a non-editor client.

        The path is deliberately not suppressed: the watcher picks the write up
        and forwards it to the editor like any external edit.
        """
        _, assigner = self._bound_handles(session_id)
        return await asyncio.to_thread(assigner.write_relative, relative_path, content)

    def drain_outbound(self, session_id: str) -> list[ChangeRecord]:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return []
        return session.outbound_queue.drain()

    # ── Lifecycle ───────────────────────────────────────────────────

    def refresh_heartbeat(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.touch(self._clock())
            return True

    async def cleanup_stale(self, timeout_seconds: Optional[float] = None) -> list[str]:
        timeout = self.session_timeout_seconds if timeout_seconds is None else timeout_seconds
        now = self._clock()
        with self._lock:
            stale = [
                self._sessions.pop(sid)
                for sid, session in list(self._sessions.items())
                if session.is_stale(timeout, now)
            ]
            abandoned = [
                external_id
                for external_id, staged_at in list(self._staged_at.items())
                if now - staged_at > self.staging_timeout_seconds
            ]
            for external_id in abandoned:
                self._staged_at.pop(external_id, None)
                self._staging.pop(external_id, None)

        for external_id in abandoned:
            logger.info(f"Cleanup: dropping staged files for {external_id}")

        for session in stale:
            logger.info(f"Cleanup: removing stale session {session.session_id}")
            record_session_event("stale")
            await self._release(session)
        return [session.session_id for session in stale]

    async def run_cleanup_loop(self, interval_seconds: float = config.CLEANUP_INTERVAL_SECONDS) -> None:
        """Sweep stale sessions forever; meant to run as a background task."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.cleanup_stale()
            except Exception as e:
                logger.error(f"Stale session sweep failed: {e}")

    async def shutdown(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._staging.clear()
            self._staged_at.clear()
        for session in sessions:
            await self._release(session)

    # ── Queries ─────────────────────────────────────────────────────

    def list_sessions(self) -> list[ProjectIdentity]:
        with self._lock:
            return [session.identity.model_copy() for session in self._sessions.values()]

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def staged_count(self, external_id: str) -> int:
        with self._lock:
            return len(self._staging.get(external_id, []))


# Global instance rooted at the configured projects folder
session_manager = SessionManager(config.PROJECTS_DIR)

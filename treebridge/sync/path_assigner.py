"""Identifier to filesystem path mapping for one bound directory.

Node paths arrive as dotted hierarchical names ("Workspace.Folder.Part") tagged
with an opaque node identifier. Each name maps to a nested relative path; script
nodes get an extension chosen by their class:

    Script       -> Part.server.lua
    LocalScript  -> Part.client.lua
    anything else -> Part.lua

Two nodes that resolve to the same path fight over it: the most recent one owns
it. No numeric suffixes are generated, so the maps stay bounded by the number
of live nodes.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from treebridge.errors import AccessDenied, WriteFailure

logger = logging.getLogger("treebridge.paths")

HIERARCHY_DELIMITER = "."
SERVER_SCRIPT_HINT = "Script"
CLIENT_SCRIPT_HINT = "LocalScript"
SERVER_SCRIPT_SUFFIX = ".server.lua"
CLIENT_SCRIPT_SUFFIX = ".client.lua"
GENERIC_SCRIPT_SUFFIX = ".lua"


def sanitize_segment(segment: str) -> str:
    return "".join(ch for ch in segment if ch.isalnum() or ch in " -_")


def script_suffix(content_type_hint: Optional[str]) -> str:
    if content_type_hint == SERVER_SCRIPT_HINT:
        return SERVER_SCRIPT_SUFFIX
    if content_type_hint == CLIENT_SCRIPT_HINT:
        return CLIENT_SCRIPT_SUFFIX
    return GENERIC_SCRIPT_SUFFIX


def content_type_from_filename(relative_path: str) -> str:
    """Inverse of `script_suffix` for paths observed on disk."""
    if relative_path.endswith(SERVER_SCRIPT_SUFFIX):
        return SERVER_SCRIPT_HINT
    if relative_path.endswith(CLIENT_SCRIPT_SUFFIX):
        return CLIENT_SCRIPT_HINT
    return "ModuleScript"


def is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve(strict=False).relative_to(root.resolve(strict=False))
        return True
    except ValueError:
        return False


class PathAssigner:
    """Keeps identifier->path and path->identifier maps mutually consistent."""

    def __init__(self, root_dir: Path | str):
        self.root_dir = Path(root_dir)
        self._lock = threading.Lock()
        self._id_to_path: dict[str, str] = {}
        self._path_to_id: dict[str, str] = {}

    def compute_path(
        self,
        hierarchical_name: str,
        is_script: bool,
        content_type_hint: Optional[str] = None,
    ) -> str:
        segments = [sanitize_segment(part) for part in hierarchical_name.split(HIERARCHY_DELIMITER)]
        segments = [s for s in segments if s]
        if not segments:
            raise ValueError(f"Hierarchical name has no usable segments: {hierarchical_name!r}")
        if is_script:
            segments[-1] = segments[-1] + script_suffix(content_type_hint)
        return "/".join(segments)

    def resolve_path(
        self,
        identifier: str,
        hierarchical_name: str,
        is_script: bool,
        content_type_hint: Optional[str] = None,
    ) -> str:
        """Assign (or re-assign) `identifier` to the path derived from its name.

        Ownership of the computed path moves to `identifier` even when another
        identifier held it.
        """
        final_path = self.compute_path(hierarchical_name, is_script, content_type_hint)

        with self._lock:
            old_path = self._id_to_path.pop(identifier, None)
            if old_path is not None and old_path != final_path:
                if self._path_to_id.get(old_path) == identifier:
                    del self._path_to_id[old_path]

            previous_owner = self._path_to_id.get(final_path)
            if previous_owner is not None and previous_owner != identifier:
                self._id_to_path.pop(previous_owner, None)
                logger.debug(f"{final_path} ownership moved from {previous_owner} to {identifier}")

            self._path_to_id[final_path] = identifier
            self._id_to_path[identifier] = final_path

        return final_path

    def path_for(self, identifier: str) -> Optional[str]:
        with self._lock:
            return self._id_to_path.get(identifier)

    def identifier_for(self, relative_path: str) -> Optional[str]:
        with self._lock:
            return self._path_to_id.get(relative_path)

    def forget(self, identifier: str) -> Optional[str]:
        with self._lock:
            path = self._id_to_path.pop(identifier, None)
            if path is not None and self._path_to_id.get(path) == identifier:
                del self._path_to_id[path]
            return path

    def __len__(self) -> int:
        with self._lock:
            return len(self._id_to_path)

    def resolve_absolute(self, relative_path: str) -> Path:
        """Join onto the root, refusing anything that lands outside of it."""
        candidate = self.root_dir / relative_path
        if Path(relative_path).is_absolute() or not is_within(candidate, self.root_dir):
            raise AccessDenied(relative_path)
        return candidate

    def write_relative(self, relative_path: str, content: str) -> Path:
        target = self.resolve_absolute(relative_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise WriteFailure(relative_path, str(e)) from e
        return target

    def write_node(
        self,
        identifier: str,
        hierarchical_name: str,
        is_script: bool,
        content_type_hint: Optional[str],
        content: str,
        before_write: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Resolve the node's path and write `content` there.

        `before_write` receives the relative path right before the file is
        touched; callers use it to register anti-loop suppression.
        """
        relative_path = self.resolve_path(identifier, hierarchical_name, is_script, content_type_hint)
        self.resolve_absolute(relative_path)
        if before_write is not None:
            before_write(relative_path)
        self.write_relative(relative_path, content)
        return relative_path

    def delete_node(
        self,
        identifier: str,
        hierarchical_name: str,
        is_script: bool,
        content_type_hint: Optional[str] = None,
        before_delete: Optional[Callable[[str], None]] = None,
    ) -> str:
        relative_path = self.forget(identifier)
        if relative_path is None:
            relative_path = self.compute_path(hierarchical_name, is_script, content_type_hint)
            with self._lock:
                owner = self._path_to_id.get(relative_path)
                if owner is not None:
                    del self._path_to_id[relative_path]
                    self._id_to_path.pop(owner, None)

        target = self.resolve_absolute(relative_path)
        if before_delete is not None:
            before_delete(relative_path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise WriteFailure(relative_path, str(e)) from e
        return relative_path

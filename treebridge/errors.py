"""Error taxonomy for the sync core.

Routers translate these into HTTP failures; batch operations log them per item.
"""
from __future__ import annotations


class TreeBridgeError(Exception):
    """Base class for sync core failures."""


class SessionNotFound(TreeBridgeError):
    def __init__(self, session_id: str, detail: str = "Session not found"):
        super().__init__(f"{detail}: {session_id}")
        self.session_id = session_id


class AccessDenied(TreeBridgeError):
    """A resolved path would leave the bound directory."""

    def __init__(self, path: str):
        super().__init__(f"Access denied: {path} escapes the bound directory")
        self.path = path


class WriteFailure(TreeBridgeError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Write failed for {path}: {reason}")
        self.path = path


class ReadFailure(TreeBridgeError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Read failed for {path}: {reason}")
        self.path = path


class ClaimExhausted(TreeBridgeError):
    """No candidate project folder could be claimed within the attempt bound."""

    def __init__(self, name: str, attempts: int):
        super().__init__(f"Could not claim a folder for '{name}' after {attempts} attempts")
        self.name = name
        self.attempts = attempts

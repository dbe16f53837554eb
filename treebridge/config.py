"""treebridge service configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Root under which project folders are claimed (one folder per project)
PROJECTS_DIR = Path(
    os.getenv("TREEBRIDGE_PROJECTS_DIR", str(Path.home() / "Documents" / "TreeBridgeProjects"))
).expanduser()
MARKER_FILENAME = os.getenv("TREEBRIDGE_MARKER_FILENAME", "treebridge.id")
CLAIM_MAX_ATTEMPTS = _env_int("TREEBRIDGE_CLAIM_MAX_ATTEMPTS", 100)

# Sync tuning
IGNORE_WINDOW_SECONDS = _env_float("TREEBRIDGE_IGNORE_WINDOW_SECONDS", 2.0)
SESSION_TIMEOUT_SECONDS = _env_float("TREEBRIDGE_SESSION_TIMEOUT_SECONDS", 30.0)
CLEANUP_INTERVAL_SECONDS = _env_float("TREEBRIDGE_CLEANUP_INTERVAL_SECONDS", 10.0)
# Staged uploads whose connect never arrives are dropped after this long
STAGING_TIMEOUT_SECONDS = _env_float("TREEBRIDGE_STAGING_TIMEOUT_SECONDS", 300.0)
WATCH_EXTENSIONS = (".lua", ".json")

# Observability
OTEL_ENABLED = _env_bool("TREEBRIDGE_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("TREEBRIDGE_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("TREEBRIDGE_OTEL_SERVICE_NAME", "treebridge")
PROM_PORT = _env_int("TREEBRIDGE_PROM_PORT", 9465)

# Server settings
HOST = os.getenv("TREEBRIDGE_HOST", "127.0.0.1")
PORT = int(os.getenv("TREEBRIDGE_PORT", "3032"))

# CORS
FRONTEND_ORIGIN = os.getenv("TREEBRIDGE_FRONTEND_ORIGIN", "http://localhost:3000")

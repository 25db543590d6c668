"""Claude Time Tracker - active-time estimates and bounded activity export for Claude Code."""

from importlib.metadata import version

try:
    __version__ = version("claude-time-tracker")
except Exception:
    __version__ = "0.1.0"  # Fallback for development

# Re-export public API
from claude_time.errors import (
    MalformedAttributesError,
    NotFoundError,
    StoreUnavailableError,
    TimeTrackerError,
)
from claude_time.storage import Activity, ActivityRow, Session, SQLiteStorage

__all__ = [
    # Version
    "__version__",
    # Storage
    "SQLiteStorage",
    "Session",
    "Activity",
    "ActivityRow",
    # Errors
    "TimeTrackerError",
    "NotFoundError",
    "MalformedAttributesError",
    "StoreUnavailableError",
]

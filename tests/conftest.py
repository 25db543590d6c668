"""Pytest configuration and shared fixtures."""

import tempfile
from pathlib import Path

import pytest

from claude_time.storage import SQLiteStorage

ALPHA_PATH = "/work/alpha"
BETA_PATH = "/work/beta"


@pytest.fixture
def storage():
    """Create a temporary storage instance for testing.

    This is the base fixture for all storage-dependent tests.
    Use this when you need an empty database.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with SQLiteStorage(db_path) as s:
            yield s


@pytest.fixture
def populated_storage(storage):
    """Storage instance with two closed sessions on 2025-01-01.

    Contains:
    - alpha (/work/alpha): 09:00-09:30, activities at 09:00, 09:10, 09:25
      (30 active minutes), including an Edit with a large originalFile
    - beta (/work/beta): 14:00-14:10, activities at 14:00, 14:05
      (10 active minutes), including a Read with file content
    """
    alpha = storage.create_session(ALPHA_PATH, "2025-01-01T09:00:00Z")
    storage.log_activity(
        alpha.id, "message", "2025-01-01T09:00:00Z", metadata={"prompt": "Fix the login bug"}
    )
    storage.log_activity(
        alpha.id,
        "tool_use",
        "2025-01-01T09:10:00Z",
        metadata={"tool": "Edit"},
        tool_detail={
            "tool_name": "Edit",
            "tool_input": {"file_path": "/work/alpha/login.py", "old_string": "a"},
            "tool_response": {"originalFile": "x" * 2000},
        },
    )
    storage.log_activity(
        alpha.id,
        "assistant_response",
        "2025-01-01T09:25:00Z",
        metadata={"response_text": "Fixed it."},
    )
    storage.end_session(alpha.id, "2025-01-01T09:30:00Z")

    beta = storage.create_session(BETA_PATH, "2025-01-01T14:00:00Z")
    storage.log_activity(
        beta.id,
        "tool_use",
        "2025-01-01T14:00:00Z",
        metadata={"tool": "Read"},
        tool_detail={
            "tool_name": "Read",
            "tool_input": {"file_path": "/work/beta/README.md"},
            "tool_response": {"file": {"content": "y" * 2000, "numLines": 40}},
        },
    )
    storage.log_activity(
        beta.id, "message", "2025-01-01T14:05:00Z", metadata={"prompt": "Summarize the README"}
    )
    storage.end_session(beta.id, "2025-01-01T14:10:00Z")

    return storage


@pytest.fixture
def session_ids(populated_storage):
    """Ids of the alpha and beta sessions in populated_storage."""
    return {
        "alpha": populated_storage.get_recent_sessions(project_path=ALPHA_PATH)[0].id,
        "beta": populated_storage.get_recent_sessions(project_path=BETA_PATH)[0].id,
    }

"""Tests for the MCP server."""

import pytest

from claude_time.errors import NotFoundError
from claude_time.server import (
    get_activities,
    get_current_session,
    get_session_stats,
    get_status,
    get_time_report,
    get_timesheet,
    log_activity,
    log_session_end,
    log_session_start,
)


@pytest.fixture(autouse=True)
def db_env(tmp_path, monkeypatch):
    """Point every tool at a temporary database."""
    db_path = tmp_path / "time-tracker.db"
    monkeypatch.setenv("CLAUDE_TIME_DB", str(db_path))
    return db_path


@pytest.fixture
def tracked_session():
    """A session logged through the tools: 09:05, 09:10 and 09:50 activities, 60 minutes."""
    # FastMCP wraps functions - access the underlying fn
    session = log_session_start.fn("/work/alpha", "2025-01-01T09:00:00Z")
    log_activity.fn(session["id"], "message", "2025-01-01T09:05:00Z", {"prompt": "Add a test"})
    log_activity.fn(
        session["id"],
        "tool_use",
        "2025-01-01T09:10:00Z",
        {"tool": "Write"},
        {"tool_name": "Write", "tool_input": {"file_path": "/work/alpha/test_x.py"}},
    )
    log_activity.fn(
        session["id"], "assistant_response", "2025-01-01T09:50:00Z", {"response_text": "Done"}
    )
    log_session_end.fn(session["id"], "2025-01-01T10:00:00Z")
    return session


def test_get_status():
    """Test that get_status returns expected fields."""
    result = get_status.fn()
    assert result["status"] == "ok"
    assert "version" in result
    assert "db_path" in result
    assert result["session_count"] == 0
    assert result["activity_count"] == 0


def test_session_lifecycle(tracked_session):
    """Test start, activities and end recorded through the tools."""
    assert tracked_session["project_name"] == "alpha"
    assert tracked_session["end_time"] is None

    stats = get_session_stats.fn()
    (session,) = stats["recent_sessions"]
    assert session["duration_minutes"] == 60
    assert session["message_count"] == 1
    assert session["tool_use_count"] == 1
    assert session["end_time"] == "2025-01-01T10:00:00Z"


def test_end_unknown_session():
    with pytest.raises(NotFoundError):
        log_session_end.fn("nope", "2025-01-01T10:00:00Z")


def test_log_activity_default_timestamp():
    session = log_session_start.fn("/work/beta")
    result = log_activity.fn(session["id"], "message")
    assert result["timestamp"].endswith("Z")


def test_get_time_report(tracked_session):
    """Test the report estimates 40 active minutes and carries a summary."""
    result = get_time_report.fn("2025-01-01", "2025-01-01")
    assert result["total_minutes"] == 40
    assert result["project_breakdown"] == {"alpha": {"sessions": 1, "minutes": 40}}
    assert "Total Active Time: 0.67 hours (40 minutes)" in result["summary"]


def test_get_current_session():
    session = log_session_start.fn("/work/gamma", "2025-01-01T09:00:00Z")
    assert get_current_session.fn("/work/gamma")["current_session"]["id"] == session["id"]
    assert get_current_session.fn("/work/other")["current_session"] is None


def test_get_activities_pages(tracked_session):
    """Test paging through the tool with a tiny budget."""
    first = get_activities.fn(token_limit=1)
    assert first["activities"] == []
    assert first["has_more"] is True
    assert first["continue_after"] == "2025-01-01T09:50:00Z"

    page = get_activities.fn(fields=["timestamp", "tool_detail.tool_input.file_path"])
    assert page["activities"][1] == {
        "timestamp": "2025-01-01T09:10:00Z",
        "tool_detail.tool_input.file_path": "/work/alpha/test_x.py",
    }


def test_get_activities_env_token_limit(tracked_session, monkeypatch):
    monkeypatch.setenv("CLAUDE_TIME_TOKEN_LIMIT", "1")
    assert get_activities.fn()["token_limit"] == 1


def test_get_timesheet(tracked_session):
    sheet = get_timesheet.fn("2025-01-01")
    assert sheet["total_billable_hours"] == 1
    assert sheet["timesheet_sessions"][0]["files_modified"] == ["/work/alpha/test_x.py"]
    assert sheet["top_tools"] == [("Write", 1)]

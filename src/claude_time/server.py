"""MCP Time Tracker Server.

Provides tools for tracking Claude Code sessions:
- log_session_start / log_session_end: Open and close a session
- log_activity: Record a message, response or tool use
- get_time_report: Estimated active time for a date range
- get_session_stats: Recent sessions
- get_current_session: Open session for a project
- get_activities: Token-bounded page of flattened activities
- get_timesheet: Per-session billable hours and activity entries
- get_status: Database stats
"""

import logging
import os
from pathlib import Path

from fastmcp import FastMCP

from claude_time import __version__
from claude_time.activities import get_activities as _get_activities
from claude_time.config import Settings
from claude_time.reports import build_report, format_time_report
from claude_time.storage import SQLiteStorage
from claude_time.timesheet import build_timesheet
from claude_time.timestamps import format_timestamp, utc_now

# Initialize MCP server
mcp = FastMCP("claude-time")


def _open_storage() -> tuple[Settings, SQLiteStorage]:
    settings = Settings.from_env()
    return settings, SQLiteStorage(settings.db_path)


@mcp.resource("claude-time://guide", description="Usage guide for the time tracking tools")
def usage_guide() -> str:
    """Return the time tracker usage guide from external markdown file."""
    guide_path = Path(__file__).parent / "guide.md"
    try:
        return guide_path.read_text()
    except FileNotFoundError:
        return "# Claude Time Tracker Guide\n\nGuide file not found."


@mcp.tool()
def get_status() -> dict:
    """Get database stats.

    Returns:
        Status info including session and activity counts and DB size
    """
    _, storage = _open_storage()
    with storage:
        stats = storage.get_db_stats()
    return {"status": "ok", "version": __version__, **stats}


@mcp.tool()
def log_session_start(project_path: str, timestamp: str | None = None) -> dict:
    """Start a new session for a project.

    Args:
        project_path: Absolute path of the project directory
        timestamp: ISO timestamp (default: now)

    Returns:
        The created session
    """
    _, storage = _open_storage()
    with storage:
        session = storage.create_session(project_path, timestamp or utc_now())
    return session.to_dict()


@mcp.tool()
def log_session_end(session_id: str, timestamp: str | None = None) -> dict:
    """End a session and record its wall-clock duration.

    Args:
        session_id: Session to close
        timestamp: ISO timestamp (default: now)

    Returns:
        The closed session
    """
    _, storage = _open_storage()
    with storage:
        session = storage.end_session(session_id, timestamp or utc_now())
    return session.to_dict()


@mcp.tool()
def log_activity(
    session_id: str,
    activity_type: str,
    timestamp: str | None = None,
    metadata: dict | None = None,
    tool_detail: dict | None = None,
) -> dict:
    """Record an activity in a session.

    Args:
        session_id: Owning session
        activity_type: message, assistant_response, tool_use, error or other
        timestamp: ISO timestamp (default: now)
        metadata: Small descriptive attributes (prompt, tool name, ...)
        tool_detail: Full tool input/response payload

    Returns:
        The recorded activity's id, type and timestamp
    """
    _, storage = _open_storage()
    with storage:
        activity = storage.log_activity(
            session_id, activity_type, timestamp or utc_now(), metadata, tool_detail
        )
    return {
        "id": activity.id,
        "session_id": activity.session_id,
        "activity_type": activity.activity_type,
        "timestamp": format_timestamp(activity.timestamp),
    }


@mcp.tool()
def get_time_report(
    start_date: str, end_date: str | None = None, project_path: str | None = None
) -> dict:
    """Get estimated active time for sessions started in a date range.

    Args:
        start_date: First date, YYYY-MM-DD
        end_date: Last date, YYYY-MM-DD (default: today)
        project_path: Optional exact project path filter

    Returns:
        Totals, daily and per-project breakdowns, per-session details and a text summary
    """
    settings, storage = _open_storage()
    with storage:
        report = build_report(
            storage,
            start_date=start_date,
            end_date=end_date,
            project_path=project_path,
            idle_cap=settings.idle_cap_minutes,
            base_minutes=settings.base_minutes,
        )
    report["summary"] = format_time_report(report)
    return report


@mcp.tool()
def get_session_stats(limit: int = 10, project_path: str | None = None) -> dict:
    """Get the most recently started sessions.

    Args:
        limit: Number of sessions (default: 10)
        project_path: Optional exact project path filter

    Returns:
        Recent sessions, newest first
    """
    _, storage = _open_storage()
    with storage:
        sessions = storage.get_recent_sessions(limit=limit, project_path=project_path)
    return {"recent_sessions": [s.to_dict() for s in sessions]}


@mcp.tool()
def get_current_session(project_path: str) -> dict:
    """Get the open session for a project, if any.

    Args:
        project_path: Exact project path

    Returns:
        The newest open session, or None under current_session
    """
    _, storage = _open_storage()
    with storage:
        session = storage.get_current_session(project_path)
    return {"current_session": session.to_dict() if session else None}


@mcp.tool()
def get_activities(
    start_date: str | None = None,
    end_date: str | None = None,
    session_id: str | None = None,
    activity_type: str | None = None,
    project_path: str | None = None,
    limit: int | None = None,
    fields: list[str] | None = None,
    continue_after: str | None = None,
    token_limit: int | None = None,
) -> dict:
    """Get a token-bounded page of flattened activities, newest first.

    Pass the returned continue_after back to fetch the next page. An empty page
    with has_more=True means the next activity does not fit: raise token_limit.

    Args:
        start_date: First date, YYYY-MM-DD
        end_date: Last date, YYYY-MM-DD
        session_id: Optional session filter
        activity_type: Optional activity kind filter
        project_path: Optional exact project path filter
        limit: Optional cap on activities considered
        fields: Keys to return (e.g. ["timestamp", "tool_detail.tool_name"])
        continue_after: Cursor from a previous page
        token_limit: Page budget (default: 20000)

    Returns:
        activities, count, estimated_tokens, has_more, continue_after
    """
    settings, storage = _open_storage()
    with storage:
        return _get_activities(
            storage,
            start_date=start_date,
            end_date=end_date,
            session_id=session_id,
            activity_type=activity_type,
            project_path=project_path,
            limit=limit,
            fields=fields,
            continue_after=continue_after,
            token_limit=token_limit or settings.token_limit,
            page_overhead=settings.page_overhead_tokens,
            strict=False,
        )


@mcp.tool()
def get_timesheet(start_date: str | None = None, end_date: str | None = None) -> dict:
    """Get a detailed timesheet of billable hours per session.

    Args:
        start_date: First date, YYYY-MM-DD (default: yesterday)
        end_date: Last date, YYYY-MM-DD (default: start_date)

    Returns:
        Per-session billable hours, activity entries and overall totals
    """
    _, storage = _open_storage()
    with storage:
        return build_timesheet(storage, start_date=start_date, end_date=end_date)


def create_app():
    """Create the ASGI app for uvicorn."""
    # stateless_http=True allows resilience to server restarts
    return mcp.http_app(stateless_http=True)


def main():
    """Run the MCP server."""
    import uvicorn

    logging.basicConfig(
        level=logging.DEBUG if os.environ.get("DEV_MODE") else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    port = int(os.environ.get("PORT", 8082))
    host = os.environ.get("HOST", "127.0.0.1")

    print(f"Starting Claude Time Tracker on {host}:{port}")
    print(
        f"Add to Claude Code: claude mcp add --transport http --scope user claude-time http://{host}:{port}/mcp"
    )

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()

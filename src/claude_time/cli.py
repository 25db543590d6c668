"""Command-line interface for Claude Code time tracking."""

import argparse
import base64
import binascii
import json
import logging
import os
import sys
from pathlib import Path

from claude_time.activities import get_activities
from claude_time.config import Settings
from claude_time.errors import NotFoundError, TimeTrackerError
from claude_time.reports import build_report, format_time_report
from claude_time.storage import SQLiteStorage
from claude_time.timesheet import build_timesheet, describe_activity, format_timesheet
from claude_time.timestamps import format_timestamp, utc_now

logger = logging.getLogger("claude-time")

SESSION_ID_FILENAME = ".current-session-id"

# Formatter registry: list of (predicate, formatter) tuples
# Each predicate checks if this formatter can handle the data
# Order matters - first match wins
_FORMATTERS: list[tuple[callable, callable]] = []


def _register_formatter(predicate: callable):
    """Decorator to register a formatter with its predicate."""

    def decorator(formatter: callable):
        _FORMATTERS.append((predicate, formatter))
        return formatter

    return decorator


@_register_formatter(lambda d: "daily_breakdown" in d and "project_breakdown" in d)
def _format_report(data: dict) -> list[str]:
    return format_time_report(data).rstrip("\n").split("\n")


@_register_formatter(lambda d: "timesheet_sessions" in d)
def _format_timesheet(data: dict) -> list[str]:
    return format_timesheet(data).rstrip("\n").split("\n")


@_register_formatter(lambda d: "activities" in d and "has_more" in d)
def _format_activities(data: dict) -> list[str]:
    lines = [f"Activities: {data['count']} (~{data['estimated_tokens']} tokens)"]
    for record in data["activities"]:
        ts = record.get("timestamp", "")
        lines.append(f"  [{ts}] {record.get('project_name', '')}: {describe_activity(record)}")
    if data["has_more"]:
        lines.append("")
        lines.append(f"More activities available: --continue-after {data['continue_after']}")
    return lines


@_register_formatter(lambda d: "session_started" in d)
def _format_session_started(data: dict) -> list[str]:
    session = data["session_started"]
    lines = []
    if data.get("auto_closed"):
        lines.append(f"Previous session auto-closed: {data['auto_closed']}")
    lines += [
        f"Session started: {session['id']}",
        f"Project: {session['project_name']}",
        f"Time: {session['start_time']}",
    ]
    return lines


@_register_formatter(lambda d: "session_ended" in d)
def _format_session_ended(data: dict) -> list[str]:
    session = data["session_ended"]
    return [
        f"Session ended: {session['id']}",
        f"Duration: {session['duration_minutes']:.2f} minutes",
        f"Time: {session['end_time']}",
    ]


@_register_formatter(lambda d: "current_session" in d)
def _format_current_session(data: dict) -> list[str]:
    session = data["current_session"]
    if not session:
        return ["No active session found for this project"]
    return [
        f"Active session: {session['id']}",
        f"Project: {session['project_name']}",
        f"Started: {session['start_time']}",
    ]


@_register_formatter(lambda d: "recent_sessions" in d)
def _format_recent_sessions(data: dict) -> list[str]:
    sessions = data["recent_sessions"]
    lines = [f"=== Recent {len(sessions)} Sessions ===", ""]
    for index, session in enumerate(sessions, 1):
        duration = (
            f"{session['duration_minutes']:.2f} min"
            if session["duration_minutes"] is not None
            else "In progress"
        )
        lines += [
            f"{index}. {session['project_name']}",
            f"   Started: {session['start_time']}",
            f"   Duration: {duration}",
            f"   Messages: {session['message_count']}, Tools: {session['tool_use_count']}",
            "",
        ]
    return lines


@_register_formatter(lambda d: "activity_count" in d and "db_path" in d)
def _format_status(data: dict) -> list[str]:
    lines = [
        f"Database: {data.get('db_path', 'unknown')}",
        f"Size: {data.get('db_size_bytes', 0) / 1024:.1f} KB",
        f"Sessions: {data['session_count']} ({data.get('open_session_count', 0)} open)",
        f"Activities: {data['activity_count']}",
    ]
    if data.get("earliest_activity"):
        lines.append(
            f"Date range: {data['earliest_activity'][:10]} to {data['latest_activity'][:10]}"
        )
    return lines


def format_output(data: dict, json_output: bool = False) -> str:
    """Format output as JSON or human-readable."""
    if json_output:
        return json.dumps(data, indent=2, default=str)

    for predicate, formatter in _FORMATTERS:
        if predicate(data):
            return "\n".join(formatter(data))

    return json.dumps(data, indent=2, default=str)


def _settings(args) -> Settings:
    settings = Settings.from_env()
    if getattr(args, "db", None):
        settings.db_path = Path(args.db)
    return settings


def _session_id_file(settings: Settings) -> Path:
    return settings.db_path.parent / SESSION_ID_FILENAME


def _read_session_id(settings: Settings) -> str | None:
    try:
        return _session_id_file(settings).read_text(encoding="utf-8").strip() or None
    except FileNotFoundError:
        return None


def _write_session_id(settings: Settings, session_id: str) -> None:
    _session_id_file(settings).write_text(session_id, encoding="utf-8")


def _clear_session_id(settings: Settings) -> None:
    _session_id_file(settings).unlink(missing_ok=True)


def _decode_base64_json(value: str, label: str) -> dict | None:
    try:
        return json.loads(base64.b64decode(value).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Could not decode base64 {label}: {e}")
        return None


def cmd_session_start(args):
    """Start a new session, closing one left open."""
    settings = _settings(args)
    project_path = args.project_path or str(Path.cwd())
    timestamp = args.timestamp or format_timestamp(utc_now())

    with SQLiteStorage(settings.db_path) as storage:
        auto_closed = None
        previous = _read_session_id(settings)
        if previous:
            try:
                storage.end_session(previous, timestamp)
                auto_closed = previous
            except NotFoundError as e:
                logger.error(f"Could not auto-close previous session: {e}")

        session = storage.create_session(project_path, timestamp)
        _write_session_id(settings, session.id)

    result = {"session_started": session.to_dict(), "auto_closed": auto_closed}
    print(format_output(result, args.json))


def cmd_session_end(args):
    """End the current session."""
    settings = _settings(args)
    session_id = _read_session_id(settings)
    if not session_id:
        print("No active session found", file=sys.stderr)
        sys.exit(1)

    timestamp = args.timestamp or format_timestamp(utc_now())
    with SQLiteStorage(settings.db_path) as storage:
        session = storage.end_session(session_id, timestamp)
    _clear_session_id(settings)

    print(format_output({"session_ended": session.to_dict()}, args.json))


def cmd_log_activity(args):
    """Log an activity against the current session."""
    settings = _settings(args)
    session_id = _read_session_id(settings)
    if not session_id:
        # Hooks call this on every event; a missing session must not fail them
        logger.error("No active session found for log-activity")
        return

    activity_type = args.type or args.activity_type or "tool_use"
    timestamp = args.timestamp or format_timestamp(utc_now())

    metadata = None
    if args.metadata_base64:
        metadata = _decode_base64_json(args.metadata_base64, "metadata")
    elif args.metadata:
        try:
            metadata = json.loads(args.metadata)
        except json.JSONDecodeError as e:
            logger.error(f"Could not parse metadata JSON {args.metadata!r}: {e}")

    tool_detail = None
    if args.tool_detail_base64:
        tool_detail = _decode_base64_json(args.tool_detail_base64, "tool detail")

    with SQLiteStorage(settings.db_path) as storage:
        activity = storage.log_activity(session_id, activity_type, timestamp, metadata, tool_detail)

    if args.json:
        print(
            format_output(
                {
                    "id": activity.id,
                    "session_id": activity.session_id,
                    "activity_type": activity.activity_type,
                    "timestamp": format_timestamp(activity.timestamp),
                },
                True,
            )
        )


def cmd_current_session(args):
    """Show the open session for a project."""
    settings = _settings(args)
    project_path = args.project_path or str(Path.cwd())
    with SQLiteStorage(settings.db_path) as storage:
        session = storage.get_current_session(project_path)
    result = {"current_session": session.to_dict() if session else None}
    print(format_output(result, args.json))


def cmd_report(args):
    """Show a time report."""
    settings = _settings(args)
    with SQLiteStorage(settings.db_path) as storage:
        result = build_report(
            storage,
            start_date=args.start_date,
            end_date=args.end_date,
            project_path=args.project_path,
            idle_cap=settings.idle_cap_minutes,
            base_minutes=settings.base_minutes,
        )
    print(format_output(result, args.json))


def cmd_stats(args):
    """Show recent sessions."""
    settings = _settings(args)
    with SQLiteStorage(settings.db_path) as storage:
        sessions = storage.get_recent_sessions(limit=args.limit, project_path=args.project_path)
    result = {"recent_sessions": [s.to_dict() for s in sessions]}
    print(format_output(result, args.json))


def cmd_activities(args):
    """Show one token-bounded page of activities."""
    settings = _settings(args)
    fields = [f.strip() for f in args.fields.split(",") if f.strip()] if args.fields else None
    with SQLiteStorage(settings.db_path) as storage:
        result = get_activities(
            storage,
            start_date=args.start_date,
            end_date=args.end_date,
            session_id=args.session_id,
            activity_type=args.type,
            project_path=args.project,
            limit=args.limit,
            fields=fields,
            continue_after=args.continue_after,
            token_limit=args.token_limit or settings.token_limit,
            page_overhead=settings.page_overhead_tokens,
        )
    print(format_output(result, args.json))


def cmd_timesheet(args):
    """Show a detailed timesheet."""
    settings = _settings(args)
    with SQLiteStorage(settings.db_path) as storage:
        result = build_timesheet(storage, start_date=args.start_date, end_date=args.end_date)
    print(format_output(result, args.json))


def cmd_status(args):
    """Show database status."""
    settings = _settings(args)
    with SQLiteStorage(settings.db_path) as storage:
        result = storage.get_db_stats()
    print(format_output(result, args.json))


def main():
    """CLI entry point."""
    epilog = """
Examples:
  claude-time session-start                  # Start a session in the current directory
  claude-time log-activity message           # Log a user message
  claude-time report 2025-01-01              # Active time since Jan 1st
  claude-time activities --token-limit 5000  # First page of recent activity
  claude-time timesheet 2025-01-06 2025-01-10

All commands support --json for machine-readable output.
Data location: ~/.claude/contrib/time-tracker/time-tracker.db (override with CLAUDE_TIME_DB)
"""
    parser = argparse.ArgumentParser(
        description="Claude Time Tracker CLI - Track active time in Claude Code sessions",
        prog="claude-time",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--db", help="Database path (default: $CLAUDE_TIME_DB)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # session-start
    sub = subparsers.add_parser("session-start", help="Start a new session")
    sub.add_argument("project_path", nargs="?", help="Project path (default: current dir)")
    sub.add_argument("timestamp", nargs="?", help="ISO timestamp (default: now)")
    sub.set_defaults(func=cmd_session_start)

    # session-end
    sub = subparsers.add_parser("session-end", help="End the current session")
    sub.add_argument("timestamp", nargs="?", help="ISO timestamp (default: now)")
    sub.set_defaults(func=cmd_session_end)

    # log-activity
    sub = subparsers.add_parser("log-activity", help="Log an activity")
    sub.add_argument("activity_type", nargs="?", help="Activity type (default: tool_use)")
    sub.add_argument("timestamp", nargs="?", help="ISO timestamp (default: now)")
    sub.add_argument("metadata", nargs="?", help="Metadata as a JSON object")
    sub.add_argument("--type", help="Activity type (overrides the positional type)")
    sub.add_argument("--metadata-base64", help="Base64-encoded metadata JSON")
    sub.add_argument("--tool-detail-base64", help="Base64-encoded tool detail JSON")
    sub.set_defaults(func=cmd_log_activity)

    # current-session
    sub = subparsers.add_parser("current-session", help="Show current session info")
    sub.add_argument("project_path", nargs="?", help="Project path (default: current dir)")
    sub.set_defaults(func=cmd_current_session)

    # report
    sub = subparsers.add_parser("report", help="Generate time report")
    sub.add_argument("start_date", help="Start date (YYYY-MM-DD)")
    sub.add_argument("end_date", nargs="?", help="End date (default: today)")
    sub.add_argument("project_path", nargs="?", help="Project path filter")
    sub.set_defaults(func=cmd_report)

    # stats
    sub = subparsers.add_parser("stats", help="Show recent sessions")
    sub.add_argument("limit", nargs="?", type=int, default=10, help="Sessions (default: 10)")
    sub.add_argument("project_path", nargs="?", help="Project path filter")
    sub.set_defaults(func=cmd_stats)

    # activities
    sub = subparsers.add_parser("activities", help="Show a page of flattened activities")
    sub.add_argument("--start-date", help="First date (YYYY-MM-DD)")
    sub.add_argument("--end-date", help="Last date (YYYY-MM-DD)")
    sub.add_argument("--session-id", help="Session filter")
    sub.add_argument("--type", help="Activity type filter")
    sub.add_argument("--project", help="Project path filter")
    sub.add_argument("--limit", type=int, help="Maximum activities")
    sub.add_argument("--fields", help="Comma-separated fields to return")
    sub.add_argument("--continue-after", help="Cursor from a previous page")
    sub.add_argument("--token-limit", type=int, help="Token budget (default: 20000)")
    sub.set_defaults(func=cmd_activities)

    # timesheet
    sub = subparsers.add_parser("timesheet", help="Generate detailed timesheet")
    sub.add_argument("start_date", nargs="?", help="Start date (default: yesterday)")
    sub.add_argument("end_date", nargs="?", help="End date (default: start date)")
    sub.set_defaults(func=cmd_timesheet)

    # status
    sub = subparsers.add_parser("status", help="Show database status")
    sub.set_defaults(func=cmd_status)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if os.environ.get("DEV_MODE") else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        args.func(args)
    except (TimeTrackerError, ValueError) as e:
        # ValueError covers malformed CLAUDE_TIME_* settings and unparseable dates
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

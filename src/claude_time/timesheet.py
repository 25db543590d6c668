"""Detailed per-session timesheets built from the flattened activity stream."""

from __future__ import annotations

import math
from collections import Counter
from datetime import date, timedelta

from claude_time.activities import iter_activity_records
from claude_time.storage import SQLiteStorage
from claude_time.timestamps import parse_date, parse_timestamp, utc_today

DESCRIPTION_WIDTH = 80
FILE_EDIT_TOOLS = ("Edit", "Write")


def _truncate(text: str, width: int = DESCRIPTION_WIDTH) -> str:
    return text[:width] + ("..." if len(text) > width else "")


def describe_activity(record: dict) -> str:
    """One-line description of a flattened activity record."""
    kind = record.get("activity_type")
    if kind == "message":
        return f"USER: {_truncate(str(record.get('metadata.prompt') or ''))}"
    if kind == "assistant_response":
        return f"CLAUDE: {_truncate(str(record.get('metadata.response_text') or ''))}"
    if kind == "tool_use":
        tool = record.get("tool_detail.tool_name") or record.get("metadata.tool") or "unknown"
        file_path = record.get("tool_detail.tool_input.file_path")
        description = record.get("metadata.description")
        if file_path:
            name = str(file_path).replace("\\", "/").rsplit("/", 1)[-1]
            return f"TOOL: {tool} - {name}"
        if description:
            return f"TOOL: {tool} - {description}"
        return f"TOOL: {tool}"
    return (kind or "unknown").upper()


def _hour_key(record: dict) -> str:
    return parse_timestamp(record["timestamp"]).strftime("%Y-%m-%d %H:00")


def _count_kinds(records: list[dict]) -> dict[str, int]:
    counts = Counter(r.get("activity_type") for r in records)
    return {
        "message": counts.get("message", 0),
        "assistant_response": counts.get("assistant_response", 0),
        "tool_use": counts.get("tool_use", 0),
        "other": sum(
            n for k, n in counts.items() if k not in ("message", "assistant_response", "tool_use")
        ),
    }


def _tool_counts(records: list[dict]) -> Counter:
    return Counter(
        r["tool_detail.tool_name"]
        for r in records
        if r.get("activity_type") == "tool_use" and r.get("tool_detail.tool_name")
    )


def _files_modified(records: list[dict]) -> list[str]:
    files: dict[str, None] = {}
    for r in records:
        if r.get("tool_detail.tool_name") in FILE_EDIT_TOOLS:
            file_path = r.get("tool_detail.tool_input.file_path")
            if file_path:
                files[file_path] = None
    return list(files)


def build_timesheet(
    storage: SQLiteStorage,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    today: date | None = None,
) -> dict:
    """Build a detailed timesheet for a date range.

    Billable hours count distinct UTC clock hours holding at least one activity.
    With no dates, the timesheet covers yesterday; with only start_date it
    covers that single day.
    """
    if start_date is None:
        start = end = (today or utc_today()) - timedelta(days=1)
    else:
        start = parse_date(start_date)
        end = parse_date(end_date) if end_date else start

    by_session: dict[str, dict] = {}
    all_records: list[dict] = []
    for _, record in iter_activity_records(storage, start_date=start, end_date=end):
        all_records.append(record)
        entry = by_session.setdefault(
            record["session_id"],
            {
                "session_id": record["session_id"],
                "project_name": record["project_name"],
                "session_start": record["session_start"],
                "records": [],
            },
        )
        entry["records"].append(record)

    sessions = []
    for entry in sorted(by_session.values(), key=lambda e: parse_timestamp(e["session_start"])):
        records = sorted(entry["records"], key=lambda r: parse_timestamp(r["timestamp"]))
        tools = _tool_counts(records)
        sessions.append(
            {
                "session_id": entry["session_id"],
                "project_name": entry["project_name"],
                "session_start": entry["session_start"],
                "billable_hours": len({_hour_key(r) for r in records}),
                "activity_count": len(records),
                "counts": _count_kinds(records),
                "top_tools": tools.most_common(5),
                "files_modified": _files_modified(records),
                "entries": [
                    {"timestamp": r["timestamp"], "description": describe_activity(r)}
                    for r in records
                ],
            }
        )

    hourly = Counter(_hour_key(r) for r in all_records)
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "total_sessions": len(sessions),
        "total_billable_hours": sum(s["billable_hours"] for s in sessions),
        "total_activities": len(all_records),
        "counts": _count_kinds(all_records),
        "top_tools": _tool_counts(all_records).most_common(15),
        "hourly_activity": dict(sorted(hourly.items())),
        "timesheet_sessions": sessions,
    }


def format_timesheet(sheet: dict) -> str:
    """Render a timesheet as plain text."""
    rule = "=" * 87
    thin = "-" * 87
    lines = [rule, f"TIMESHEET: {sheet['start_date']} to {sheet['end_date']}", rule]

    for index, session in enumerate(sheet["timesheet_sessions"], 1):
        lines += [
            "",
            f"SESSION {index}: {session['project_name']}",
            f"Session ID: {session['session_id']}",
            f"Started: {session['session_start']}",
            f"Billable Hours: {session['billable_hours']}h ({session['activity_count']} activities)",
            thin,
        ]
        for item in session["entries"]:
            time_part = item["timestamp"][11:19]
            lines.append(f"{time_part:<12} {item['description']}")
        lines.append(thin)
        counts = session["counts"]
        lines.append(
            f"Activities: {session['activity_count']} ({counts['message']} messages, "
            f"{counts['assistant_response']} responses, {counts['tool_use']} tool uses)"
        )
        if session["top_tools"]:
            tools = ", ".join(f"{tool}({count})" for tool, count in session["top_tools"])
            lines.append(f"Top Tools: {tools}")
        files = session["files_modified"]
        if files:
            lines.append(f"Files Modified: {len(files)} files")
            lines += [f"  - {f}" for f in files[:3]]
            if len(files) > 3:
                lines.append(f"  ... and {len(files) - 3} more")

    counts = sheet["counts"]
    lines += [
        "",
        rule,
        "SUMMARY",
        rule,
        f"Total Sessions: {sheet['total_sessions']}",
        f"TOTAL BILLABLE HOURS: {sheet['total_billable_hours']}h",
        f"Total Activities: {sheet['total_activities']}",
        f"  - User Messages: {counts['message']}",
        f"  - Claude Responses: {counts['assistant_response']}",
        f"  - Tool Uses: {counts['tool_use']}",
    ]
    if sheet["top_tools"]:
        lines += ["", "TOP TOOLS USED"]
        lines += [f"  {tool:<40} {count:>4} times" for tool, count in sheet["top_tools"]]
    if sheet["hourly_activity"]:
        lines += ["", "ACTIVITY BY HOUR"]
        for hour, count in sheet["hourly_activity"].items():
            bar = "#" * math.ceil(count / 5)
            lines.append(f"{hour} | {bar} {count} activities")
    return "\n".join(lines) + "\n"

"""Time report aggregation."""

from __future__ import annotations

from datetime import date

from claude_time.estimator import BASE_MINUTES, IDLE_CAP_MINUTES, estimate_active_minutes
from claude_time.storage import SQLiteStorage
from claude_time.timestamps import parse_date, utc_today


def build_report(
    storage: SQLiteStorage,
    start_date: date | str,
    end_date: date | str | None = None,
    project_path: str | None = None,
    idle_cap: float = IDLE_CAP_MINUTES,
    base_minutes: float = BASE_MINUTES,
    today: date | None = None,
) -> dict:
    """Build an active-time report for sessions started in a date range.

    Args:
        storage: Storage instance
        start_date: First calendar date (inclusive)
        end_date: Last calendar date (inclusive), defaults to today
        project_path: Optional exact project path filter
        idle_cap: Idle cap passed to the estimator
        base_minutes: Base minutes passed to the estimator
        today: Date used when end_date is omitted (defaults to the UTC date)

    Returns:
        Dict with totals, daily_breakdown, project_breakdown and per-session details
    """
    start = parse_date(start_date)
    end = parse_date(end_date) if end_date else (today or utc_today())

    sessions = storage.get_sessions_started_between(start, end, project_path)

    total_minutes = 0.0
    daily_breakdown: dict[str, dict] = {}
    project_breakdown: dict[str, dict] = {}
    session_details = []

    for session in sessions:
        active = estimate_active_minutes(
            session.duration_minutes,
            storage.get_activity_timestamps(session.id),
            idle_cap=idle_cap,
            base_minutes=base_minutes,
        )
        total_minutes += active

        day = session.start_time.date().isoformat()
        daily = daily_breakdown.setdefault(day, {"sessions": 0, "minutes": 0.0})
        daily["sessions"] += 1
        daily["minutes"] += active

        per_project = project_breakdown.setdefault(
            session.project_name, {"sessions": 0, "minutes": 0.0}
        )
        per_project["sessions"] += 1
        per_project["minutes"] += active

        details = session.to_dict()
        details["active_minutes"] = active
        details["active_hours"] = active / 60
        session_details.append(details)

    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "project_path": project_path,
        "total_minutes": total_minutes,
        "total_hours": total_minutes / 60,
        "total_sessions": len(sessions),
        "daily_breakdown": daily_breakdown,
        "project_breakdown": project_breakdown,
        "sessions": session_details,
    }


def format_time_report(report: dict) -> str:
    """Render a report as text: projects by descending minutes, then days ascending."""
    lines = [
        f"=== Time Report: {report['start_date']} to {report['end_date']} ===",
        "",
        f"Total Active Time: {report['total_hours']:.2f} hours "
        f"({round(report['total_minutes'])} minutes)",
        f"Total Sessions: {report['total_sessions']}",
        "",
    ]

    if report["project_breakdown"]:
        lines.append("By Project:")
        ranked = sorted(
            report["project_breakdown"].items(), key=lambda item: item[1]["minutes"], reverse=True
        )
        for project, data in ranked:
            lines.append(f"  {project}: {data['minutes'] / 60:.2f}h ({data['sessions']} sessions)")
        lines.append("")

    if report["daily_breakdown"]:
        lines.append("By Day:")
        for day, data in sorted(report["daily_breakdown"].items()):
            lines.append(f"  {day}: {data['minutes'] / 60:.2f}h ({data['sessions']} sessions)")

    return "\n".join(lines).rstrip() + "\n"

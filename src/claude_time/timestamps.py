"""Helpers for parsing and formatting instants and calendar dates.

All instants are handled as timezone-aware UTC datetimes. Naive values are
assumed to already be UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timezone


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or datetime into aware UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(ts: datetime | str | None) -> str | None:
    """Format an instant for output, using the ``Z`` suffix for UTC."""
    if ts is None:
        return None
    if isinstance(ts, str):
        return ts
    return parse_timestamp(ts).isoformat().replace("+00:00", "Z")


def parse_date(value: str | date | datetime) -> date:
    """Parse a calendar date; full timestamps are reduced to their UTC date."""
    if isinstance(value, datetime):
        return parse_timestamp(value).date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if len(text) > 10:
        return parse_timestamp(text).date()
    return date.fromisoformat(text)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()

"""Token-bounded activity export with cursor-based continuation.

Activities are streamed newest-first, flattened into dot-path records and
appended to a page until the next record would push the page's estimated
token count over the budget. The page then carries a ``continue_after``
cursor: the timestamp of the first activity it did not deliver. Passing
that cursor back resumes with activities at or before that instant, so
chained pages concatenate into the full result set without gaps or
overlaps (as long as the store is not written to in between).
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterator, Sequence
from contextlib import closing
from datetime import date, datetime

from claude_time.attributes import flatten, parse_or_raw, project
from claude_time.config import DEFAULT_PAGE_OVERHEAD_TOKENS, DEFAULT_TOKEN_LIMIT
from claude_time.errors import MalformedAttributesError
from claude_time.storage import ActivityRow, SQLiteStorage
from claude_time.timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger("claude-time")

# Rough chars-per-token ratio used for budget estimates
CHARS_PER_TOKEN = 4


def estimate_tokens(record: dict) -> int:
    """Estimate the token cost of a record from the length of its compact JSON."""
    text = json.dumps(record, separators=(",", ":"), ensure_ascii=False, default=str)
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def flatten_activity(
    row: ActivityRow,
    fields: Sequence[str] | None = None,
    strict: bool = True,
) -> dict:
    """Turn a stored activity into a flat record.

    Args:
        row: Activity joined with its session
        fields: Optional allow-list of keys; disables the default large-field exclusions
        strict: Propagate MalformedAttributesError instead of degrading to a ``raw`` leaf

    Returns:
        Flat dict of base fields plus ``metadata.*`` and ``tool_detail.*`` paths
    """
    record = {
        "id": row.id,
        "session_id": row.session_id,
        "activity_type": row.activity_type,
        "timestamp": format_timestamp(row.timestamp),
        "project_path": row.project_path,
        "project_name": row.project_name,
        "session_start": format_timestamp(row.session_start),
    }

    for prefix, text in (("metadata", row.metadata_json), ("tool_detail", row.tool_detail_json)):
        attr = parse_or_raw(text)
        if attr is None:
            continue
        try:
            record.update(flatten(attr.as_attributes(), prefix))
        except MalformedAttributesError:
            if strict:
                raise
            logger.warning(f"Could not flatten {prefix} of activity {row.id}; keeping raw text")
            record[f"{prefix}.raw"] = text

    return project(record, fields)


def iter_activity_records(
    storage: SQLiteStorage,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    session_id: str | None = None,
    activity_type: str | None = None,
    project_path: str | None = None,
    limit: int | None = None,
    fields: Sequence[str] | None = None,
    until: datetime | str | None = None,
    oldest: tuple[datetime, str] | None = None,
    strict: bool = True,
) -> Iterator[tuple[ActivityRow, dict]]:
    """Yield (row, flattened record) pairs newest-first for the given filters."""
    rows = storage.iter_activities(
        start_date=start_date,
        end_date=end_date,
        session_id=session_id,
        activity_type=activity_type,
        project_path=project_path,
        limit=limit,
        until=until,
        oldest=oldest,
    )
    with closing(rows):
        for row in rows:
            yield row, flatten_activity(row, fields=fields, strict=strict)


def get_activities(
    storage: SQLiteStorage,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    session_id: str | None = None,
    activity_type: str | None = None,
    project_path: str | None = None,
    limit: int | None = None,
    fields: Sequence[str] | None = None,
    continue_after: datetime | str | None = None,
    token_limit: int = DEFAULT_TOKEN_LIMIT,
    page_overhead: int = DEFAULT_PAGE_OVERHEAD_TOKENS,
    strict: bool = True,
) -> dict:
    """Get one token-bounded page of flattened activities, newest first.

    ``limit`` caps the whole chained result, not each page: it is resolved to
    the (timestamp, id) of the limit-th newest matching activity, and every
    page, continued or not, stops at that row.

    Args:
        storage: Storage instance
        start_date: Inclusive first calendar date of activity timestamps
        end_date: Inclusive last calendar date of activity timestamps
        session_id: Optional session filter
        activity_type: Optional activity kind filter
        project_path: Optional exact project path filter
        limit: Optional cap on the number of activities across all chained pages
        fields: Optional list of keys to return, in this order
        continue_after: Cursor from a previous page's ``continue_after``
        token_limit: Budget for the page's estimated tokens, envelope included
        page_overhead: Estimated tokens of the page envelope itself
        strict: Propagate MalformedAttributesError (see flatten_activity)

    Returns:
        Dict with activities, count, estimated_tokens, has_more and continue_after.
        estimated_tokens is the sum of the delivered records plus page_overhead,
        so a page with no activities reports page_overhead alone (which exceeds
        token_limit when token_limit < page_overhead). A page with no activities
        and has_more=True means the next activity alone does not fit in
        token_limit.
    """
    fields = list(fields) if fields else None
    cursor = parse_timestamp(continue_after) if continue_after else None
    oldest = None
    if limit:
        oldest = storage.get_activity_boundary(
            limit,
            start_date=start_date,
            end_date=end_date,
            session_id=session_id,
            activity_type=activity_type,
            project_path=project_path,
        )

    page: list[tuple[datetime, dict, int]] = []
    used = 0
    has_more = False
    next_cursor: datetime | None = None

    records = iter_activity_records(
        storage,
        start_date=start_date,
        end_date=end_date,
        session_id=session_id,
        activity_type=activity_type,
        project_path=project_path,
        fields=fields,
        until=cursor,
        oldest=oldest,
        strict=strict,
    )
    with closing(records):
        for row, record in records:
            size = estimate_tokens(record)
            if used + size + page_overhead > token_limit:
                has_more = True
                next_cursor = row.timestamp
                break
            page.append((row.timestamp, record, size))
            used += size

    if has_more:
        # Never split a run of identical timestamps across pages: the next page
        # starts at next_cursor inclusive and would repeat them.
        while page and page[-1][0] == next_cursor:
            used -= page.pop()[2]
        logger.debug(f"Activity page full at {used} tokens; continuing from {next_cursor}")

    activities = [record for _, record, _ in page]
    return {
        "activities": activities,
        "count": len(activities),
        "estimated_tokens": used + page_overhead,
        "token_limit": token_limit,
        "has_more": has_more,
        "continue_after": format_timestamp(next_cursor),
        "query": {
            "start_date": str(start_date) if start_date else None,
            "end_date": str(end_date) if end_date else None,
            "session_id": session_id,
            "activity_type": activity_type,
            "project_path": project_path,
            "limit": limit,
            "fields": fields,
            "continue_after": format_timestamp(cursor),
        },
    }

"""Active-time estimation for sessions.

Active minutes are a heuristic, not a measured duration. Consecutive
activities separated by more than the idle cap are assumed to bracket a
break, so each gap counts for at most ``idle_cap`` minutes. A fixed
``base_minutes`` is added for engagement around the first and last
activity. The arithmetic must stay exactly as is so that historical
reports keep their numbers.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from claude_time.config import DEFAULT_BASE_MINUTES, DEFAULT_IDLE_CAP_MINUTES
from claude_time.timestamps import parse_timestamp

IDLE_CAP_MINUTES = DEFAULT_IDLE_CAP_MINUTES
BASE_MINUTES = DEFAULT_BASE_MINUTES


def estimate_active_minutes(
    duration_minutes: float | None,
    activity_timestamps: Iterable[datetime | str],
    idle_cap: float = IDLE_CAP_MINUTES,
    base_minutes: float = BASE_MINUTES,
) -> float:
    """Estimate engaged minutes for one session.

    Args:
        duration_minutes: Wall-clock duration of the session, None if still open
        activity_timestamps: Activity instants in any order
        idle_cap: Maximum minutes credited to a single gap between activities
        base_minutes: Constant added when there are at least two activities

    Returns:
        Non-negative active minutes (fractional)
    """
    instants = sorted(parse_timestamp(ts) for ts in activity_timestamps)

    if len(instants) < 2:
        # Not enough signal: at most one idle cap's worth of the wall-clock duration
        return max(0.0, min(duration_minutes or 0.0, idle_cap))

    total = 0.0
    for prev, curr in zip(instants, instants[1:]):
        gap = (curr - prev).total_seconds() / 60
        total += max(0.0, min(gap, idle_cap))
    return total + base_minutes

"""Environment-driven settings for the time tracker."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# Default database location, alongside other Claude Code contrib tools
DEFAULT_DB_PATH = Path.home() / ".claude" / "contrib" / "time-tracker" / "time-tracker.db"

DEFAULT_IDLE_CAP_MINUTES = 30.0
DEFAULT_BASE_MINUTES = 5.0
DEFAULT_TOKEN_LIMIT = 20000
DEFAULT_PAGE_OVERHEAD_TOKENS = 25


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(slots=True)
class Settings:
    """Runtime configuration shared by the CLI and the MCP server."""

    db_path: Path = DEFAULT_DB_PATH
    idle_cap_minutes: float = DEFAULT_IDLE_CAP_MINUTES
    base_minutes: float = DEFAULT_BASE_MINUTES
    token_limit: int = DEFAULT_TOKEN_LIMIT
    page_overhead_tokens: int = DEFAULT_PAGE_OVERHEAD_TOKENS
    dev_mode: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``CLAUDE_TIME_*`` environment variables."""
        return cls(
            db_path=Path(os.environ.get("CLAUDE_TIME_DB", str(DEFAULT_DB_PATH))).expanduser(),
            idle_cap_minutes=_env_number(
                "CLAUDE_TIME_IDLE_CAP_MINUTES", DEFAULT_IDLE_CAP_MINUTES, float
            ),
            base_minutes=_env_number("CLAUDE_TIME_BASE_MINUTES", DEFAULT_BASE_MINUTES, float),
            token_limit=_env_number("CLAUDE_TIME_TOKEN_LIMIT", DEFAULT_TOKEN_LIMIT, int),
            page_overhead_tokens=_env_number(
                "CLAUDE_TIME_PAGE_OVERHEAD_TOKENS", DEFAULT_PAGE_OVERHEAD_TOKENS, int
            ),
            dev_mode=bool(os.environ.get("DEV_MODE")),
        )

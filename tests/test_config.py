"""Tests for environment-driven settings."""

from pathlib import Path

import pytest

from claude_time.config import DEFAULT_DB_PATH, Settings


class TestSettings:
    """Tests for Settings.from_env."""

    def test_defaults(self, monkeypatch):
        for name in (
            "CLAUDE_TIME_DB",
            "CLAUDE_TIME_IDLE_CAP_MINUTES",
            "CLAUDE_TIME_BASE_MINUTES",
            "CLAUDE_TIME_TOKEN_LIMIT",
            "CLAUDE_TIME_PAGE_OVERHEAD_TOKENS",
            "DEV_MODE",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()
        assert settings.db_path == DEFAULT_DB_PATH
        assert settings.idle_cap_minutes == 30
        assert settings.base_minutes == 5
        assert settings.token_limit == 20000
        assert settings.page_overhead_tokens == 25
        assert settings.dev_mode is False

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CLAUDE_TIME_DB", str(tmp_path / "x.db"))
        monkeypatch.setenv("CLAUDE_TIME_IDLE_CAP_MINUTES", "15")
        monkeypatch.setenv("CLAUDE_TIME_TOKEN_LIMIT", "500")
        monkeypatch.setenv("DEV_MODE", "1")

        settings = Settings.from_env()
        assert settings.db_path == Path(tmp_path / "x.db")
        assert settings.idle_cap_minutes == 15.0
        assert settings.token_limit == 500
        assert settings.dev_mode is True

    def test_blank_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_TIME_BASE_MINUTES", "  ")
        assert Settings.from_env().base_minutes == 5

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_TIME_TOKEN_LIMIT", "lots")
        with pytest.raises(ValueError, match="CLAUDE_TIME_TOKEN_LIMIT"):
            Settings.from_env()

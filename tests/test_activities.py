"""Tests for token-bounded activity pages."""

import pytest

from claude_time.activities import estimate_tokens, flatten_activity, get_activities
from claude_time.errors import MalformedAttributesError

ALL_TIMES = [
    "2025-01-01T14:05:00Z",
    "2025-01-01T14:00:00Z",
    "2025-01-01T09:25:00Z",
    "2025-01-01T09:10:00Z",
    "2025-01-01T09:00:00Z",
]


def collect_pages(storage, **kwargs):
    """Follow continue_after cursors until the last page."""
    pages = []
    cursor = None
    while True:
        page = get_activities(storage, continue_after=cursor, **kwargs)
        pages.append(page)
        if not page["has_more"]:
            return pages
        assert page["activities"], "page made no progress"
        cursor = page["continue_after"]


class TestEstimateTokens:
    """Tests for the token proxy."""

    def test_rounds_up(self):
        # '{"a":"b"}' is 9 characters
        assert estimate_tokens({"a": "b"}) == 3

    def test_empty(self):
        # '{}'
        assert estimate_tokens({}) == 1


class TestFlattenActivity:
    """Tests for turning stored rows into flat records."""

    def test_dot_paths(self, populated_storage):
        """Test nested tool details are reachable by dot path."""
        rows = populated_storage.iter_activities(
            activity_type="tool_use", until="2025-01-01T09:10:00Z"
        )
        record = flatten_activity(next(rows))
        rows.close()
        assert record["tool_detail.tool_name"] == "Edit"
        assert record["tool_detail.tool_input.file_path"] == "/work/alpha/login.py"
        assert record["metadata.tool"] == "Edit"
        assert record["project_name"] == "alpha"
        assert record["session_start"] == "2025-01-01T09:00:00Z"
        assert "tool_detail.tool_response.originalFile" not in record

    def test_malformed_json_becomes_raw(self, storage):
        """Test unparseable metadata appears under metadata.raw."""
        session = storage.create_session("/p/a", "2025-01-01T09:00:00Z")
        storage.add_raw_activity(session.id, "message", "2025-01-01T09:01:00Z", "{broken")
        record = flatten_activity(next(storage.iter_activities()))
        assert record["metadata.raw"] == "{broken"

    def test_flatten_failure_strict_and_lenient(self, storage, monkeypatch):
        """Test strict mode propagates flatten failures and lenient mode keeps raw text."""
        session = storage.create_session("/p/a", "2025-01-01T09:00:00Z")
        storage.add_raw_activity(session.id, "message", "2025-01-01T09:01:00Z", '{"a": {"b": 1}}')
        row = next(storage.iter_activities())

        def failing_flatten(attrs, prefix=""):
            raise MalformedAttributesError("boom")

        monkeypatch.setattr("claude_time.activities.flatten", failing_flatten)
        with pytest.raises(MalformedAttributesError):
            flatten_activity(row)
        record = flatten_activity(row, strict=False)
        assert record["metadata.raw"] == '{"a": {"b": 1}}'


class TestGetActivities:
    """Tests for paging."""

    def test_single_page(self, populated_storage):
        page = get_activities(populated_storage)
        assert page["count"] == 5
        assert [a["timestamp"] for a in page["activities"]] == ALL_TIMES
        assert page["has_more"] is False
        assert page["continue_after"] is None
        assert page["estimated_tokens"] <= page["token_limit"]

    def test_default_excludes_large_fields(self, populated_storage):
        page = get_activities(populated_storage)
        keys = set().union(*page["activities"])
        assert "tool_detail.tool_response.originalFile" not in keys
        assert "tool_detail.tool_response.file.content" not in keys
        assert "tool_detail.tool_response.file.numLines" in keys

    def test_fields_selection(self, populated_storage):
        """Test explicit fields are exact and ordered, and lift exclusions."""
        fields = ["timestamp", "tool_detail.tool_response.originalFile"]
        page = get_activities(populated_storage, activity_type="tool_use", fields=fields)
        assert page["activities"][0] == {"timestamp": "2025-01-01T14:00:00Z"}
        assert list(page["activities"][1]) == fields
        assert page["query"]["fields"] == fields

    def test_too_small_for_first_record(self, populated_storage):
        """Test a budget below the first record gives an empty page and a cursor."""
        page = get_activities(populated_storage, token_limit=1)
        assert page["activities"] == []
        assert page["has_more"] is True
        assert page["continue_after"] == "2025-01-01T14:05:00Z"
        # Empty pages report the envelope alone
        assert page["estimated_tokens"] == 25

    def test_resume_from_cursor(self, populated_storage):
        """Test the cursor includes the undelivered record."""
        page = get_activities(populated_storage, continue_after="2025-01-01T09:25:00Z")
        assert [a["timestamp"] for a in page["activities"]] == ALL_TIMES[2:]

    def test_pages_concatenate_to_full_set(self, populated_storage):
        """Test chained pages cover every record once and stay within budget."""
        full = get_activities(populated_storage)["activities"]
        token_limit = max(estimate_tokens(r) for r in full) + 25 + 5

        pages = collect_pages(populated_storage, token_limit=token_limit)
        assert len(pages) > 1
        for page in pages:
            assert page["estimated_tokens"] <= token_limit
        delivered = [a["id"] for page in pages for a in page["activities"]]
        assert delivered == [a["id"] for a in full]

    def test_ties_not_split(self, storage):
        """Test records sharing a timestamp land on the same page."""
        session = storage.create_session("/p/a", "2025-01-01T09:00:00Z")
        for ts in (
            "2025-01-01T09:30:00Z",
            "2025-01-01T09:20:00Z",
            "2025-01-01T09:20:00Z",
            "2025-01-01T09:10:00Z",
        ):
            storage.log_activity(session.id, "message", ts)

        fields = ["id", "timestamp"]
        full = get_activities(storage, fields=fields)["activities"]
        size = estimate_tokens(full[0])
        token_limit = 2 * size + 25

        pages = collect_pages(storage, fields=fields, token_limit=token_limit)
        times = [[a["timestamp"][11:16] for a in page["activities"]] for page in pages]
        assert times == [["09:30"], ["09:20", "09:20"], ["09:10"]]
        delivered = [a["id"] for page in pages for a in page["activities"]]
        assert delivered == [a["id"] for a in full]

    def test_limit_caps_chained_pages(self, storage):
        """Test limit bounds the concatenation of all pages, not each page."""
        session = storage.create_session("/p/a", "2025-01-01T09:00:00Z")
        for minute in range(10):
            storage.log_activity(session.id, "message", f"2025-01-01T09:{minute:02d}:00Z")

        fields = ["id", "timestamp"]
        full = get_activities(storage, fields=fields, limit=3)["activities"]
        assert len(full) == 3
        token_limit = 2 * estimate_tokens(full[0]) + 25

        pages = collect_pages(storage, fields=fields, limit=3, token_limit=token_limit)
        delivered = [a["id"] for page in pages for a in page["activities"]]
        assert delivered == [a["id"] for a in full]
        assert [page["count"] for page in pages] == [2, 1]

    def test_limit_inside_tie_run(self, storage):
        """Test a limit that cuts through equal timestamps still delivers exactly limit rows."""
        session = storage.create_session("/p/a", "2025-01-01T09:00:00Z")
        for _ in range(4):
            storage.log_activity(session.id, "message", "2025-01-01T09:20:00Z")
        storage.log_activity(session.id, "message", "2025-01-01T09:30:00Z")

        fields = ["id", "timestamp"]
        full = get_activities(storage, fields=fields, limit=3)["activities"]
        token_limit = 2 * estimate_tokens(full[0]) + 25

        pages = collect_pages(storage, fields=fields, limit=3, token_limit=token_limit)
        delivered = [a["id"] for page in pages for a in page["activities"]]
        assert delivered == [a["id"] for a in full]
        assert len(delivered) == 3
        assert [page["count"] for page in pages] == [1, 2]

    def test_filters(self, populated_storage, session_ids):
        page = get_activities(populated_storage, session_id=session_ids["beta"])
        assert page["count"] == 2
        page = get_activities(populated_storage, activity_type="message")
        assert {a["metadata.prompt"] for a in page["activities"]} == {
            "Fix the login bug",
            "Summarize the README",
        }
        page = get_activities(populated_storage, limit=2)
        assert page["count"] == 2
        assert page["has_more"] is False

    def test_lenient_mode_passes_through(self, populated_storage):
        page = get_activities(populated_storage, strict=False)
        assert page["count"] == 5

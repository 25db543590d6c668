"""SQLite storage backend for session time tracking."""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from claude_time.errors import NotFoundError, StoreUnavailableError
from claude_time.timestamps import format_timestamp, parse_date, parse_timestamp

logger = logging.getLogger("claude-time")

# Register datetime adapters/converters (required for Python 3.12+)


def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to a UTC ISO format string for SQLite storage."""
    return parse_timestamp(dt).isoformat()


def _convert_datetime(data: bytes) -> datetime:
    """Convert ISO format string from SQLite to an aware UTC datetime."""
    return parse_timestamp(data.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("TIMESTAMP", _convert_datetime)

# Activity kinds that bump a session counter
COUNTER_COLUMNS = {
    "message": "message_count",
    "tool_use": "tool_use_count",
    "assistant_response": "assistant_response_count",
}


def project_name_from_path(project_path: str) -> str:
    """Derive the display name of a project: the last path segment."""
    return project_path.replace("\\", "/").split("/")[-1] or "Unknown"


@dataclass
class Session:
    """A tracked Claude Code session."""

    id: str
    project_path: str
    project_name: str
    start_time: datetime
    end_time: datetime | None = None
    duration_minutes: float | None = None
    message_count: int = 0
    tool_use_count: int = 0
    assistant_response_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_path": self.project_path,
            "project_name": self.project_name,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "duration_minutes": self.duration_minutes,
            "message_count": self.message_count,
            "tool_use_count": self.tool_use_count,
            "assistant_response_count": self.assistant_response_count,
        }


@dataclass
class Activity:
    """A single logged activity. Immutable once written."""

    id: str
    session_id: str
    activity_type: str
    timestamp: datetime
    metadata: dict | None = None
    tool_detail: dict | None = None


@dataclass
class ActivityRow:
    """An activity joined with its owning session, attribute maps still as raw JSON text."""

    id: str
    session_id: str
    activity_type: str
    timestamp: datetime
    metadata_json: str | None
    tool_detail_json: str | None
    project_path: str
    project_name: str
    session_start: datetime


# Schema version for migrations
SCHEMA_VERSION = 3

# Migration functions: dict of version -> (migration_name, migration_func)
# Each migration upgrades FROM version-1 TO version
MIGRATIONS: dict[int, tuple[str, callable]] = {}


def migration(version: int, name: str):
    """Decorator to register a schema migration."""

    def decorator(func: callable):
        MIGRATIONS[version] = (name, func)
        return func

    return decorator


@migration(2, "add_activity_tool_detail")
def migrate_v2(conn):
    """Add the tool_detail column holding full tool payloads."""
    existing_cols = {row[1] for row in conn.execute("PRAGMA table_info(activities)")}
    if "tool_detail" not in existing_cols:
        conn.execute("ALTER TABLE activities ADD COLUMN tool_detail TEXT")


@migration(3, "add_assistant_response_count")
def migrate_v3(conn):
    """Add the assistant_response_count session counter."""
    existing_cols = {row[1] for row in conn.execute("PRAGMA table_info(sessions)")}
    if "assistant_response_count" not in existing_cols:
        conn.execute(
            "ALTER TABLE sessions ADD COLUMN assistant_response_count INTEGER DEFAULT 0"
        )


class SQLiteStorage:
    """SQLite-backed store for sessions and activities.

    The caller owns the handle: the connection is opened on first use and
    released by ``close()`` (or by leaving a ``with`` block).
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        """Close the underlying connection. Safe to call more than once."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _open(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
                )
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Cannot open database {self.db_path}: {e}") from e
            conn.row_factory = sqlite3.Row
            self._conn = conn
            try:
                self._init_db(conn)
            except sqlite3.DatabaseError as e:
                self.close()
                raise StoreUnavailableError(
                    f"Cannot initialize database {self.db_path}: {e}"
                ) from e
        return self._conn

    @contextmanager
    def _connect(self):
        """Context manager yielding the connection inside a transaction."""
        conn = self._open()
        try:
            yield conn
            conn.commit()
        except sqlite3.DatabaseError as e:
            conn.rollback()
            raise StoreUnavailableError(f"Database error on {self.db_path}: {e}") from e
        except BaseException:
            conn.rollback()
            raise

    def execute_query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        """Execute a SQL query and return all results.

        Args:
            sql: SQL query string
            params: Query parameters (tuple or list)

        Returns:
            List of sqlite3.Row objects
        """
        with self._connect() as conn:
            return conn.execute(sql, params).fetchall()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        """Get current schema version from database."""
        try:
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            return row[0] if row else 0
        except sqlite3.OperationalError:
            # Table doesn't exist yet
            return 0

    def _run_migrations(self, conn: sqlite3.Connection, current_version: int):
        """Run all pending migrations."""
        for version in range(current_version + 1, SCHEMA_VERSION + 1):
            if version in MIGRATIONS:
                name, migration_func = MIGRATIONS[version]
                logger.info(f"Running migration {version}: {name}")
                migration_func(conn)
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    def _init_db(self, conn: sqlite3.Connection):
        """Create tables if they don't exist."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                project_path TEXT NOT NULL,
                project_name TEXT,
                start_time TIMESTAMP NOT NULL,
                end_time TIMESTAMP,
                duration_minutes REAL,
                message_count INTEGER DEFAULT 0,
                tool_use_count INTEGER DEFAULT 0,
                assistant_response_count INTEGER DEFAULT 0,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions(start_time)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_path)")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS activities (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                activity_type TEXT NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                metadata TEXT,
                tool_detail TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (session_id) REFERENCES sessions(id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_activities_session ON activities(session_id)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_activities_timestamp ON activities(timestamp)"
        )

        current_version = self._get_schema_version(conn)
        if current_version < SCHEMA_VERSION:
            self._run_migrations(conn, current_version)
        conn.commit()

    # Session operations

    def create_session(self, project_path: str, timestamp: datetime | str) -> Session:
        """Create and persist a new open session."""
        session = Session(
            id=str(uuid.uuid4()),
            project_path=project_path,
            project_name=project_name_from_path(project_path),
            start_time=parse_timestamp(timestamp),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions (id, project_path, project_name, start_time)
                VALUES (?, ?, ?, ?)
                """,
                (session.id, session.project_path, session.project_name, session.start_time),
            )
        logger.debug(f"Created session {session.id} for {project_path}")
        return session

    def end_session(self, session_id: str, timestamp: datetime | str) -> Session:
        """Close a session, recording its end time and wall-clock duration.

        Raises:
            NotFoundError: if no session has this id
        """
        end_time = parse_timestamp(timestamp)
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                raise NotFoundError(session_id)
            session = self._row_to_session(row)
            # Not clamped: out-of-order timestamps give a negative duration
            session.end_time = end_time
            session.duration_minutes = (end_time - session.start_time).total_seconds() / 60
            conn.execute(
                "UPDATE sessions SET end_time = ?, duration_minutes = ? WHERE id = ?",
                (session.end_time, session.duration_minutes, session_id),
            )
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row:
                return self._row_to_session(row)
            return None

    def get_current_session(self, project_path: str) -> Session | None:
        """Get the newest open session for a project."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM sessions
                WHERE project_path = ? AND end_time IS NULL
                ORDER BY start_time DESC
                LIMIT 1
                """,
                (project_path,),
            ).fetchone()
            return self._row_to_session(row) if row else None

    def get_recent_sessions(self, limit: int = 10, project_path: str | None = None) -> list[Session]:
        """Get the most recently started sessions, newest first."""
        conditions = []
        params: list = []
        if project_path:
            conditions.append("project_path = ?")
            params.append(project_path)

        # Safe: where_clause is built from hardcoded condition strings, not user input
        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        rows = self.execute_query(
            f"""
            SELECT * FROM sessions
            WHERE {where_clause}
            ORDER BY start_time DESC
            LIMIT ?
            """,
            params,
        )
        return [self._row_to_session(row) for row in rows]

    def get_sessions_started_between(
        self,
        start_date: date | str,
        end_date: date | str,
        project_path: str | None = None,
    ) -> list[Session]:
        """Get sessions whose start falls on a calendar date in [start_date, end_date]."""
        conditions = ["DATE(start_time) >= DATE(?)", "DATE(start_time) <= DATE(?)"]
        params: list = [parse_date(start_date).isoformat(), parse_date(end_date).isoformat()]
        if project_path:
            conditions.append("project_path = ?")
            params.append(project_path)

        where_clause = " AND ".join(conditions)
        rows = self.execute_query(
            f"""
            SELECT * FROM sessions
            WHERE {where_clause}
            ORDER BY start_time DESC
            """,
            params,
        )
        return [self._row_to_session(row) for row in rows]

    def get_session_count(self) -> int:
        """Get total number of sessions."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM sessions").fetchone()
            return row["count"]

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        """Convert a database row to a Session object."""
        return Session(
            id=row["id"],
            project_path=row["project_path"],
            project_name=row["project_name"] or project_name_from_path(row["project_path"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            duration_minutes=row["duration_minutes"],
            message_count=row["message_count"] or 0,
            tool_use_count=row["tool_use_count"] or 0,
            assistant_response_count=row["assistant_response_count"] or 0,
        )

    # Activity operations

    def log_activity(
        self,
        session_id: str,
        activity_type: str,
        timestamp: datetime | str,
        metadata: dict | None = None,
        tool_detail: dict | None = None,
    ) -> Activity:
        """Record an activity and bump the owning session's counter."""
        activity = Activity(
            id=str(uuid.uuid4()),
            session_id=session_id,
            activity_type=activity_type,
            timestamp=parse_timestamp(timestamp),
            metadata=metadata,
            tool_detail=tool_detail,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO activities (id, session_id, activity_type, timestamp, metadata, tool_detail)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.id,
                    session_id,
                    activity_type,
                    activity.timestamp,
                    json.dumps(metadata) if metadata else None,
                    json.dumps(tool_detail) if tool_detail else None,
                ),
            )
            counter = COUNTER_COLUMNS.get(activity_type)
            if counter:
                # Safe: counter comes from the COUNTER_COLUMNS whitelist
                conn.execute(
                    f"UPDATE sessions SET {counter} = {counter} + 1 WHERE id = ?",
                    (session_id,),
                )
        return activity

    def add_raw_activity(
        self,
        session_id: str,
        activity_type: str,
        timestamp: datetime | str,
        metadata_json: str | None = None,
        tool_detail_json: str | None = None,
    ) -> str:
        """Insert an activity with pre-serialized attribute text, as written by older hooks."""
        activity_id = str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO activities (id, session_id, activity_type, timestamp, metadata, tool_detail)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    activity_id,
                    session_id,
                    activity_type,
                    parse_timestamp(timestamp),
                    metadata_json,
                    tool_detail_json,
                ),
            )
        return activity_id

    def get_activity_timestamps(self, session_id: str) -> list[datetime]:
        """Get a session's activity timestamps, oldest first."""
        rows = self.execute_query(
            "SELECT timestamp FROM activities WHERE session_id = ? ORDER BY timestamp ASC",
            (session_id,),
        )
        return [row["timestamp"] for row in rows]

    def get_activity_count(self) -> int:
        """Get total number of activities."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM activities").fetchone()
            return row["count"]

    def _activity_filters(
        self,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        session_id: str | None = None,
        activity_type: str | None = None,
        project_path: str | None = None,
    ) -> tuple[list[str], list]:
        """Build WHERE fragments and params for the activity/session join."""
        conditions = []
        params: list = []

        if start_date:
            conditions.append("DATE(a.timestamp) >= DATE(?)")
            params.append(parse_date(start_date).isoformat())
        if end_date:
            conditions.append("DATE(a.timestamp) <= DATE(?)")
            params.append(parse_date(end_date).isoformat())
        if session_id:
            conditions.append("a.session_id = ?")
            params.append(session_id)
        if activity_type:
            conditions.append("a.activity_type = ?")
            params.append(activity_type)
        if project_path:
            conditions.append("s.project_path = ?")
            params.append(project_path)
        return conditions, params

    def get_activity_boundary(
        self,
        position: int,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        session_id: str | None = None,
        activity_type: str | None = None,
        project_path: str | None = None,
    ) -> tuple[datetime, str] | None:
        """Get the (timestamp, id) of the position-th newest matching activity.

        Returns None when fewer than ``position`` activities match.
        """
        conditions, params = self._activity_filters(
            start_date, end_date, session_id, activity_type, project_path
        )
        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(position - 1)
        rows = self.execute_query(
            f"""
            SELECT a.id, a.timestamp
            FROM activities a
            JOIN sessions s ON a.session_id = s.id
            WHERE {where_clause}
            ORDER BY a.timestamp DESC, a.id DESC
            LIMIT 1 OFFSET ?
            """,
            params,
        )
        if not rows:
            return None
        return rows[0]["timestamp"], rows[0]["id"]

    def iter_activities(
        self,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        session_id: str | None = None,
        activity_type: str | None = None,
        project_path: str | None = None,
        limit: int | None = None,
        until: datetime | str | None = None,
        oldest: tuple[datetime, str] | None = None,
    ) -> Iterator[ActivityRow]:
        """Yield activities joined with their session, newest first.

        Rows are fetched lazily so a caller that stops early never loads the
        remaining (possibly very large) tool payloads.

        Args:
            start_date: Inclusive lower calendar date on the activity timestamp
            end_date: Inclusive upper calendar date on the activity timestamp
            session_id: Only this session's activities
            activity_type: Only this kind of activity
            project_path: Only activities of sessions in this project
            limit: Maximum number of rows
            until: Only activities at or before this instant
            oldest: Only activities at or newer than this (timestamp, id) row

        Yields:
            ActivityRow objects ordered by timestamp descending, then id descending
        """
        conditions, params = self._activity_filters(
            start_date, end_date, session_id, activity_type, project_path
        )
        if until is not None:
            conditions.append("a.timestamp <= ?")
            params.append(parse_timestamp(until))
        if oldest is not None:
            floor_ts, floor_id = parse_timestamp(oldest[0]), oldest[1]
            conditions.append("(a.timestamp > ? OR (a.timestamp = ? AND a.id >= ?))")
            params += [floor_ts, floor_ts, floor_id]

        # Safe: where_clause is built from hardcoded condition strings, not user input
        where_clause = " AND ".join(conditions) if conditions else "1=1"
        limit_clause = ""
        if limit:
            limit_clause = "LIMIT ?"
            params.append(limit)

        sql = f"""
            SELECT
                a.id, a.session_id, a.activity_type, a.timestamp,
                a.metadata, a.tool_detail,
                s.project_path, s.project_name,
                s.start_time AS "session_start [TIMESTAMP]"
            FROM activities a
            JOIN sessions s ON a.session_id = s.id
            WHERE {where_clause}
            ORDER BY a.timestamp DESC, a.id DESC
            {limit_clause}
        """
        with self._connect() as conn:
            for row in conn.execute(sql, params):
                yield ActivityRow(
                    id=row["id"],
                    session_id=row["session_id"],
                    activity_type=row["activity_type"],
                    timestamp=row["timestamp"],
                    metadata_json=row["metadata"],
                    tool_detail_json=row["tool_detail"],
                    project_path=row["project_path"],
                    project_name=row["project_name"]
                    or project_name_from_path(row["project_path"]),
                    session_start=row["session_start"],
                )

    # Utility operations

    def get_db_stats(self) -> dict:
        """Get database statistics."""
        with self._connect() as conn:
            session_count = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
            open_count = conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE end_time IS NULL"
            ).fetchone()[0]
            activity_count = conn.execute("SELECT COUNT(*) FROM activities").fetchone()[0]
            date_range = conn.execute(
                "SELECT MIN(timestamp) as min_ts, MAX(timestamp) as max_ts FROM activities"
            ).fetchone()

        db_size = self.db_path.stat().st_size if self.db_path.exists() else 0

        return {
            "session_count": session_count,
            "open_session_count": open_count,
            "activity_count": activity_count,
            "earliest_activity": date_range["min_ts"],
            "latest_activity": date_range["max_ts"],
            "db_size_bytes": db_size,
            "db_path": str(self.db_path),
        }


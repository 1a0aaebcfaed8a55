"""SQLite storage for the cc-recall index."""

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cc_recall import config
from cc_recall.errors import BackendUnavailableError
from cc_recall.models import SessionRecord, model_tokens_from
from cc_recall.scoring import FIELD_WEIGHTS, tokenize_query

logger = logging.getLogger("cc_recall.storage")

# bm25() takes one weight per FTS column; session_id is unindexed
BM25_WEIGHTS = ", ".join(
    ["0.0"] + [str(FIELD_WEIGHTS[col]) for col in ("summary", "messages", "metadata")]
)

# bm25 is negative for matches; a matched row never scores as "no match"
MIN_RELEVANCE = 1e-9


@contextlib.contextmanager
def backend_errors() -> Iterator[None]:
    """Translate SQLite and filesystem failures into BackendUnavailableError."""
    try:
        yield
    except (sqlite3.OperationalError, OSError) as exc:
        logger.error("Index unavailable: %s", exc)
        raise BackendUnavailableError(f"Index unavailable: {exc}") from exc


def format_ts(ts: datetime) -> str:
    """Fixed-width UTC ISO timestamp, so stored values compare as strings."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def get_connection(db_path: Path | None = None, timeout: float | None = None) -> sqlite3.Connection:
    """Get a connection to the index database.

    The connection runs in autocommit mode; writes open their own
    transactions. timeout bounds how long a call waits on a locked database.
    """
    db_path = db_path or config.INDEX_PATH
    timeout = config.DB_TIMEOUT if timeout is None else timeout
    with backend_errors():
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(db_path), timeout=timeout, isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    with backend_errors():
        conn.executescript("""
            -- Sessions table
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                started_at TEXT NOT NULL,
                ended_at TEXT NOT NULL,
                git_branch TEXT,
                cwd TEXT,
                version TEXT,
                message_count INTEGER NOT NULL DEFAULT 0,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                cache_creation_tokens INTEGER NOT NULL DEFAULT 0,
                cache_read_tokens INTEGER NOT NULL DEFAULT 0,
                tools_used TEXT NOT NULL,  -- JSON array
                files_touched TEXT NOT NULL,  -- JSON array
                user_messages TEXT NOT NULL,  -- JSON array
                models_used TEXT NOT NULL,  -- JSON array
                model_tokens TEXT NOT NULL,  -- JSON object
                summary TEXT,
                category TEXT,
                transcript_path TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_ended_at ON sessions(ended_at);

            -- FTS5 weighted text index, one row per session
            CREATE VIRTUAL TABLE IF NOT EXISTS sessions_fts USING fts5(
                session_id UNINDEXED,
                summary,
                messages,
                metadata,
                tokenize='porter unicode61'
            );

            -- Source files seen by ingestion, for change detection
            CREATE TABLE IF NOT EXISTS sources (
                path TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                mtime REAL NOT NULL,
                size INTEGER NOT NULL,
                fingerprint TEXT NOT NULL,
                indexed_at TEXT NOT NULL
            );

            -- Metadata table for tracking index state
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
        """)


def ensure_index_exists(db_path: Path | None = None, timeout: float | None = None) -> sqlite3.Connection:
    """Ensure the index database exists and is initialized."""
    conn = get_connection(db_path, timeout)
    init_schema(conn)
    return conn


def index_exists(db_path: Path | None = None) -> bool:
    """Check if the index database exists."""
    return (db_path or config.INDEX_PATH).exists()


@contextlib.contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[None]:
    """Run a block in one immediate transaction.

    BEGIN IMMEDIATE takes the write lock up front, so two writers touching the
    same session are serialized instead of interleaving.
    """
    with backend_errors():
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")


def _fts_fields(record: SessionRecord) -> tuple[str, str, str]:
    metadata = " ".join(sorted(record.tools_used) + sorted(record.files_from_tool_calls))
    return record.summary or "", "\n".join(record.user_messages), metadata


def _delete_rows(conn: sqlite3.Connection, session_id: str) -> None:
    conn.execute("DELETE FROM sessions_fts WHERE session_id = ?", (session_id,))
    conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))


def _save_source(
    conn: sqlite3.Connection,
    path: Path,
    session_id: str,
    mtime: float,
    size: int,
    fingerprint: str,
    indexed_at: datetime,
) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO sources (path, session_id, mtime, size, fingerprint, indexed_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (str(path), session_id, mtime, size, fingerprint, format_ts(indexed_at)),
    )


def upsert_session(
    conn: sqlite3.Connection,
    record: SessionRecord,
    source: dict[str, Any] | None = None,
) -> None:
    """Insert or fully replace a session and its text index row.

    The previous row (summary and category included) is dropped, never
    merged. source, when given, holds mtime/size/fingerprint/indexed_at of
    the file the record came from and is saved in the same transaction.
    """
    summary, messages, metadata = _fts_fields(record)
    with write_transaction(conn):
        _delete_rows(conn, record.id)
        conn.execute(
            """
            INSERT INTO sessions (
                id, started_at, ended_at, git_branch, cwd, version, message_count,
                input_tokens, output_tokens, cache_creation_tokens, cache_read_tokens,
                tools_used, files_touched, user_messages, models_used, model_tokens,
                summary, category, transcript_path
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                format_ts(record.started_at),
                format_ts(record.ended_at),
                record.git_branch,
                record.cwd,
                record.version,
                record.message_count,
                record.input_tokens,
                record.output_tokens,
                record.cache_creation_tokens,
                record.cache_read_tokens,
                json.dumps(sorted(record.tools_used)),
                json.dumps(sorted(record.files_from_tool_calls)),
                json.dumps(list(record.user_messages)),
                json.dumps(sorted(record.models_used)),
                json.dumps(record.to_dict()["model_tokens"], sort_keys=True),
                record.summary,
                record.category,
                str(record.transcript_path),
            ),
        )
        conn.execute(
            "INSERT INTO sessions_fts (session_id, summary, messages, metadata) VALUES (?, ?, ?, ?)",
            (record.id, summary, messages, metadata),
        )
        if source is not None:
            _save_source(conn, record.transcript_path, record.id, **source)


def delete_session(
    conn: sqlite3.Connection, session_id: str, source: dict[str, Any] | None = None, path: Path | None = None
) -> None:
    """Remove a session, optionally recording the source that no longer yields it."""
    with write_transaction(conn):
        _delete_rows(conn, session_id)
        if source is not None and path is not None:
            _save_source(conn, path, session_id, **source)


def set_annotation(
    conn: sqlite3.Connection,
    session_id: str,
    summary: str | None = None,
    category: str | None = None,
) -> bool:
    """Set the summary and/or category of a session.

    Returns False if the session is not indexed.
    """
    with write_transaction(conn):
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return False
        if summary is not None:
            conn.execute("UPDATE sessions SET summary = ? WHERE id = ?", (summary, session_id))
            conn.execute(
                "UPDATE sessions_fts SET summary = ? WHERE session_id = ?", (summary, session_id)
            )
        if category is not None:
            conn.execute("UPDATE sessions SET category = ? WHERE id = ?", (category, session_id))
    return True


def _row_to_record(row: sqlite3.Row) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        started_at=datetime.fromisoformat(row["started_at"]),
        ended_at=datetime.fromisoformat(row["ended_at"]),
        transcript_path=Path(row["transcript_path"]),
        git_branch=row["git_branch"],
        cwd=row["cwd"],
        version=row["version"],
        message_count=row["message_count"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        cache_creation_tokens=row["cache_creation_tokens"],
        cache_read_tokens=row["cache_read_tokens"],
        tools_used=frozenset(json.loads(row["tools_used"])),
        files_from_tool_calls=frozenset(json.loads(row["files_touched"])),
        user_messages=tuple(json.loads(row["user_messages"])),
        models_used=frozenset(json.loads(row["models_used"])),
        model_tokens=model_tokens_from(json.loads(row["model_tokens"])),
        summary=row["summary"],
        category=row["category"],
    )


def get_session(conn: sqlite3.Connection, session_id: str) -> SessionRecord | None:
    """Get a session by ID."""
    with backend_errors():
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def build_fts_query(query: str | None) -> str | None:
    """Build an FTS5 prefix query requiring every term.

    "email filter" -> "email"* "filter"*
    """
    terms = tokenize_query(query)
    if not terms:
        return None
    return " ".join('"{}"*'.format(term.replace('"', '""')) for term in terms)


def _window_clause(since: datetime | None, until: datetime | None) -> tuple[str, list[Any]]:
    conditions: list[str] = []
    params: list[Any] = []
    if since is not None:
        conditions.append("s.ended_at >= ?")
        params.append(format_ts(since))
    if until is not None:
        conditions.append("s.ended_at <= ?")
        params.append(format_ts(until))
    return "".join(f" AND {c}" for c in conditions), params


def list_sessions(
    conn: sqlite3.Connection,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list[SessionRecord]:
    """Get all sessions whose end falls in the window, most recent first."""
    where, params = _window_clause(since, until)
    sql = f"SELECT s.* FROM sessions s WHERE 1=1{where} ORDER BY s.ended_at DESC"
    with backend_errors():
        rows = conn.execute(sql, params).fetchall()
    return [_row_to_record(row) for row in rows]


def query_sessions(
    conn: sqlite3.Connection,
    query: str | None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list[tuple[SessionRecord, float | None]]:
    """Search the index.

    Returns (record, relevance) pairs. relevance is the negated weighted
    bm25 score when a query is given, otherwise None.
    """
    fts_query = build_fts_query(query)
    if fts_query is None:
        return [(record, None) for record in list_sessions(conn, since, until)]

    where, params = _window_clause(since, until)
    sql = f"""
        SELECT s.*, bm25(sessions_fts, {BM25_WEIGHTS}) AS rank
        FROM sessions_fts
        JOIN sessions s ON s.id = sessions_fts.session_id
        WHERE sessions_fts MATCH ?{where}
        ORDER BY rank
    """
    with backend_errors():
        rows = conn.execute(sql, [fts_query, *params]).fetchall()
    return [(_row_to_record(row), max(-row["rank"], MIN_RELEVANCE)) for row in rows]


def get_source(conn: sqlite3.Connection, path: Path) -> dict[str, Any] | None:
    """Get the recorded state of a source file."""
    with backend_errors():
        row = conn.execute("SELECT * FROM sources WHERE path = ?", (str(path),)).fetchone()
    return dict(row) if row else None


def touch_source(conn: sqlite3.Connection, path: Path, mtime: float, size: int) -> None:
    """Record a new mtime/size for a source whose content did not change."""
    with write_transaction(conn):
        conn.execute(
            "UPDATE sources SET mtime = ?, size = ? WHERE path = ?", (mtime, size, str(path))
        )


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Set a metadata value."""
    with backend_errors():
        conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, value),
        )


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    """Get a metadata value."""
    with backend_errors():
        row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def get_index_stats(db_path: Path | None = None) -> dict[str, Any]:
    """Get index statistics."""
    db_path = db_path or config.INDEX_PATH
    if not index_exists(db_path):
        return {
            "session_count": 0,
            "source_count": 0,
            "index_path": str(db_path),
            "index_size_human": _format_size(0),
            "last_indexed": None,
        }

    conn = ensure_index_exists(db_path)
    try:
        with backend_errors():
            session_count = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
            source_count = conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0]
        last_indexed = get_metadata(conn, "last_indexed")
    finally:
        conn.close()

    return {
        "session_count": session_count,
        "source_count": source_count,
        "index_path": str(db_path),
        "index_size_human": _format_size(db_path.stat().st_size),
        "last_indexed": last_indexed,
    }


def _format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"

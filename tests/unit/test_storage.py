"""Tests for the storage module."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from cc_recall.errors import BackendUnavailableError
from cc_recall.models import ModelTokens
from cc_recall.storage import (
    build_fts_query,
    format_ts,
    delete_session,
    ensure_index_exists,
    get_index_stats,
    get_metadata,
    get_session,
    get_source,
    list_sessions,
    query_sessions,
    set_annotation,
    set_metadata,
    touch_source,
    upsert_session,
)

SOURCE = {
    "mtime": 1700000000.0,
    "size": 123,
    "fingerprint": "abc",
    "indexed_at": datetime(2025, 1, 20, tzinfo=timezone.utc),
}


@pytest.fixture
def temp_db(db_path):
    """Create a temporary database for testing."""
    conn = ensure_index_exists(db_path)
    yield conn, db_path
    conn.close()


def test_init_schema(temp_db):
    """Test schema initialization creates all tables."""
    conn, _ = temp_db

    tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    table_names = {t[0] for t in tables}

    assert "sessions" in table_names
    assert "sessions_fts" in table_names
    assert "sources" in table_names
    assert "metadata" in table_names


def test_save_and_get_session(temp_db, make_record):
    """A stored record round-trips unchanged."""
    conn, _ = temp_db
    record = make_record(
        files=("src/app.py",),
        git_branch="feature/x",
        models_used=frozenset({"claude-sonnet-4"}),
        model_tokens=(ModelTokens("claude-sonnet-4", 10, 5),),
        input_tokens=10,
        output_tokens=5,
    )

    upsert_session(conn, record)

    assert get_session(conn, record.id) == record


def test_session_not_found(temp_db):
    conn, _ = temp_db
    assert get_session(conn, "nonexistent") is None


def test_upsert_replaces_whole_record(temp_db, make_record):
    conn, _ = temp_db
    upsert_session(conn, make_record(user_messages=("first version",)))
    set_annotation(conn, "session-1", summary="old summary", category="bugfix")

    upsert_session(conn, make_record(user_messages=("second version",)))

    stored = get_session(conn, "session-1")
    assert stored.user_messages == ("second version",)
    assert stored.summary is None
    assert stored.category is None
    assert conn.execute("SELECT COUNT(*) FROM sessions_fts").fetchone()[0] == 1
    assert query_sessions(conn, "first") == []


def test_upsert_saves_source(temp_db, make_record):
    conn, _ = temp_db
    record = make_record()

    upsert_session(conn, record, SOURCE)

    source = get_source(conn, record.transcript_path)
    assert source["session_id"] == record.id
    assert source["fingerprint"] == "abc"
    assert source["size"] == 123


def test_touch_source(temp_db, make_record):
    conn, _ = temp_db
    record = make_record()
    upsert_session(conn, record, SOURCE)

    touch_source(conn, record.transcript_path, 1800000000.0, 456)

    source = get_source(conn, record.transcript_path)
    assert source["mtime"] == 1800000000.0
    assert source["size"] == 456
    assert source["fingerprint"] == "abc"


def test_delete_session(temp_db, make_record):
    conn, _ = temp_db
    record = make_record()
    upsert_session(conn, record)

    delete_session(conn, record.id, SOURCE, record.transcript_path)

    assert get_session(conn, record.id) is None
    assert get_source(conn, record.transcript_path)["fingerprint"] == "abc"


def test_query_sessions_full_text(temp_db, make_record):
    conn, _ = temp_db
    upsert_session(conn, make_record(id="a", user_messages=("Build the email filtering system",)))
    upsert_session(conn, make_record(id="b", user_messages=("Migrate the database",)))

    rows = query_sessions(conn, "email")

    assert [record.id for record, _ in rows] == ["a"]
    assert rows[0][1] > 0


def test_query_sessions_prefix_and_stemming(temp_db, make_record):
    conn, _ = temp_db
    upsert_session(conn, make_record(id="a", user_messages=("Build the email filtering system",)))

    assert len(query_sessions(conn, "filter")) == 1
    assert len(query_sessions(conn, "emai")) == 1
    assert len(query_sessions(conn, "EMAIL System")) == 1
    assert query_sessions(conn, "email database") == []


def test_query_sessions_weighting(temp_db, make_record):
    """Summary beats user messages, which beat tool/file metadata."""
    conn, _ = temp_db
    filler = ("unrelated",)
    upsert_session(conn, make_record(id="meta", user_messages=filler, tools=("Webhook",)))
    upsert_session(conn, make_record(id="msg", user_messages=("add a webhook",), tools=()))
    upsert_session(conn, make_record(id="sum", user_messages=filler, tools=()))
    set_annotation(conn, "sum", summary="webhook integration")

    rows = sorted(query_sessions(conn, "webhook"), key=lambda row: -row[1])

    assert [record.id for record, _ in rows] == ["sum", "msg", "meta"]


def test_query_sessions_quotes_are_escaped(temp_db, make_record):
    conn, _ = temp_db
    upsert_session(conn, make_record())
    assert query_sessions(conn, 'email "filter') is not None


def test_query_without_text_lists_by_window(temp_db, make_record):
    conn, _ = temp_db
    upsert_session(conn, make_record(id="old", ended_at=datetime(2025, 1, 10, tzinfo=timezone.utc)))
    upsert_session(conn, make_record(id="new", ended_at=datetime(2025, 1, 18, tzinfo=timezone.utc)))

    rows = query_sessions(conn, None, since=datetime(2025, 1, 13, tzinfo=timezone.utc))

    assert [(record.id, relevance) for record, relevance in rows] == [("new", None)]
    assert [r.id for r in list_sessions(conn)] == ["new", "old"]


def test_format_ts_normalizes_to_utc():
    ist = timezone(timedelta(hours=5, minutes=30))
    local = datetime(2025, 1, 15, 12, 0, tzinfo=ist)

    assert format_ts(local) == "2025-01-15T06:30:00.000000+00:00"
    assert format_ts(local) == format_ts(local.astimezone(timezone.utc))


def test_build_fts_query():
    assert build_fts_query("email filter") == '"email"* "filter"*'
    assert build_fts_query('say "hi"') == '"say"* """hi"""*'
    assert build_fts_query("  ") is None


def test_set_annotation_unknown_session(temp_db):
    conn, _ = temp_db
    assert set_annotation(conn, "missing", summary="x") is False


def test_metadata(temp_db):
    conn, _ = temp_db
    assert get_metadata(conn, "last_indexed") is None
    set_metadata(conn, "last_indexed", "2025-01-20")
    assert get_metadata(conn, "last_indexed") == "2025-01-20"


def test_index_stats(temp_db, make_record):
    conn, db_path = temp_db
    upsert_session(conn, make_record(), SOURCE)

    stats = get_index_stats(db_path)

    assert stats["session_count"] == 1
    assert stats["source_count"] == 1
    assert stats["index_path"] == str(db_path)


def test_index_stats_without_index(temp_dir):
    stats = get_index_stats(temp_dir / "none.db")
    assert stats["session_count"] == 0
    assert stats["last_indexed"] is None


def test_locked_database_is_retryable(temp_db, make_record):
    """A lock timeout surfaces as a retryable backend failure."""
    _, db_path = temp_db
    impatient = ensure_index_exists(db_path, timeout=0.05)
    blocker = ensure_index_exists(db_path)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(BackendUnavailableError) as excinfo:
            upsert_session(impatient, make_record())
        assert excinfo.value.retryable
        impatient.close()
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()


def test_operational_error_translated():
    """A database without the schema fails as unavailable, not with a raw sqlite error."""
    broken = sqlite3.connect(":memory:")
    broken.row_factory = sqlite3.Row
    with pytest.raises(BackendUnavailableError):
        get_session(broken, "anything")
    broken.close()

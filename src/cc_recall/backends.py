"""Session backends: full directory scan, or the SQLite index."""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from cc_recall import config, storage
from cc_recall.filters import SearchCriteria, resolve_window
from cc_recall.models import Candidate, SessionRecord
from cc_recall.parser import parse_session

logger = logging.getLogger("cc_recall.backends")


class SessionBackend(Protocol):
    """Where sessions come from. Ranking is done by the searcher."""

    def candidates(self, criteria: SearchCriteria, now: datetime | None = None) -> list[Candidate]:
        ...

    def get(self, session_id: str) -> SessionRecord | None:
        ...

    def records(
        self, since: datetime | None = None, until: datetime | None = None
    ) -> list[SessionRecord]:
        ...


def discover_sessions(sessions_dir: Path) -> list[Path]:
    """Discover JSONL session files, one directory per project.

    Layout: <sessions_dir>/<encoded-project-path>/<session-id>.jsonl
    An unreadable or missing root yields no files.
    """
    files: list[Path] = []
    try:
        project_dirs = sorted(p for p in sessions_dir.iterdir() if p.is_dir())
    except OSError as exc:
        logger.debug("Cannot list sessions directory %s: %s", sessions_dir, exc)
        return []

    for project_dir in project_dirs:
        try:
            files.extend(sorted(project_dir.glob("*.jsonl")))
        except OSError as exc:
            logger.debug("Cannot list %s: %s", project_dir, exc)
    return files


def _modified_before(path: Path, since: datetime) -> bool:
    try:
        mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return True
    return mtime < since


class ScanBackend:
    """Re-parse every session log on every call. Nothing is cached."""

    def __init__(self, sessions_dir: Path | None = None, workers: int | None = None) -> None:
        self.sessions_dir = sessions_dir or config.SESSIONS_DIR
        self.workers = workers or config.WORKERS

    def _parse_all(self, paths: list[Path]) -> list[SessionRecord]:
        if not paths:
            return []
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            parsed = list(pool.map(parse_session, paths))
        return [record for record in parsed if record is not None]

    def _scan(self, since: datetime | None) -> list[SessionRecord]:
        paths = discover_sessions(self.sessions_dir)
        # A file last written before the window cannot hold events inside it
        if since is not None:
            paths = [p for p in paths if not _modified_before(p, since)]
        return self._parse_all(paths)

    def candidates(self, criteria: SearchCriteria, now: datetime | None = None) -> list[Candidate]:
        since, _ = resolve_window(criteria, now)
        return [Candidate(record) for record in self._scan(since)]

    def get(self, session_id: str) -> SessionRecord | None:
        for path in discover_sessions(self.sessions_dir):
            if path.stem == session_id:
                record = parse_session(path)
                # Same visibility as the index, which never stores these
                if record is not None and record.user_messages:
                    return record
        return None

    def records(
        self, since: datetime | None = None, until: datetime | None = None
    ) -> list[SessionRecord]:
        return [
            record
            for record in self._scan(since)
            if (since is None or record.ended_at >= since)
            and (until is None or record.ended_at <= until)
        ]


class IndexBackend:
    """Serve sessions from the SQLite index built by `cc-recall index`.

    Each call opens its own connection, so concurrent queries share nothing
    but the database file.
    """

    def __init__(self, db_path: Path | None = None, timeout: float | None = None) -> None:
        self.db_path = db_path or config.INDEX_PATH
        self.timeout = timeout

    def _connect(self):
        return closing(storage.ensure_index_exists(self.db_path, self.timeout))

    def candidates(self, criteria: SearchCriteria, now: datetime | None = None) -> list[Candidate]:
        since, until = resolve_window(criteria, now)
        with self._connect() as conn:
            rows = storage.query_sessions(conn, criteria.query, since, until)
        return [Candidate(record, relevance) for record, relevance in rows]

    def get(self, session_id: str) -> SessionRecord | None:
        with self._connect() as conn:
            return storage.get_session(conn, session_id)

    def records(
        self, since: datetime | None = None, until: datetime | None = None
    ) -> list[SessionRecord]:
        with self._connect() as conn:
            return storage.list_sessions(conn, since, until)


BACKENDS = ("scan", "index")


def make_backend(
    name: str | None = None,
    sessions_dir: Path | None = None,
    db_path: Path | None = None,
) -> SessionBackend:
    """Create a backend by name ("scan" or "index")."""
    name = (name or config.BACKEND).lower()
    if name == "index":
        return IndexBackend(db_path)
    if name == "scan":
        return ScanBackend(sessions_dir)
    raise ValueError(f"Unknown backend: {name} (expected one of {', '.join(BACKENDS)})")


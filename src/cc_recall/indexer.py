"""Incremental ingestion of JSONL sessions into the SQLite index."""

import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from cc_recall import config
from cc_recall.backends import discover_sessions
from cc_recall.parser import file_fingerprint, parse_session
from cc_recall.storage import (
    delete_session,
    ensure_index_exists,
    get_source,
    set_metadata,
    touch_source,
    upsert_session,
)

logger = logging.getLogger("cc_recall.indexer")

console = Console()


@dataclass
class PendingSource:
    """A session file whose content changed since it was last indexed."""

    path: Path
    mtime: float
    size: int
    fingerprint: str


@dataclass
class IndexReport:
    """Outcome of one ingestion pass."""

    discovered: int = 0
    skipped: int = 0
    indexed: int = 0
    empty: int = 0
    failed: int = 0
    cancelled: bool = False


def plan_sources(
    conn: sqlite3.Connection, paths: list[Path], force: bool, report: IndexReport
) -> list[PendingSource]:
    """Pick the files that need parsing.

    Unchanged (mtime, size) is skipped outright. A changed stat with the same
    content fingerprint only refreshes the stored stat.
    """
    pending: list[PendingSource] = []
    for path in paths:
        try:
            stat = path.stat()
            existing = get_source(conn, path)
            if (
                not force
                and existing is not None
                and existing["mtime"] == stat.st_mtime
                and existing["size"] == stat.st_size
            ):
                report.skipped += 1
                continue

            fingerprint = file_fingerprint(path)
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            report.failed += 1
            continue

        if not force and existing is not None and existing["fingerprint"] == fingerprint:
            touch_source(conn, path, stat.st_mtime, stat.st_size)
            report.skipped += 1
            continue

        pending.append(PendingSource(path, stat.st_mtime, stat.st_size, fingerprint))
    return pending


def extract_project_name(path: Path) -> str:
    """Extract project name from session path.

    Path format: ~/.claude/projects/-Users-name-Code-project/session.jsonl
    Returns: project (last component of original path)
    """
    parts = [p for p in path.parent.name.split("-") if p and p not in ("Users", "home")]
    return parts[-1] if parts else path.parent.name


def build_index(
    sessions_dir: Path | None = None,
    db_path: Path | None = None,
    force: bool = False,
    dry_run: bool = False,
    workers: int | None = None,
    cancel: threading.Event | None = None,
) -> IndexReport:
    """Build or update the search index.

    Args:
        sessions_dir: Root of the Claude Code projects directory.
        db_path: Index database path.
        force: Reparse all sessions even if unchanged.
        dry_run: Show what would be indexed without writing records.
        workers: Parser thread count.
        cancel: When set, the pass stops before the next record. Records
            already written stay complete.
    """
    sessions_dir = sessions_dir or config.SESSIONS_DIR
    report = IndexReport()

    session_paths = discover_sessions(sessions_dir)
    report.discovered = len(session_paths)
    if not session_paths:
        console.print(f"[yellow]No session files found in {sessions_dir}[/yellow]")
        return report

    console.print(f"Found {len(session_paths)} session files")

    conn = ensure_index_exists(db_path)
    try:
        pending = plan_sources(conn, session_paths, force, report)

        if not pending:
            console.print("[green]Index is up to date[/green]")
            return report

        if dry_run:
            console.print(f"[yellow]Dry run - would index {len(pending)} sessions:[/yellow]")
            # Group by project for cleaner output
            by_project: dict[str, int] = {}
            for source in pending:
                project = extract_project_name(source.path)
                by_project[project] = by_project.get(project, 0) + 1
            for project, count in sorted(by_project.items()):
                console.print(f"  [cyan]{project}[/cyan]: {count} sessions")
            return report

        _ingest(conn, pending, workers or config.WORKERS, cancel, report)

        set_metadata(conn, "last_indexed", datetime.now(tz=timezone.utc).isoformat())
    finally:
        conn.close()

    if report.cancelled:
        console.print(f"[yellow]Cancelled after indexing {report.indexed} sessions[/yellow]")
    else:
        console.print(f"[green]Indexed {report.indexed} sessions[/green]")
    return report


def _ingest(
    conn: sqlite3.Connection,
    pending: list[PendingSource],
    workers: int,
    cancel: threading.Event | None,
    report: IndexReport,
) -> None:
    """Parse pending files in parallel and write each record on its own."""
    indexed_at = datetime.now(tz=timezone.utc)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Indexing sessions...", total=len(pending))

        pool = ThreadPoolExecutor(max_workers=workers)
        try:
            parsed = pool.map(parse_session, [source.path for source in pending])
            for source, record in zip(pending, parsed):
                if cancel is not None and cancel.is_set():
                    report.cancelled = True
                    break

                state = {
                    "mtime": source.mtime,
                    "size": source.size,
                    "fingerprint": source.fingerprint,
                    "indexed_at": indexed_at,
                }
                if record is None or not record.user_messages:
                    # Nothing searchable left; drop any earlier version
                    delete_session(conn, source.path.stem, state, source.path)
                    report.empty += 1
                else:
                    upsert_session(conn, record, state)
                    report.indexed += 1

                progress.advance(task)
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

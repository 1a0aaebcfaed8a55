"""CLI for cc-recall."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from cc_recall import __version__, config
from cc_recall.errors import BackendUnavailableError, InvalidDateError, SessionNotFoundError

app = typer.Typer(
    name="cc-recall",
    help="Search and rank Claude Code session history.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"cc-recall {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _backend_failure(exc: BackendUnavailableError) -> typer.Exit:
    err_console.print(f"[red]{exc}. The index may be busy; retry shortly.[/red]")
    return typer.Exit(2)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    log_level: Annotated[
        str, typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)")
    ] = config.LOG_LEVEL,
) -> None:
    """Search Claude Code session history."""
    setup_logging(log_level)


@app.command()
def search(
    query: Annotated[
        str | None, typer.Option("--query", "-q", help="Text to score sessions against")
    ] = None,
    days: Annotated[int | None, typer.Option("--days", "-d", help="Limit to last N days")] = None,
    since: Annotated[
        str | None, typer.Option("--since", help="Sessions ending on/after this date (YYYY-MM-DD)")
    ] = None,
    until: Annotated[
        str | None, typer.Option("--until", help="Sessions ending on/before this date (YYYY-MM-DD)")
    ] = None,
    tools: Annotated[
        str | None, typer.Option("--tools", "-t", help="Filter by tools (comma-separated)")
    ] = None,
    file_pattern: Annotated[
        str | None, typer.Option("--file-pattern", "-f", help="Filter by touched file path")
    ] = None,
    limit: Annotated[
        int, typer.Option("--limit", "-l", help=f"Max results (max {config.MAX_LIMIT})")
    ] = config.DEFAULT_LIMIT,
    backend: Annotated[
        str | None, typer.Option("--backend", "-b", help="scan or index")
    ] = None,
    sessions_dir: Annotated[
        Path | None, typer.Option("--dir", help="Sessions directory")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Search sessions by text, date, tool or file."""
    from cc_recall.backends import make_backend
    from cc_recall.filters import SearchCriteria, parse_date, parse_tools
    from cc_recall.searcher import perform_search

    try:
        criteria = SearchCriteria(
            query=query,
            days=days,
            since=parse_date(since),
            until=parse_date(until, end_of_day=True),
            tools=parse_tools(tools),
            file_pattern=file_pattern,
            limit=limit,
        )
        session_backend = make_backend(backend, sessions_dir=sessions_dir)
    except (InvalidDateError, ValueError) as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1) from exc

    try:
        perform_search(session_backend, criteria, json_output=json_output)
    except BackendUnavailableError as exc:
        raise _backend_failure(exc) from exc


@app.command()
def show(
    session_id: Annotated[str, typer.Argument(help="Session ID")],
    transcript: Annotated[
        bool, typer.Option("--transcript", help="Include the raw transcript events")
    ] = False,
    backend: Annotated[
        str | None, typer.Option("--backend", "-b", help="scan or index")
    ] = None,
    sessions_dir: Annotated[
        Path | None, typer.Option("--dir", help="Sessions directory")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """View one session."""
    from cc_recall.backends import make_backend
    from cc_recall.searcher import display_session, format_json_output, get_session_detail

    try:
        detail = get_session_detail(
            make_backend(backend, sessions_dir=sessions_dir), session_id, with_transcript=transcript
        )
    except (SessionNotFoundError, ValueError) as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    except BackendUnavailableError as exc:
        raise _backend_failure(exc) from exc

    if json_output:
        format_json_output(detail.to_dict())
    else:
        display_session(detail)


@app.command()
def index(
    force: Annotated[bool, typer.Option("--force", "-f", help="Reindex all sessions")] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-d", help="Show what would be indexed")
    ] = False,
    sessions_dir: Annotated[
        Path | None, typer.Option("--dir", help="Sessions directory")
    ] = None,
) -> None:
    """Build or update the search index."""
    from cc_recall.indexer import build_index

    try:
        build_index(sessions_dir=sessions_dir, force=force, dry_run=dry_run)
    except BackendUnavailableError as exc:
        raise _backend_failure(exc) from exc


@app.command()
def annotate(
    session_id: Annotated[str, typer.Argument(help="Session ID")],
    summary: Annotated[str | None, typer.Option("--summary", "-s", help="Short summary")] = None,
    category: Annotated[
        str | None, typer.Option("--category", "-c", help="Category label")
    ] = None,
) -> None:
    """Attach a summary and/or category to an indexed session."""
    from cc_recall.storage import ensure_index_exists, set_annotation

    if summary is None and category is None:
        err_console.print("[red]Error: give --summary and/or --category[/red]")
        raise typer.Exit(1)

    try:
        conn = ensure_index_exists()
        try:
            found = set_annotation(conn, session_id, summary=summary, category=category)
        finally:
            conn.close()
    except BackendUnavailableError as exc:
        raise _backend_failure(exc) from exc

    if not found:
        err_console.print(f"[red]Session not found: {session_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Annotated {session_id}[/green]")


@app.command()
def stats(
    days: Annotated[
        int, typer.Option("--days", "-d", help="Window in days")
    ] = config.DEFAULT_STATS_DAYS,
    backend: Annotated[
        str | None, typer.Option("--backend", "-b", help="scan or index")
    ] = None,
    sessions_dir: Annotated[
        Path | None, typer.Option("--dir", help="Sessions directory")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show usage statistics."""
    from cc_recall.backends import make_backend
    from cc_recall.searcher import display_stats, format_json_output, get_stats

    try:
        session_stats = get_stats(make_backend(backend, sessions_dir=sessions_dir), days=days)
    except ValueError as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1) from exc
    except BackendUnavailableError as exc:
        raise _backend_failure(exc) from exc

    if json_output:
        format_json_output(session_stats.to_dict())
    else:
        display_stats(session_stats)


@app.command()
def status() -> None:
    """Show index statistics."""
    from cc_recall.storage import get_index_stats

    try:
        index_stats = get_index_stats()
    except BackendUnavailableError as exc:
        raise _backend_failure(exc) from exc

    console.print(f"Sessions indexed: {index_stats['session_count']}")
    console.print(f"Files tracked: {index_stats['source_count']}")
    console.print(f"Index path: {index_stats['index_path']}")
    console.print(f"Index size: {index_stats['index_size_human']}")
    if index_stats["last_indexed"]:
        console.print(f"Last indexed: {index_stats['last_indexed']}")


if __name__ == "__main__":
    app()

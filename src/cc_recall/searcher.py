"""Session search: filter, score, rank and display."""

import logging
import re
import threading
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cc_recall import config
from cc_recall.backends import SessionBackend
from cc_recall.errors import QueryCancelledError, SessionNotFoundError
from cc_recall.filters import SearchCriteria, clamp_limit, matches_filters
from cc_recall.models import SearchResult, SessionDetail, SessionStats
from cc_recall.parser import load_transcript
from cc_recall.scoring import BASELINE_SCORE, score_relevance

logger = logging.getLogger("cc_recall.searcher")

console = Console()


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise QueryCancelledError("Search cancelled")


def rank_results(results: list[SearchResult]) -> list[SearchResult]:
    """Order by relevance, then most recent end, then id."""
    return sorted(
        results,
        key=lambda r: (-r.relevance, -r.record.ended_at.timestamp(), r.record.id),
    )


def search_sessions(
    backend: SessionBackend,
    criteria: SearchCriteria,
    now: datetime | None = None,
    cancel: threading.Event | None = None,
) -> list[SearchResult]:
    """Run a search against a backend.

    Every stage finishes before the next starts: discover, drop sessions
    without user messages, filter, score (dropping zero scores when there
    is a query), rank, truncate. "No sessions" and "no matches" both return
    an empty list.
    """
    now = now or datetime.now(tz=timezone.utc)
    has_query = bool(criteria.query and criteria.query.strip())

    candidates = backend.candidates(criteria, now)
    _check_cancelled(cancel)

    candidates = [c for c in candidates if c.record.user_messages]
    candidates = [c for c in candidates if matches_filters(c.record, criteria, now)]
    _check_cancelled(cancel)

    results: list[SearchResult] = []
    for candidate in candidates:
        if not has_query:
            relevance = BASELINE_SCORE
        elif candidate.relevance is not None:
            relevance = candidate.relevance
        else:
            relevance = score_relevance(candidate.record, criteria.query)
        if relevance > 0:
            results.append(SearchResult(record=candidate.record, relevance=relevance))
    _check_cancelled(cancel)

    return rank_results(results)[: clamp_limit(criteria.limit)]


def get_session_detail(
    backend: SessionBackend, session_id: str, with_transcript: bool = False
) -> SessionDetail:
    """Look up one session, optionally inlining its raw events."""
    record = backend.get(session_id)
    if record is None:
        raise SessionNotFoundError(session_id)

    messages = load_transcript(record.transcript_path) if with_transcript else None
    return SessionDetail(record=record, messages=messages)


def get_stats(
    backend: SessionBackend, days: int = config.DEFAULT_STATS_DAYS, now: datetime | None = None
) -> SessionStats:
    """Aggregate usage over sessions ending in the last `days` days."""
    now = now or datetime.now(tz=timezone.utc)
    records = [r for r in backend.records(since=now - timedelta(days=days)) if r.user_messages]

    stats = SessionStats(days=days, session_count=len(records))
    categories: Counter[str] = Counter()
    models: dict[str, dict[str, int]] = {}

    for record in records:
        stats.total_messages += record.message_count
        stats.total_input_tokens += record.input_tokens
        stats.total_output_tokens += record.output_tokens
        stats.total_cache_creation_tokens += record.cache_creation_tokens
        stats.total_cache_read_tokens += record.cache_read_tokens
        if stats.earliest_session is None or record.started_at < stats.earliest_session:
            stats.earliest_session = record.started_at
        if stats.latest_session is None or record.ended_at > stats.latest_session:
            stats.latest_session = record.ended_at

        if record.category:
            categories[record.category] += 1

        for model in record.models_used:
            entry = models.setdefault(model, {"sessions": 0, "input_tokens": 0, "output_tokens": 0})
            entry["sessions"] += 1
            tokens = record.tokens_for(model)
            entry["input_tokens"] += tokens.input
            entry["output_tokens"] += tokens.output

    stats.by_category = [
        {"category": name, "count": count}
        for name, count in sorted(categories.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    stats.by_model = [
        {"model": name, **entry}
        for name, entry in sorted(models.items(), key=lambda kv: (-kv[1]["input_tokens"], kv[0]))
    ]
    return stats


def highlight_matches(text: str, query: str | None) -> Text:
    """Highlight query terms in text."""
    rendered = Text(text)
    for term in (query or "").lower().split():
        # Skip very short terms to avoid too many highlights
        if len(term) < 3:
            continue
        rendered.highlight_regex(re.compile(re.escape(term), re.IGNORECASE), style="bold yellow")
    return rendered


def _age(ts: datetime) -> str:
    age = datetime.now(tz=timezone.utc) - ts
    if age.days > 0:
        return f"{age.days} days ago"
    if age.seconds > 3600:
        return f"{age.seconds // 3600} hours ago"
    return f"{age.seconds // 60} minutes ago"


def _preview(messages: tuple[str, ...], limit: int = 300) -> str:
    text = " | ".join(m.strip().replace("\n", " ") for m in messages[:3])
    if len(text) > limit:
        text = text[:limit] + "..."
    return text


def format_human_output(results: list[SearchResult], query: str | None, search_time_ms: int) -> None:
    """Format results for human-readable output."""
    if not results:
        console.print("[yellow]No sessions found. Try a different query or window.[/yellow]")
        return

    for i, result in enumerate(results, 1):
        record = result.record

        header = Text()
        header.append(f"[{i}] ", style="bold cyan")
        header.append(record.id, style="green")
        if record.git_branch:
            header.append(f" | {record.git_branch}", style="magenta")
        header.append(f" | {_age(record.ended_at)}", style="dim")
        header.append(f" | score {result.relevance:g}", style="dim")

        body = highlight_matches(_preview(record.user_messages), query)
        if record.tools_used:
            body.append(f"\nTools: {', '.join(sorted(record.tools_used))}", style="dim")
        if record.files_from_tool_calls:
            files = sorted(record.files_from_tool_calls)
            more = f" (+{len(files) - 5} more)" if len(files) > 5 else ""
            body.append(f"\nFiles: {', '.join(files[:5])}{more}", style="dim")

        console.print(
            Panel(
                body,
                title=header,
                subtitle=f"→ cc-recall show {record.id}",
                subtitle_align="left",
            )
        )

    console.print("─" * 50)
    console.print(f"Found {len(results)} sessions in {search_time_ms}ms")


def format_json_output(data: Any) -> None:
    """Print JSON for programmatic use."""
    console.print_json(data=data)


def display_session(detail: SessionDetail) -> None:
    """Print one session in full."""
    record = detail.record
    table = Table(show_header=False, box=None)
    table.add_column(style="cyan")
    table.add_column()
    table.add_row("Session", record.id)
    table.add_row("Started", record.started_at.isoformat())
    table.add_row("Ended", f"{record.ended_at.isoformat()} ({_age(record.ended_at)})")
    table.add_row("Branch", record.git_branch or "-")
    table.add_row("Directory", record.cwd or "-")
    table.add_row("Messages", str(record.message_count))
    table.add_row("Tokens", f"{record.input_tokens} in / {record.output_tokens} out")
    table.add_row("Models", ", ".join(sorted(record.models_used)) or "-")
    table.add_row("Tools", ", ".join(sorted(record.tools_used)) or "-")
    if record.summary:
        table.add_row("Summary", record.summary)
    if record.category:
        table.add_row("Category", record.category)
    table.add_row("Transcript", str(record.transcript_path))
    console.print(table)

    console.print("\n[bold]User messages:[/bold]")
    for i, message in enumerate(record.user_messages, 1):
        console.print(Panel(Text(message), title=f"[{i}]", title_align="left"))

    if detail.messages is not None:
        console.print(f"\n[dim]{len(detail.messages)} raw events in transcript[/dim]")


def display_stats(stats: SessionStats) -> None:
    """Print aggregate statistics."""
    console.print(f"[bold]Last {stats.days} days[/bold]")
    console.print(f"Sessions: {stats.session_count}")
    console.print(f"Messages: {stats.total_messages}")
    console.print(
        f"Tokens: {stats.total_input_tokens} in / {stats.total_output_tokens} out"
        f" / {stats.total_cache_creation_tokens} cache write"
        f" / {stats.total_cache_read_tokens} cache read"
    )

    if stats.by_model:
        table = Table(title="By model")
        table.add_column("Model", style="cyan")
        table.add_column("Sessions", justify="right")
        table.add_column("Input", justify="right")
        table.add_column("Output", justify="right")
        for row in stats.by_model:
            table.add_row(
                row["model"], str(row["sessions"]), str(row["input_tokens"]), str(row["output_tokens"])
            )
        console.print(table)

    if stats.by_category:
        console.print("\n[bold]By category:[/bold]")
        for row in stats.by_category:
            console.print(f"  [cyan]{row['category']}[/cyan]: {row['count']}")


def perform_search(
    backend: SessionBackend,
    criteria: SearchCriteria,
    json_output: bool = False,
) -> list[SearchResult]:
    """Perform a search and display results."""
    start_time = time.time()
    results = search_sessions(backend, criteria)
    search_time_ms = int((time.time() - start_time) * 1000)
    logger.debug("Search returned %d sessions in %dms", len(results), search_time_ms)

    if json_output:
        format_json_output(
            {
                "query": criteria.query,
                "count": len(results),
                "search_time_ms": search_time_ms,
                "results": [r.to_dict() for r in results],
            }
        )
    else:
        format_human_output(results, criteria.query, search_time_ms)
    return results

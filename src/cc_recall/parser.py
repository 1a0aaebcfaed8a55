"""JSONL session parser.

A Claude Code session log is a JSONL file. Every line is one independent
record; the ones we care about look like::

    {"type": "user", "timestamp": "...", "gitBranch": "...", "cwd": "...",
     "version": "...", "message": {"role": "user", "content": "..."}}
    {"type": "assistant", "timestamp": "...", "message": {"model": "...",
     "usage": {...}, "content": [{"type": "tool_use", "name": "Edit",
     "input": {"file_path": "..."}}]}}

Lines are turned into a small closed set of events (HumanTurn, AssistantTurn,
ToolResult) and then folded into one SessionRecord.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cc_recall.models import (
    AssistantTurn,
    Event,
    HumanTurn,
    SessionRecord,
    TokenUsage,
    ToolCall,
    ToolResult,
    model_tokens_from,
)

logger = logging.getLogger("cc_recall.parser")

# Tool input keys that name a file the tool touched
FILE_INPUT_KEYS = ("file_path", "notebook_path", "path")

# Placeholder model Claude Code writes for locally generated messages
SYNTHETIC_MODEL = "<synthetic>"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse_usage(usage: Any) -> TokenUsage:
    if not isinstance(usage, dict):
        return TokenUsage()
    return TokenUsage(
        input=_as_int(usage.get("input_tokens")),
        output=_as_int(usage.get("output_tokens")),
        cache_creation=_as_int(usage.get("cache_creation_input_tokens")),
        cache_read=_as_int(usage.get("cache_read_input_tokens")),
    )


def _parse_tool_call(block: dict[str, Any]) -> ToolCall | None:
    name = _as_str(block.get("name"))
    if name is None:
        return None
    file_path = None
    tool_input = block.get("input")
    if isinstance(tool_input, dict):
        for key in FILE_INPUT_KEYS:
            file_path = _as_str(tool_input.get(key))
            if file_path:
                break
    return ToolCall(name=name, file_path=file_path)


def _parse_user(record: dict[str, Any], ts: datetime, meta: dict[str, str | None]) -> Event | None:
    # System-injected context (command output, reminders) is not a human turn
    if record.get("isMeta"):
        return None

    msg_data = record.get("message")
    if not isinstance(msg_data, dict):
        return None
    content = msg_data.get("content")

    if isinstance(content, str):
        if not content.strip():
            return None
        return HumanTurn(timestamp=ts, text=content, **meta)

    if not isinstance(content, list):
        return None

    texts: list[str] = []
    has_tool_result = False
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                texts.append(text)
        elif block_type == "tool_result":
            has_tool_result = True

    if texts:
        return HumanTurn(timestamp=ts, text="\n".join(texts), **meta)
    if has_tool_result:
        return ToolResult(timestamp=ts, **meta)
    return None


def _parse_assistant(record: dict[str, Any], ts: datetime, meta: dict[str, str | None]) -> Event:
    msg_data = record.get("message")
    if not isinstance(msg_data, dict):
        msg_data = {}

    tool_calls: list[ToolCall] = []
    content = msg_data.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "tool_use":
                call = _parse_tool_call(block)
                if call is not None:
                    tool_calls.append(call)

    return AssistantTurn(
        timestamp=ts,
        model=_as_str(msg_data.get("model")),
        usage=_parse_usage(msg_data.get("usage")),
        tool_calls=tuple(tool_calls),
        **meta,
    )


def _load_record(line: str) -> dict[str, Any] | None:
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    return record if isinstance(record, dict) else None


def parse_event(line: str) -> Event | None:
    """Parse one JSONL line into an event.

    Returns None for blank lines, invalid JSON (a log may be truncated
    mid-write), records without a usable timestamp, and record types that
    are not part of the conversation (summaries, file snapshots, ...).
    """
    record = _load_record(line)
    if record is None:
        return None
    return _event_from_record(record)


def _event_from_record(record: dict[str, Any]) -> Event | None:
    record_type = record.get("type")
    if record_type not in ("user", "assistant"):
        return None

    ts = parse_timestamp(record.get("timestamp"))
    if ts is None:
        return None

    meta = {
        "git_branch": _as_str(record.get("gitBranch")),
        "cwd": _as_str(record.get("cwd")),
        "version": _as_str(record.get("version")),
    }

    if record_type == "user":
        return _parse_user(record, ts, meta)
    return _parse_assistant(record, ts, meta)


def parse_session(path: Path) -> SessionRecord | None:
    """Parse a JSONL session file into a SessionRecord.

    Returns None if the file cannot be read or contains no conversation
    events. A session with events but no human turns is still returned;
    callers decide whether to surface it.
    """
    started_at: datetime | None = None
    ended_at: datetime | None = None
    git_branch: str | None = None
    cwd: str | None = None
    version: str | None = None
    message_count = 0
    usage = {"input": 0, "output": 0, "cache_creation": 0, "cache_read": 0}
    tools_used: set[str] = set()
    files: set[str] = set()
    user_messages: list[str] = []
    models_used: set[str] = set()
    model_tokens: dict[str, dict[str, int]] = {}
    skipped = 0

    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line in f:
                record = _load_record(line)
                if record is None:
                    if line.strip():
                        skipped += 1
                    continue

                # Every record in the log counts, conversation or not
                message_count += 1
                event = _event_from_record(record)
                if event is None:
                    continue

                if started_at is None or event.timestamp < started_at:
                    started_at = event.timestamp
                if ended_at is None or event.timestamp > ended_at:
                    ended_at = event.timestamp

                # Latest non-empty value wins
                git_branch = event.git_branch or git_branch
                cwd = event.cwd or cwd
                version = event.version or version

                if isinstance(event, HumanTurn):
                    user_messages.append(event.text)
                elif isinstance(event, AssistantTurn):
                    usage["input"] += event.usage.input
                    usage["output"] += event.usage.output
                    usage["cache_creation"] += event.usage.cache_creation
                    usage["cache_read"] += event.usage.cache_read

                    if event.model and event.model != SYNTHETIC_MODEL:
                        models_used.add(event.model)
                        per_model = model_tokens.setdefault(event.model, {"input": 0, "output": 0})
                        per_model["input"] += event.usage.input
                        per_model["output"] += event.usage.output

                    for call in event.tool_calls:
                        tools_used.add(call.name)
                        if call.file_path:
                            files.add(call.file_path)
    except OSError as exc:
        logger.debug("Cannot read session %s: %s", path, exc)
        return None

    if skipped:
        logger.debug("Skipped %d unusable lines in %s", skipped, path)

    if started_at is None or ended_at is None:
        logger.debug("No conversation events in %s", path)
        return None

    return SessionRecord(
        id=path.stem,
        started_at=started_at,
        ended_at=ended_at,
        transcript_path=path,
        git_branch=git_branch,
        cwd=cwd,
        version=version,
        message_count=message_count,
        input_tokens=usage["input"],
        output_tokens=usage["output"],
        cache_creation_tokens=usage["cache_creation"],
        cache_read_tokens=usage["cache_read"],
        tools_used=frozenset(tools_used),
        files_from_tool_calls=frozenset(files),
        user_messages=tuple(user_messages),
        models_used=frozenset(models_used),
        model_tokens=model_tokens_from(model_tokens),
    )


def load_transcript(path: Path) -> list[dict[str, Any]] | None:
    """Load the raw event records of a session, skipping malformed lines.

    Returns None if the file is not readable.
    """
    events: list[dict[str, Any]] = []
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(record, dict):
                    events.append(record)
    except OSError as exc:
        logger.warning("Transcript not accessible: %s (%s)", path, exc)
        return None
    return events


def file_fingerprint(path: Path) -> str:
    """SHA-256 of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()

"""Data models for cc-recall."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Union


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported on an assistant turn."""

    input: int = 0
    output: int = 0
    cache_creation: int = 0
    cache_read: int = 0


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation inside an assistant turn."""

    name: str
    file_path: str | None = None


@dataclass(frozen=True)
class HumanTurn:
    """A message typed by the user."""

    timestamp: datetime
    text: str
    git_branch: str | None = None
    cwd: str | None = None
    version: str | None = None


@dataclass(frozen=True)
class AssistantTurn:
    """A model response, possibly carrying tool calls and usage."""

    timestamp: datetime
    model: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: tuple[ToolCall, ...] = ()
    git_branch: str | None = None
    cwd: str | None = None
    version: str | None = None


@dataclass(frozen=True)
class ToolResult:
    """A user-role record that only returns tool output to the model."""

    timestamp: datetime
    git_branch: str | None = None
    cwd: str | None = None
    version: str | None = None


Event = Union[HumanTurn, AssistantTurn, ToolResult]


@dataclass(frozen=True)
class ModelTokens:
    """Input and output tokens one model spent in a session."""

    model: str
    input: int = 0
    output: int = 0


def model_tokens_from(mapping: dict[str, dict[str, int]]) -> tuple[ModelTokens, ...]:
    """Build the sorted per-model token tuple from {model: {"input": n, "output": n}}."""
    return tuple(
        ModelTokens(model, counts.get("input", 0), counts.get("output", 0))
        for model, counts in sorted(mapping.items())
    )


@dataclass(frozen=True)
class SessionRecord:
    """One parsed Claude Code session (JSONL file).

    message_count is the number of JSON records in the log, including
    summaries, snapshots and meta records that carry no conversation.
    """

    id: str
    started_at: datetime
    ended_at: datetime
    transcript_path: Path
    git_branch: str | None = None
    cwd: str | None = None
    version: str | None = None
    message_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    tools_used: frozenset[str] = frozenset()
    files_from_tool_calls: frozenset[str] = frozenset()
    user_messages: tuple[str, ...] = ()
    models_used: frozenset[str] = frozenset()
    # Sorted by model name
    model_tokens: tuple[ModelTokens, ...] = ()
    summary: str | None = None
    category: str | None = None

    def tokens_for(self, model: str) -> ModelTokens:
        for usage in self.model_tokens:
            if usage.model == model:
                return usage
        return ModelTokens(model)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-ready data. Sets are emitted sorted."""
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "git_branch": self.git_branch,
            "cwd": self.cwd,
            "version": self.version,
            "message_count": self.message_count,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "tools_used": sorted(self.tools_used),
            "files_from_tool_calls": sorted(self.files_from_tool_calls),
            "user_messages": list(self.user_messages),
            "models_used": sorted(self.models_used),
            "model_tokens": {
                usage.model: {"input": usage.input, "output": usage.output}
                for usage in self.model_tokens
            },
            "summary": self.summary,
            "category": self.category,
            "transcript_path": str(self.transcript_path),
        }


@dataclass(frozen=True)
class SearchResult:
    """A session with its relevance score."""

    record: SessionRecord
    relevance: float

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        data["relevance"] = round(self.relevance, 4)
        return data


@dataclass(frozen=True)
class Candidate:
    """A record handed from a backend to the orchestrator.

    relevance is None when the backend leaves scoring to the orchestrator.
    """

    record: SessionRecord
    relevance: float | None = None


@dataclass
class SessionDetail:
    """A single-session lookup, optionally with its raw events inlined."""

    record: SessionRecord
    messages: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        if self.messages is not None:
            data["messages"] = self.messages
        return data


@dataclass
class SessionStats:
    """Aggregate usage over a date window."""

    days: int
    session_count: int = 0
    total_messages: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cache_read_tokens: int = 0
    earliest_session: datetime | None = None
    latest_session: datetime | None = None
    by_category: list[dict[str, Any]] = field(default_factory=list)
    by_model: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": self.days,
            "session_count": self.session_count,
            "total_messages": self.total_messages,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_cache_creation_tokens": self.total_cache_creation_tokens,
            "total_cache_read_tokens": self.total_cache_read_tokens,
            "earliest_session": self.earliest_session.isoformat() if self.earliest_session else None,
            "latest_session": self.latest_session.isoformat() if self.latest_session else None,
            "by_category": self.by_category,
            "by_model": self.by_model,
        }

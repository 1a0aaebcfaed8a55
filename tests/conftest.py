"""Pytest fixtures for cc-recall tests."""

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cc_recall.models import SessionRecord

DEFAULT_PROJECT = "-Users-dev-Code-webapp"


class SessionFactory:
    """Builds Claude Code style JSONL records and writes session files."""

    def __init__(self, sessions_dir: Path) -> None:
        self.sessions_dir = sessions_dir

    @staticmethod
    def user(text, timestamp, **extra):
        record = {
            "type": "user",
            "sessionId": "ignored",
            "timestamp": timestamp,
            "gitBranch": "main",
            "cwd": "/Users/dev/Code/webapp",
            "version": "1.0.0",
            "message": {"role": "user", "content": text},
        }
        record.update(extra)
        return record

    @staticmethod
    def assistant(timestamp, tools=(), model="claude-sonnet-4", usage=None, text="OK"):
        content = [{"type": "text", "text": text}]
        for name, file_path in tools:
            tool_input = {"file_path": file_path} if file_path else {"command": "ls"}
            content.append({"type": "tool_use", "id": f"tool-{name}", "name": name, "input": tool_input})
        return {
            "type": "assistant",
            "timestamp": timestamp,
            "gitBranch": "main",
            "message": {
                "role": "assistant",
                "model": model,
                "content": content,
                "usage": usage
                or {
                    "input_tokens": 100,
                    "output_tokens": 50,
                    "cache_creation_input_tokens": 10,
                    "cache_read_input_tokens": 5,
                },
            },
        }

    @staticmethod
    def tool_result(timestamp):
        return {
            "type": "user",
            "timestamp": timestamp,
            "message": {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "tool-1", "content": "done"}],
            },
        }

    def write(self, session_id, records, project=DEFAULT_PROJECT, mtime=None, extra_lines=()):
        project_dir = self.sessions_dir / project
        project_dir.mkdir(parents=True, exist_ok=True)
        path = project_dir / f"{session_id}.jsonl"
        with open(path, "w") as f:
            for record in records:
                f.write(json.dumps(record) + "\n")
            for line in extra_lines:
                f.write(line + "\n")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    def conversation(self, session_id, messages, ended, tools=(), **kwargs):
        """Write a session of user messages followed by one assistant turn at `ended`.

        The user messages are sent one minute before `ended`, so the session
        ends exactly at `ended`.
        """
        end = datetime.fromisoformat(ended.replace("Z", "+00:00"))
        sent = (end - timedelta(minutes=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
        records = [self.user(text, sent) for text in messages]
        records.append(self.assistant(ended, tools=tools))
        return self.write(session_id, records, **kwargs)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sessions_dir(temp_dir):
    path = temp_dir / "projects"
    path.mkdir()
    return path


@pytest.fixture
def db_path(temp_dir):
    return temp_dir / "index" / "index.db"


@pytest.fixture
def factory(sessions_dir):
    return SessionFactory(sessions_dir)


@pytest.fixture
def sample_session_jsonl(factory):
    """Create a sample JSONL session file."""
    f = factory
    records = [
        f.user("Let's build an email filter", "2025-01-15T10:00:00Z"),
        f.assistant(
            "2025-01-15T10:00:05Z",
            tools=[("Edit", "src/components/EmailFilter.tsx"), ("Bash", None)],
        ),
        f.tool_result("2025-01-15T10:00:06Z"),
        f.user("Yes, ship it", "2025-01-15T10:05:00Z"),
        f.assistant("2025-01-15T10:05:30Z", tools=[("Edit", "src/components/EmailFilter.tsx")]),
    ]
    return f.write("session-email", records)


@pytest.fixture
def make_record():
    """Build SessionRecords directly for scorer and filter tests."""

    def _make(
        id="session-1",
        user_messages=("Let's build an email filter", "Yes, ship it"),
        tools=("Edit", "Bash"),
        files=(),
        ended_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        started_at=None,
        **kwargs,
    ):
        return SessionRecord(
            id=id,
            started_at=started_at or ended_at,
            ended_at=ended_at,
            transcript_path=Path(f"/tmp/{id}.jsonl"),
            tools_used=frozenset(tools),
            files_from_tool_calls=frozenset(files),
            user_messages=tuple(user_messages),
            **kwargs,
        )

    return _make

"""Structural filters: date window, tools and file pattern."""

import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from cc_recall import config
from cc_recall.errors import InvalidDateError
from cc_recall.models import SessionRecord

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class SearchCriteria:
    """Parameters of one search.

    since/until are aware datetimes. An explicit since takes precedence
    over days.
    """

    query: str | None = None
    days: int | None = None
    since: datetime | None = None
    until: datetime | None = None
    tools: list[str] | None = None
    file_pattern: str | None = None
    limit: int | None = None


def parse_date(value: str | None, end_of_day: bool = False) -> datetime | None:
    """Parse an ISO date or datetime into an aware UTC datetime.

    A bare date is the start of that day, or its last microsecond when
    end_of_day is set (inclusive upper bounds).
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        if _DATE_ONLY.match(value):
            day = datetime.fromisoformat(value).date()
            dt = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidDateError(f"Invalid date format: {value}") from exc

    # If naive, assume UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_tools(value: str | None) -> list[str] | None:
    """Split a comma-separated tool list."""
    if not value:
        return None
    tools = [t.strip() for t in value.split(",") if t.strip()]
    return tools or None


def clamp_limit(limit: int | None) -> int:
    """Clamp a requested result limit to [1, MAX_LIMIT]."""
    if limit is None:
        return config.DEFAULT_LIMIT
    return max(1, min(int(limit), config.MAX_LIMIT))


def resolve_window(
    criteria: SearchCriteria, now: datetime | None = None
) -> tuple[datetime | None, datetime | None]:
    """Resolve the (since, until) window, translating days relative to now."""
    since = criteria.since
    if since is None and criteria.days is not None:
        now = now or datetime.now(tz=timezone.utc)
        since = now - timedelta(days=criteria.days)
    return since, criteria.until


def matches_tools(record: SessionRecord, tools: list[str]) -> bool:
    wanted = [t.lower() for t in tools]
    return any(w in used.lower() for used in record.tools_used for w in wanted)


def matches_file_pattern(record: SessionRecord, pattern: str) -> bool:
    pattern = pattern.lower()
    return any(pattern in f.lower() for f in record.files_from_tool_calls)


def matches_filters(
    record: SessionRecord, criteria: SearchCriteria, now: datetime | None = None
) -> bool:
    """Check if a session passes every active filter."""
    since, until = resolve_window(criteria, now)
    if since is not None and record.ended_at < since:
        return False
    if until is not None and record.ended_at > until:
        return False

    if criteria.tools and not matches_tools(record, criteria.tools):
        return False

    if criteria.file_pattern and not matches_file_pattern(record, criteria.file_pattern):
        return False

    return True

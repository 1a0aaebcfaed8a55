"""Relevance scoring for sessions."""

from cc_recall.models import SessionRecord

# Score given to every session when there is no query, so listings still
# order by recency
BASELINE_SCORE = 1.0

# Substring scorer weights, per matching term
USER_MESSAGE_WEIGHT = 10
TOOL_WEIGHT = 3
FILE_WEIGHT = 3

# bm25 column weights for the index backend, in sessions_fts column order.
# Summary must outrank user messages, which must outrank tool/file metadata.
FIELD_WEIGHTS = {
    "summary": 10.0,
    "messages": 5.0,
    "metadata": 1.0,
}


def tokenize_query(query: str | None) -> list[str]:
    """Split a query on whitespace into lowercase terms."""
    if not query:
        return []
    return query.lower().split()


def score_relevance(record: SessionRecord, query: str | None) -> float:
    """Score a session against a free-text query.

    Every term found (case-insensitive substring) in a user message adds
    USER_MESSAGE_WEIGHT, once per message, so sessions that keep returning
    to a topic rank higher. Matches in tool names and file paths add
    TOOL_WEIGHT / FILE_WEIGHT. A score of 0 means no match.
    """
    terms = tokenize_query(query)
    if not terms:
        return BASELINE_SCORE

    score = 0
    for message in record.user_messages:
        message_lower = message.lower()
        score += USER_MESSAGE_WEIGHT * sum(1 for term in terms if term in message_lower)

    for tool in record.tools_used:
        tool_lower = tool.lower()
        score += TOOL_WEIGHT * sum(1 for term in terms if term in tool_lower)

    for file_path in record.files_from_tool_calls:
        file_lower = file_path.lower()
        score += FILE_WEIGHT * sum(1 for term in terms if term in file_lower)

    return float(score)

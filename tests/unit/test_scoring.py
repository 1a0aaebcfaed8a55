"""Tests for relevance scoring."""

from cc_recall.scoring import (
    BASELINE_SCORE,
    FIELD_WEIGHTS,
    FILE_WEIGHT,
    TOOL_WEIGHT,
    USER_MESSAGE_WEIGHT,
    score_relevance,
    tokenize_query,
)


def test_tokenize_query():
    assert tokenize_query("  Email   FILTER ") == ["email", "filter"]
    assert tokenize_query("") == []
    assert tokenize_query(None) == []


def test_empty_query_gets_baseline(make_record):
    record = make_record()
    assert score_relevance(record, None) == BASELINE_SCORE
    assert score_relevance(record, "   ") == BASELINE_SCORE
    assert BASELINE_SCORE > 0


def test_user_message_match(make_record):
    record = make_record()
    score = score_relevance(record, "email")
    assert score >= 10
    assert score == USER_MESSAGE_WEIGHT


def test_no_match_scores_zero(make_record):
    assert score_relevance(make_record(), "database") == 0


def test_matches_accumulate_per_message(make_record):
    """A term mentioned in several messages counts once per message."""
    record = make_record(user_messages=("deploy the app", "deploy again", "unrelated"), tools=())
    assert score_relevance(record, "deploy") == 2 * USER_MESSAGE_WEIGHT


def test_each_term_scores(make_record):
    record = make_record(user_messages=("fix the email filter",), tools=())
    assert score_relevance(record, "email filter") == 2 * USER_MESSAGE_WEIGHT
    assert score_relevance(record, "email database") == USER_MESSAGE_WEIGHT


def test_tool_and_file_matches(make_record):
    record = make_record(
        user_messages=("something else",),
        tools=("Edit", "Bash"),
        files=("src/components/Button.tsx", "src/components/Modal.tsx"),
    )
    assert score_relevance(record, "edit") == TOOL_WEIGHT
    assert score_relevance(record, "components") == 2 * FILE_WEIGHT


def test_case_insensitive_substring(make_record):
    record = make_record(user_messages=("Refactor the PaymentService",), tools=())
    assert score_relevance(record, "paymentserv") == USER_MESSAGE_WEIGHT


def test_user_messages_outweigh_metadata():
    assert USER_MESSAGE_WEIGHT > TOOL_WEIGHT
    assert USER_MESSAGE_WEIGHT > FILE_WEIGHT


def test_index_field_weight_order():
    assert FIELD_WEIGHTS["summary"] > FIELD_WEIGHTS["messages"] > FIELD_WEIGHTS["metadata"] > 0

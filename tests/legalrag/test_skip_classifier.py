"""Tests for the retrieval skip classifier."""

import pytest

from legalrag.skip_classifier import classification_reason, classify, should_skip_retrieval


@pytest.mark.parametrize(
    "query,reason",
    [
        ("hello", "Greeting"),
        ("Good morning!", "Greeting"),
        ("kumusta po", "Greeting"),
        ("thanks a lot", "Farewell/Thank you"),
        ("who are you?", "Identity/Capability question"),
        ("how do i use this app", "Usage instruction question"),
        ("okay!", "Simple acknowledgment"),
        ("is this free?", "Meta/Platform question"),
        ("what are my rights as a tenant", "Legal system overview (general)"),
        ("what is 2 + 2", "Non-legal question (redirect)"),
        ("what is photosynthesis", "Non-legal question (redirect)"),
        ("i think so", "Short conversational response"),
    ],
)
def test_skipped_messages(query, reason):
    decision = classify(query, "A", False)
    assert decision.skip is True
    assert decision.reason == reason


def test_blank_query_is_skipped():
    assert classify("   ").reason == "Empty query"
    assert should_skip_retrieval(None) is True


def test_kb_required_indicator_overrides_small_talk():
    query = "What is the penalty for theft under Article 308?"
    assert should_skip_retrieval(query, "A", False) is False
    assert classification_reason(query, "A", False) == "Requires specific legal provisions - KB required"

    # Greeting plus a citation still retrieves
    assert should_skip_retrieval("hi, what does the revised penal code say?", "A", False) is False


def test_case_report_forces_retrieval():
    decision = classify("thanks", "B", True)
    assert decision.skip is False
    assert decision.reason == "CPA report generation - KB required"

    # Only in case-assessment mode
    assert classify("thanks", "A", True).skip is True


def test_acknowledgment_requires_short_exact_match():
    assert classification_reason("ok.", "A", False) == "Simple acknowledgment"
    # Longer than 15 characters
    assert classify("alright alright alright", "A", False).reason != "Simple acknowledgment"


def test_standard_legal_question_is_not_skipped():
    decision = classify("My landlord evicted me without notice and kept my deposit", "A", False)
    assert decision.skip is False
    assert decision.reason == "Standard query - KB recommended"

"""
Tests for confidence scoring and the acceptance gate.

Tests verify:
- Similarity-based base score with citation/topic boosts
- Additive boosts clamp to exactly 1.0
- Threshold rule priority
- Gate accepts at the threshold boundary
"""

import pytest

from legalrag.confidence import THRESHOLD_RULES, ConfidenceGate, GateDecision, decide, dynamic_threshold, score
from legalrag.models import KnowledgeBaseEntry, StructuredQuery


def entry(entry_id, similarity=None, **fields):
    return KnowledgeBaseEntry(entry_id=entry_id, similarity=similarity, **fields)


class TestScore:
    def test_no_entries_is_zero(self):
        assert score([], StructuredQuery()) == 0.0

    def test_base_uses_better_of_max_and_average(self):
        entries = [entry("a", 0.8), entry("b", 0.4)]
        assert score(entries, StructuredQuery()) == pytest.approx(0.72)

        close = [entry("a", 0.5), entry("b", 0.5), entry("c", 0.5)]
        assert score(close, StructuredQuery()) == pytest.approx(0.45)

    def test_missing_similarity_counts_as_zero(self):
        assert score([entry("a"), entry("b", 0.5)], StructuredQuery()) == pytest.approx(0.45)

    def test_citation_boost_is_case_insensitive(self):
        entries = [entry("a", 0.5, canonical_citation="Revised Penal Code, RPC ART. 308")]
        query = StructuredQuery(statutes_referenced=["rpc art. 308"])
        assert score(entries, query) == pytest.approx(0.65)

    def test_topic_boost_on_tag_substring(self):
        entries = [entry("a", 0.5, tags=["Criminal Law - Property"])]
        query = StructuredQuery(legal_topics=["criminal law"])
        assert score(entries, query) == pytest.approx(0.55)

    def test_no_boost_without_match(self):
        entries = [entry("a", 0.5, canonical_citation="RPC Art. 309", tags=["family law"])]
        query = StructuredQuery(statutes_referenced=["RPC Art. 308"], legal_topics=["labor law"])
        assert score(entries, query) == pytest.approx(0.45)

    def test_boosts_clamp_to_exactly_one(self):
        entries = [entry("a", 1.0, canonical_citation="RPC Art. 308", tags=["criminal law"])]
        query = StructuredQuery(statutes_referenced=["RPC Art. 308"], legal_topics=["criminal law"])
        assert score(entries, query) == 1.0


class TestDynamicThreshold:
    def test_rule_table_order(self):
        assert [name for name, *_ in THRESHOLD_RULES] == [
            "statute_reference",
            "high_urgency",
            "procedural",
            "case_assessment",
        ]

    @pytest.mark.parametrize(
        "query,mode,expected",
        [
            (StructuredQuery(), "A", 0.18),
            (StructuredQuery(statutes_referenced=["Rule 114"]), "A", 0.126),
            (StructuredQuery(urgency="high"), "A", 0.144),
            (StructuredQuery(legal_topics=["procedural law"]), "A", 0.09),
            (StructuredQuery(), "B", 0.144),
            # First matching rule wins
            (StructuredQuery(statutes_referenced=["Rule 114"], urgency="high"), "B", 0.126),
            (StructuredQuery(urgency="high", legal_topics=["procedural law"]), "A", 0.144),
        ],
    )
    def test_thresholds(self, query, mode, expected):
        assert dynamic_threshold(query, mode, 0.18) == pytest.approx(expected)

    def test_floors_apply_for_low_base(self):
        assert dynamic_threshold(StructuredQuery(statutes_referenced=["Rule 114"]), "A", 0.1) == 0.12
        assert dynamic_threshold(StructuredQuery(urgency="high"), "A", 0.1) == 0.14
        assert dynamic_threshold(StructuredQuery(legal_topics=["court process"]), "A", 0.1) == 0.08
        assert dynamic_threshold(StructuredQuery(), "B", 0.1) == 0.10


class TestGate:
    def test_boundary_accepts(self):
        assert decide(0.18, 0.18) is GateDecision.ACCEPT

    def test_below_threshold_rejects(self):
        assert decide(0.1799, 0.18) is GateDecision.REJECT

    def test_gate_uses_configured_base(self):
        gate = ConfidenceGate(base_threshold=0.3)
        assert gate.threshold(StructuredQuery(), "A") == 0.3
        assert gate.decide(0.3, gate.threshold(StructuredQuery(), "A")) is GateDecision.ACCEPT

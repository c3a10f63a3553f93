"""Confidence scoring and the KB-first acceptance gate.

``score`` turns retrieved entries into a trust value in [0, 1];
``dynamic_threshold`` picks the acceptance bar for a query; ``decide`` compares
the two. Thresholds come from ``THRESHOLD_RULES``, evaluated top to bottom:
the first matching rule applies and the rest are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Sequence, Tuple

import structlog

from legalrag.models import CASE_ASSESSMENT_MODE, KnowledgeBaseEntry, StructuredQuery

logger = structlog.get_logger(__name__)

DEFAULT_BASE_THRESHOLD = 0.18

MAX_SIMILARITY_WEIGHT = 0.9
AVG_SIMILARITY_WEIGHT = 0.8
CITATION_MATCH_BOOST = 0.2
TOPIC_MATCH_BOOST = 0.1


class GateDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


def _citation_match(entries: Sequence[KnowledgeBaseEntry], statutes: Sequence[str]) -> bool:
    lowered = [s.lower() for s in statutes]
    for entry in entries:
        if entry.canonical_citation is None:
            continue
        citation = entry.canonical_citation.lower()
        if any(statute in citation for statute in lowered):
            return True
    return False


def _topic_match(entries: Sequence[KnowledgeBaseEntry], topics: Sequence[str]) -> bool:
    lowered = [t.lower() for t in topics]
    for entry in entries:
        for tag in entry.tags:
            tag_lower = tag.lower()
            if any(topic in tag_lower for topic in lowered):
                return True
    return False


def score(entries: Sequence[KnowledgeBaseEntry], query: StructuredQuery) -> float:
    """
    Compute the confidence that ``entries`` answer ``query``.

    Base: max(max_similarity * 0.9, avg_similarity * 0.8), missing similarity
    counted as 0. Boosts are added before a single final clamp:
    +0.2 when a canonical citation contains a referenced statute,
    +0.1 when a tag contains a detected legal topic.

    Returns:
        Confidence in [0, 1]; 0.0 for no entries
    """
    if not entries:
        return 0.0

    similarities = [e.similarity_or_zero for e in entries]
    confidence = max(
        max(similarities) * MAX_SIMILARITY_WEIGHT,
        (sum(similarities) / len(similarities)) * AVG_SIMILARITY_WEIGHT,
    )

    if query.has_statute_references and _citation_match(entries, query.statutes_referenced):
        confidence += CITATION_MATCH_BOOST

    if query.legal_topics and _topic_match(entries, query.legal_topics):
        confidence += TOPIC_MATCH_BOOST

    return min(1.0, max(0.0, confidence))


# (name, predicate(query, mode), factor, floor); priority ordered, first match wins
ThresholdRule = Tuple[str, Callable[[StructuredQuery, str], bool], float, float]

THRESHOLD_RULES: List[ThresholdRule] = [
    ("statute_reference", lambda q, mode: q.has_statute_references, 0.7, 0.12),
    ("high_urgency", lambda q, mode: q.is_high_urgency, 0.8, 0.14),
    ("procedural", lambda q, mode: q.is_procedural_query, 0.5, 0.08),
    ("case_assessment", lambda q, mode: mode == CASE_ASSESSMENT_MODE, 0.8, 0.10),
]


def dynamic_threshold(query: StructuredQuery, mode: str, base: float = DEFAULT_BASE_THRESHOLD) -> float:
    """Acceptance threshold for ``query`` in ``mode``: ``max(floor, base * factor)`` of the first matching rule."""
    for name, predicate, factor, floor in THRESHOLD_RULES:
        if predicate(query, mode):
            return max(floor, base * factor)
    return base


def decide(confidence: float, threshold: float) -> GateDecision:
    """Accept iff ``confidence >= threshold``."""
    return GateDecision.ACCEPT if confidence >= threshold else GateDecision.REJECT


@dataclass
class ConfidenceGate:
    """Scorer, threshold and decision bound to a configured base threshold."""

    base_threshold: float = DEFAULT_BASE_THRESHOLD

    def score(self, entries: Sequence[KnowledgeBaseEntry], query: StructuredQuery) -> float:
        return score(entries, query)

    def threshold(self, query: StructuredQuery, mode: str) -> float:
        return dynamic_threshold(query, mode, self.base_threshold)

    def decide(self, confidence: float, threshold: float) -> GateDecision:
        decision = decide(confidence, threshold)
        logger.debug(
            "Confidence gate decision",
            confidence=round(confidence, 4),
            threshold=round(threshold, 4),
            decision=decision.value,
        )
        return decision

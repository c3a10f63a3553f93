"""Pydantic models for the legal KB retrieval core.

Value types passed between the structurer, retriever, confidence gate and
response composer. All of them are immutable once constructed; list fields
are never ``None``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_JURISDICTION = "Philippines"

Urgency = Literal["low", "medium", "high"]

RetrievalMethod = Literal[
    "vector",
    "lexical",
    "fast-path",
    "hybrid",
    "none",
    "disabled",
    "empty",
    "error",
    "unknown",
]

ChatMode = Literal["A", "B"]  # A: general legal information, B: case assessment

CASE_ASSESSMENT_MODE = "B"


def _string_list(value: Any) -> List[str]:
    """Coerce None/scalars/mixed lists into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple, set)):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


def _ordered_unique(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for v in values:
        if v not in seen:
            seen.add(v)
            result.append(v)
    return result


class StructuredQuery(BaseModel):
    """Normalized, annotated representation of one incoming question."""

    model_config = ConfigDict(frozen=True)

    normalized_question: str = Field(default="", description="Cleaned, legally-precise restatement")
    keywords: List[str] = Field(default_factory=list, description="Extracted terms for matching")
    legal_topics: List[str] = Field(default_factory=list, description="e.g. criminal law, procedural law")
    statutes_referenced: List[str] = Field(default_factory=list, description="e.g. Rule 114 Sec. 1, RPC Art. 308")
    jurisdiction: str = Field(default=DEFAULT_JURISDICTION)
    temporal_scope: str = Field(default="", description="weekend, business hours, ...")
    related_terms: List[str] = Field(default_factory=list)
    urgency: Urgency = "low"
    query_expansions: List[str] = Field(default_factory=list)

    @field_validator("normalized_question", "temporal_scope", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("keywords", mode="before")
    @classmethod
    def unique_keywords(cls, v: Any) -> List[str]:
        return _ordered_unique(_string_list(v))

    @field_validator("legal_topics", "statutes_referenced", "related_terms", "query_expansions", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> List[str]:
        return _string_list(v)

    @field_validator("jurisdiction", mode="before")
    @classmethod
    def default_jurisdiction(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return DEFAULT_JURISDICTION

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip().lower() in ("low", "medium", "high"):
            return v.strip().lower()
        return "low"

    @classmethod
    def from_llm_payload(cls, payload: Dict[str, Any], question: str = "") -> "StructuredQuery":
        """Build from the snake_case JSON object returned by the structuring model."""
        return cls(
            normalized_question=payload.get("normalized_question") or question.strip(),
            keywords=payload.get("keywords"),
            legal_topics=payload.get("legal_topics"),
            statutes_referenced=payload.get("statutes_referenced"),
            jurisdiction=payload.get("jurisdiction"),
            temporal_scope=payload.get("temporal_scope"),
            related_terms=payload.get("related_terms"),
            urgency=payload.get("urgency"),
            query_expansions=payload.get("query_expansions"),
        )

    @property
    def has_statute_references(self) -> bool:
        return bool(self.statutes_referenced)

    @property
    def is_high_urgency(self) -> bool:
        return self.urgency == "high"

    @property
    def is_procedural_query(self) -> bool:
        return any("procedural" in t.lower() or "process" in t.lower() for t in self.legal_topics)

    @property
    def is_criminal_law_query(self) -> bool:
        return any("criminal" in t.lower() for t in self.legal_topics)


class KnowledgeBaseEntry(BaseModel):
    """One retrievable unit of legal knowledge returned by the KB API.

    Identity is ``entry_id``. ``similarity`` is only set by retrieval.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: Optional[str] = None
    type: Optional[str] = None
    title: Optional[str] = None
    canonical_citation: Optional[str] = None
    summary: Optional[str] = None
    text: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    similarity: Optional[float] = None
    rule_no: Optional[str] = None
    section_no: Optional[str] = None
    rights_scope: Optional[str] = None
    source_urls: List[str] = Field(default_factory=list)

    @field_validator("tags", "source_urls", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> List[str]:
        return _string_list(v)

    @field_validator("similarity", mode="before")
    @classmethod
    def numeric_similarity(cls, v: Any) -> Optional[float]:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return float(v)

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "KnowledgeBaseEntry":
        """Map one ``results[]`` item of the KB search API, ignoring ill-typed fields."""

        def text_field(key: str) -> Optional[str]:
            value = raw.get(key)
            if value is None:
                return None
            return value if isinstance(value, str) else str(value)

        return cls(
            entry_id=text_field("entry_id"),
            type=text_field("type"),
            title=text_field("title"),
            canonical_citation=text_field("canonical_citation"),
            summary=text_field("summary"),
            text=text_field("text"),
            tags=raw.get("tags"),
            similarity=raw.get("similarity"),
            rule_no=text_field("rule_no"),
            section_no=text_field("section_no"),
            rights_scope=text_field("rights_scope"),
            source_urls=raw.get("source_urls"),
        )

    @property
    def similarity_or_zero(self) -> float:
        return self.similarity if self.similarity is not None else 0.0

    def to_context(self) -> Dict[str, Any]:
        """Serialize with the KB API's snake_case keys, for ``/chat`` context."""
        return self.model_dump()


class RAGMetadata(BaseModel):
    """Confidence and retrieval information attached to every response."""

    model_config = ConfigDict(frozen=True)

    confidence: float = 0.0
    kb_first: bool = False
    used_sqg: bool = False
    used_reranking: bool = False
    retrieval_method: RetrievalMethod = "unknown"
    legal_topics: List[str] = Field(default_factory=list)
    threshold: float = 0.0
    skip_reason: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        if value != value:  # NaN
            return 0.0
        return min(1.0, max(0.0, value))

    @field_validator("retrieval_method", mode="before")
    @classmethod
    def default_method(cls, v: Any) -> str:
        return v if v else "unknown"

    @field_validator("legal_topics", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> List[str]:
        return _string_list(v)

    @property
    def is_high_confidence(self) -> bool:
        return self.confidence >= 0.7

    @property
    def is_medium_confidence(self) -> bool:
        return 0.4 <= self.confidence < 0.7

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence < 0.4


class EnhancedRAGResponse(BaseModel):
    """Final result of one knowledge-base chat call.

    ``answer`` and ``error`` use the empty string for "nothing"; ``metadata``
    is always present.
    """

    model_config = ConfigDict(frozen=True)

    answer: str = ""
    sources: List[KnowledgeBaseEntry] = Field(default_factory=list)
    metadata: RAGMetadata = Field(default_factory=RAGMetadata)
    error: str = ""

    @field_validator("answer", "error", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("sources", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("metadata", mode="before")
    @classmethod
    def none_to_metadata(cls, v: Any) -> Any:
        return RAGMetadata() if v is None else v

    @property
    def has_error(self) -> bool:
        return bool(self.error.strip())

    @property
    def has_sources(self) -> bool:
        return bool(self.sources)

    @property
    def is_high_confidence(self) -> bool:
        return self.metadata.confidence >= 0.7

    @property
    def is_kb_first(self) -> bool:
        return self.metadata.kb_first

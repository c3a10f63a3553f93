"""
Structured query generation (SQG).

Turns a free-text legal question into a ``StructuredQuery`` by asking a chat
model for a JSON object. When the model is disabled, unconfigured or fails, a
keyword/regex heuristic produces a best-effort structure instead, so
``generate`` always returns a usable value.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Any, List, Optional

import structlog
from langchain_core.language_models.chat_models import BaseChatModel

from legalrag.errors import StructuredQueryError
from legalrag.models import DEFAULT_JURISDICTION, StructuredQuery
from legalrag.prompts import SQG_TEMPLATE
from libs.caching import TTLCache
from libs.common.settings import Settings

logger = structlog.get_logger(__name__)

STOPWORDS = frozenset(["the", "and", "or", "but", "for", "with", "what", "how", "when", "where", "why"])

# Substring triggers -> topic label, checked in order
TOPIC_TRIGGERS = [
    (("criminal", "crime"), "criminal law"),
    (("civil", "contract"), "civil law"),
    (("family", "marriage"), "family law"),
    (("labor", "employment"), "labor law"),
    (("court", "procedure"), "procedural law"),
    (("bail", "arrest"), "criminal procedure"),
]

RULE_PATTERN = re.compile(r"rule\s+(\d+)", re.IGNORECASE)
ARTICLE_PATTERN = re.compile(r"art(?:icle)?\s+(\d+)", re.IGNORECASE)
FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_keywords(question: str) -> List[str]:
    words = question.lower().split()
    keywords: List[str] = []
    for word in words:
        if len(word) <= 2 or word in STOPWORDS or word in keywords:
            continue
        keywords.append(word)
    return keywords


def detect_legal_topics(question: str) -> List[str]:
    lower = question.lower()
    return [topic for triggers, topic in TOPIC_TRIGGERS if any(t in lower for t in triggers)]


def detect_statutes(question: str) -> List[str]:
    statutes = [f"Rule {m}" for m in RULE_PATTERN.findall(question)]
    statutes.extend(f"RPC Art. {m}" for m in ARTICLE_PATTERN.findall(question))
    return statutes


def fallback_query(question: Optional[str], jurisdiction: str = DEFAULT_JURISDICTION) -> StructuredQuery:
    """
    Heuristic structuring used whenever the model path is unavailable.

    Args:
        question: Raw question text (None is treated as empty)
        jurisdiction: Jurisdiction to stamp on the result

    Returns:
        StructuredQuery with keywords, topics and statutes from simple rules
    """
    text = question or ""
    keywords = extract_keywords(text)
    return StructuredQuery(
        normalized_question=text.strip(),
        keywords=keywords,
        legal_topics=detect_legal_topics(text),
        statutes_referenced=detect_statutes(text),
        jurisdiction=jurisdiction,
        temporal_scope="",
        related_terms=list(keywords),
        urgency="low",
        query_expansions=[],
    )


def strip_code_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if present."""
    return FENCE_PATTERN.sub("", content.strip()).strip()


def parse_structured_payload(content: Any, question: str) -> StructuredQuery:
    """Parse model output into a StructuredQuery.

    Raises:
        StructuredQueryError: content is not a JSON object
    """
    if not isinstance(content, str) or not content.strip():
        raise StructuredQueryError("Empty structuring response")
    try:
        payload = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise StructuredQueryError(f"Structuring response is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise StructuredQueryError("Structuring response is not a JSON object")
    return StructuredQuery.from_llm_payload(payload, question=question)


class StructuredQueryGenerator:
    """
    Cached question -> StructuredQuery conversion.

    Usage:
        generator = StructuredQueryGenerator(get_settings())
        query = await generator.generate("Can I post bail on a weekend?")
    """

    def __init__(
        self,
        settings: Settings,
        llm: Optional[BaseChatModel] = None,
        cache: Optional[TTLCache[StructuredQuery]] = None,
    ):
        self.settings = settings
        self._llm = llm
        self._cache: TTLCache[StructuredQuery] = cache or TTLCache(
            default_ttl_seconds=settings.sqg_cache_ttl_ms / 1000.0
        )

    @property
    def cache(self) -> TTLCache[StructuredQuery]:
        return self._cache

    def _get_llm(self) -> Optional[BaseChatModel]:
        """Build the chat model on first use; None when no API key is configured."""
        if self._llm is not None:
            return self._llm
        api_key = self.settings.resolved_openai_api_key
        if not api_key:
            return None
        from langchain_openai import ChatOpenAI

        self._llm = ChatOpenAI(
            model=self.settings.sqg_model,
            temperature=0.1,
            max_tokens=800,
            timeout=self.settings.sqg_timeout_seconds,
            api_key=api_key,
        )
        return self._llm

    def fallback(self, question: Optional[str]) -> StructuredQuery:
        return fallback_query(question, jurisdiction=self.settings.default_jurisdiction)

    async def generate(self, question: Optional[str]) -> StructuredQuery:
        """
        Structure ``question``; never raises.

        Model results are cached by normalized question text. Fallback
        results are not cached, so a recovered model is used on the next call.
        """
        if not self.settings.sqg_enabled or not question or not question.strip():
            return self.fallback(question)

        cache_key = question.lower().strip()
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug("SQG cache hit", question=cache_key)
            return cached

        llm = self._get_llm()
        if llm is None:
            logger.debug("SQG model not configured, using fallback")
            return self.fallback(question)

        start_time = time.time()
        try:
            chain = SQG_TEMPLATE | llm
            result = await asyncio.wait_for(
                chain.ainvoke({"question": question}),
                timeout=self.settings.sqg_timeout_seconds,
            )
            structured = parse_structured_payload(getattr(result, "content", result), question)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "SQG failed, using fallback",
                question=cache_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self.fallback(question)

        self._cache.put(cache_key, structured)
        logger.info(
            "SQG generated",
            duration_ms=round((time.time() - start_time) * 1000, 2),
            legal_topics=structured.legal_topics,
            statutes=structured.statutes_referenced,
        )
        return structured

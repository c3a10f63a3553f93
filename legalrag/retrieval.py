"""Hybrid retrieval against the knowledge-base API.

Three stages, each a ``/kb/search`` call with a different ``method``:

- vector: semantic search on the question, filtered by detected legal topics
- lexical: trigram/keyword search, only when vector search came back empty or
  weak (best similarity below the floor)
- fast-path: exact citation matching, only when statutes were referenced

Vector and fast-path run concurrently; lexical waits on vector. Each stage is
cached, de-duplicated in flight and retried; a failed stage contributes no
entries instead of failing the retrieval.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Literal, Optional, Sequence

import structlog
from pydantic import TypeAdapter

from legalrag.kb_client import KnowledgeBaseClient
from legalrag.models import KnowledgeBaseEntry, StructuredQuery
from legalrag.retry import RetryingExecutor
from libs.caching import RetrievalCache

logger = structlog.get_logger(__name__)

StageName = Literal["vector", "lexical", "fast-path"]

STAGE_ORDER = ("vector", "lexical", "fast-path")

_entry_list = TypeAdapter(List[KnowledgeBaseEntry])


@dataclass(frozen=True)
class StageResult:
    """Entries returned by one retrieval stage, tagged with the stage name."""

    stage: StageName
    entries: List[KnowledgeBaseEntry] = field(default_factory=list)


@dataclass(frozen=True)
class RetrievalOutcome:
    """Ranked entries plus the per-stage results that produced them."""

    entries: List[KnowledgeBaseEntry]
    stages: List[StageResult]
    method: str

    @property
    def is_empty(self) -> bool:
        return not self.entries


def max_similarity(entries: Sequence[KnowledgeBaseEntry]) -> float:
    return max((e.similarity_or_zero for e in entries), default=0.0)


def dedupe_and_rank(entries: Sequence[KnowledgeBaseEntry], limit: int) -> List[KnowledgeBaseEntry]:
    """
    Collapse duplicates and order by similarity.

    The first occurrence of each ``entry_id`` wins, even if a later duplicate
    scores higher. Entries without an id are dropped. The sort is stable, so
    ties keep their merge order; a missing similarity ranks as 0.0.
    """
    seen = set()
    unique: List[KnowledgeBaseEntry] = []
    for entry in entries:
        if not entry.entry_id or entry.entry_id in seen:
            continue
        seen.add(entry.entry_id)
        unique.append(entry)
    unique.sort(key=lambda e: e.similarity_or_zero, reverse=True)
    return unique[: max(0, limit)]


def merge_stage_results(stages: Sequence[StageResult], limit: int) -> RetrievalOutcome:
    """Concatenate stages in vector, lexical, fast-path order and rank the result."""
    ordered = sorted(stages, key=lambda s: STAGE_ORDER.index(s.stage))
    merged: List[KnowledgeBaseEntry] = []
    for stage in ordered:
        merged.extend(stage.entries)

    entries = dedupe_and_rank(merged, limit)
    contributing = [s.stage for s in ordered if s.entries]
    if not entries:
        method = "none"
    elif len(contributing) == 1:
        method = contributing[0]
    else:
        method = "hybrid"
    return RetrievalOutcome(entries=entries, stages=list(ordered), method=method)


def build_retrieval_cache(ttl_seconds: float, redis_client=None) -> RetrievalCache[List[KnowledgeBaseEntry]]:
    """Retrieval cache for entry lists; empty (possibly degraded) results are never stored."""
    return RetrievalCache(
        ttl_seconds=ttl_seconds,
        redis_client=redis_client,
        serialize=lambda entries: _entry_list.dump_python(entries, mode="json"),
        deserialize=_entry_list.validate_python,
        should_cache=lambda entries: bool(entries),
    )


def stage_cache_key(method: str, subject: str, limit: int, topics: Sequence[str] = ()) -> str:
    return f"{method}::{subject}::{limit}::{','.join(topics)}"


class HybridRetriever:
    """Run the retrieval stages for one question and merge their results."""

    def __init__(
        self,
        client: KnowledgeBaseClient,
        cache: Optional[RetrievalCache[List[KnowledgeBaseEntry]]] = None,
        executor: Optional[RetryingExecutor] = None,
        top_k: int = 12,
        similarity_threshold: float = 0.20,
        fast_path_limit: int = 8,
        cache_ttl_seconds: float = 60.0,
    ):
        self.client = client
        self.cache = cache or build_retrieval_cache(cache_ttl_seconds)
        self.executor = executor or RetryingExecutor()
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold
        self.fast_path_limit = fast_path_limit
        self.cache_ttl_seconds = cache_ttl_seconds

    async def _cached_search(
        self,
        key: str,
        operation: str,
        request_fn: Callable[[], Awaitable[List[KnowledgeBaseEntry]]],
    ) -> List[KnowledgeBaseEntry]:
        async def _fetch() -> List[KnowledgeBaseEntry]:
            return await self.executor.execute(request_fn, default=[], operation=operation)

        return await self.cache.get_or_fetch(key, _fetch, ttl_seconds=self.cache_ttl_seconds)

    async def vector_stage(self, question: str, query: StructuredQuery) -> StageResult:
        text = question.lower().strip()
        key = stage_cache_key("vector", text, self.top_k, query.legal_topics)
        entries = await self._cached_search(
            key,
            "vector_search",
            lambda: self.client.search(question, self.top_k, method="vector", legal_topics=query.legal_topics),
        )
        return StageResult("vector", entries)

    async def lexical_stage(self, question: str) -> StageResult:
        key = stage_cache_key("lexical", question.lower().strip(), self.top_k)
        entries = await self._cached_search(
            key,
            "lexical_search",
            lambda: self.client.search(question, self.top_k, method="lexical"),
        )
        return StageResult("lexical", entries)

    async def fast_path_stage(self, query: StructuredQuery) -> StageResult:
        key = stage_cache_key("fast-path", "|".join(query.statutes_referenced), self.fast_path_limit)
        entries = await self._cached_search(
            key,
            "fast_path_search",
            lambda: self.client.search(
                None,
                self.fast_path_limit,
                method="fast-path",
                statutes_referenced=query.statutes_referenced,
            ),
        )
        return StageResult("fast-path", entries)

    def needs_lexical(self, vector: StageResult) -> bool:
        return not vector.entries or max_similarity(vector.entries) < self.similarity_threshold

    async def _vector_then_lexical(self, question: str, query: StructuredQuery) -> List[StageResult]:
        vector = await self.vector_stage(question, query)
        if not self.needs_lexical(vector):
            return [vector]
        lexical = await self.lexical_stage(question)
        return [vector, lexical]

    async def _no_stage(self) -> List[StageResult]:
        return []

    async def _fast_path(self, query: StructuredQuery) -> List[StageResult]:
        return [await self.fast_path_stage(query)]

    async def retrieve(self, question: str, query: StructuredQuery) -> RetrievalOutcome:
        """
        Run all applicable stages and merge them.

        Args:
            question: Question text sent to vector and lexical search
            query: Structured form of the question (topics, statutes)

        Returns:
            RetrievalOutcome with at most ``top_k`` ranked entries. Never raises;
            unexpected failures yield an empty outcome.
        """
        start_time = time.time()
        try:
            fast_path = self._fast_path(query) if query.has_statute_references else self._no_stage()
            primary, secondary = await asyncio.gather(self._vector_then_lexical(question, query), fast_path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Hybrid retrieval failed", error=str(e), error_type=type(e).__name__)
            return RetrievalOutcome(entries=[], stages=[], method="none")

        outcome = merge_stage_results(primary + secondary, self.top_k)
        logger.info(
            "Hybrid retrieval completed",
            method=outcome.method,
            results=len(outcome.entries),
            stages={s.stage: len(s.entries) for s in outcome.stages},
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return outcome

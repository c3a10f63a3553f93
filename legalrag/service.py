"""
Knowledge-base service facade.

The single entry point collaborators (chat controllers, report generators)
use. Wires together the skip classifier, query structuring, hybrid retrieval,
confidence gating and response assembly, and guarantees that every public
coroutine returns a value instead of raising.

Usage:
    service = await KnowledgeBaseService.create()
    response = await service.chat_with_knowledge_base("What is the penalty for theft?", mode="A")
    await service.aclose()
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import List, Optional

import structlog

from legalrag.auth import build_token_provider
from legalrag.composer import ResponseAssembler
from legalrag.confidence import ConfidenceGate
from legalrag.kb_client import KnowledgeBaseClient
from legalrag.models import EnhancedRAGResponse, KnowledgeBaseEntry
from legalrag.retrieval import HybridRetriever, build_retrieval_cache
from legalrag.retry import RetryingExecutor, RetryPolicy
from legalrag.skip_classifier import classify
from legalrag.sqg import StructuredQueryGenerator
from libs.caching import RetrievalCache, TTLCache, close_redis_client, create_redis_client, health_check
from libs.common.logging import configure_logging
from libs.common.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

# Mode-steering sentence the chat UI appends to user messages
UI_STEERING_PATTERN = re.compile(r"The user\'s input fits the current mode.*?reply\.", re.IGNORECASE | re.DOTALL)
NEWLINES_PATTERN = re.compile(r"\n+")
MULTISPACE_PATTERN = re.compile(r"\s{2,}")


def sanitize_user_text(text: Optional[str]) -> str:
    """Strip UI steering text and collapse whitespace; returns the input unchanged if nothing would be left."""
    if text is None:
        return ""
    cleaned = UI_STEERING_PATTERN.sub("", text).strip()
    cleaned = MULTISPACE_PATTERN.sub(" ", NEWLINES_PATTERN.sub("\n", cleaned)).strip()
    return cleaned or text


def response_cache_key(question: str, mode: str) -> str:
    return f"{question.lower().strip()}::{mode}"


class KnowledgeBaseService:
    """KB-first question answering with confidence gating."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[KnowledgeBaseClient] = None,
        generator: Optional[StructuredQueryGenerator] = None,
        retriever: Optional[HybridRetriever] = None,
        assembler: Optional[ResponseAssembler] = None,
        executor: Optional[RetryingExecutor] = None,
        search_cache: Optional[RetrievalCache[List[KnowledgeBaseEntry]]] = None,
        response_cache: Optional[TTLCache[EnhancedRAGResponse]] = None,
        redis_client=None,
    ):
        self.settings = settings
        self.executor = executor or RetryingExecutor(
            RetryPolicy(
                max_attempts=settings.kb_retry_attempts,
                base_delay_ms=settings.kb_retry_delay_ms,
            )
        )
        self.client = client or KnowledgeBaseClient(
            settings.kb_api_url,
            token_provider=build_token_provider(settings.kb_api_key, settings.kb_service_token_ttl_seconds),
            timeout=settings.kb_timeout_seconds,
            api_key=settings.kb_api_key,
        )
        self._redis = redis_client
        self.search_cache = search_cache or build_retrieval_cache(settings.kb_cache_ttl_seconds, redis_client)
        self.generator = generator or StructuredQueryGenerator(settings)
        self.retriever = retriever or HybridRetriever(
            self.client,
            cache=self.search_cache,
            executor=self.executor,
            top_k=settings.kb_top_k,
            similarity_threshold=settings.kb_similarity_threshold,
            fast_path_limit=settings.kb_fast_path_limit,
            cache_ttl_seconds=settings.kb_cache_ttl_seconds,
        )
        self.assembler = assembler or ResponseAssembler(
            self.client,
            gate=ConfidenceGate(settings.kb_confidence_threshold),
            executor=self.executor,
        )
        self.response_cache: TTLCache[EnhancedRAGResponse] = response_cache or TTLCache(
            default_ttl_seconds=settings.kb_cache_ttl_seconds
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, redis_client=None) -> "KnowledgeBaseService":
        return cls(settings or get_settings(), redis_client=redis_client)

    @classmethod
    async def create(cls, settings: Optional[Settings] = None) -> "KnowledgeBaseService":
        """Build the service and connect the optional Redis cache mirror."""
        settings = settings or get_settings()
        configure_logging(settings.log_level, json_output=not settings.is_development)
        redis_client = await create_redis_client(settings.redis_url)
        return cls.from_settings(settings, redis_client=redis_client)

    @property
    def gate(self) -> ConfidenceGate:
        return self.assembler.gate

    async def aclose(self) -> None:
        await self.client.aclose()
        await close_redis_client(self._redis)

    async def __aenter__(self) -> "KnowledgeBaseService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def chat_with_knowledge_base(
        self,
        question: Optional[str],
        mode: str = "A",
        is_final_report: bool = False,
    ) -> EnhancedRAGResponse:
        """
        Answer ``question`` from the knowledge base, or explain why not.

        Args:
            question: User question
            mode: "A" general legal information, "B" case assessment
            is_final_report: Case-assessment report generation (forces retrieval)

        Returns:
            EnhancedRAGResponse. Disabled, blank and failed requests are
            reported through ``error``; skipped requests through
            ``metadata.skip_reason``. Never raises.
        """
        if not self.settings.kb_enabled:
            return self.assembler.disabled_response()

        if question is None or not question.strip():
            return self.assembler.empty_response()

        decision = classify(question, mode, is_final_report)
        if decision.skip:
            logger.info("Skipping KB retrieval", reason=decision.reason, mode=mode)
            return self.assembler.skipped_response(decision.reason)

        cache_key = response_cache_key(question, mode)
        cached = self.response_cache.get(cache_key)
        if cached is not None:
            logger.debug("KB response cache hit", mode=mode)
            return cached

        start_time = time.time()
        try:
            text = sanitize_user_text(question)
            query = await self.generator.generate(text)
            outcome = await self.retriever.retrieve(text, query)
            confidence = self.gate.score(outcome.entries, query)
            response = await self.assembler.assemble(
                text,
                outcome.entries,
                confidence,
                outcome.method,
                query,
                mode,
                used_sqg=True,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Error in KB chat", error=str(e), error_type=type(e).__name__)
            return self.assembler.error_response(e)

        if response.is_kb_first:
            self.response_cache.put(cache_key, response)
            logger.debug("KB response cached", mode=mode, cached_responses=len(self.response_cache))

        logger.info(
            "KB chat completed",
            mode=mode,
            kb_first=response.is_kb_first,
            confidence=round(response.metadata.confidence, 4),
            retrieval_method=response.metadata.retrieval_method,
            sources=len(response.sources),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return response

    async def search_knowledge_base(self, query: Optional[str], limit: Optional[int] = None) -> List[KnowledgeBaseEntry]:
        """
        Plain KB search without structuring or gating.

        Args:
            query: Search text; shorter than ``kb_min_query_length`` returns []
            limit: Requested results, clamped to [1, kb_max_results]

        Returns:
            Entries in KB order; [] when disabled, too short or unavailable
        """
        if not self.settings.kb_enabled:
            logger.debug("Knowledge base is disabled, returning empty results")
            return []
        if query is None or len(query.strip()) < self.settings.kb_min_query_length:
            return []

        text = sanitize_user_text(query).lower().strip()
        requested = self.settings.kb_max_results if limit is None else limit
        effective_limit = min(max(1, requested), max(1, self.settings.kb_max_results))
        cache_key = f"search::{text}::{effective_limit}"

        async def _fetch() -> List[KnowledgeBaseEntry]:
            return await self.executor.execute(
                lambda: self.client.search(text, effective_limit),
                default=[],
                operation="kb_search",
            )

        try:
            return await self.search_cache.get_or_fetch(cache_key, _fetch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("KB search failed", error=str(e), error_type=type(e).__name__)
            return []

    async def has_relevant_information(self, query: Optional[str]) -> bool:
        """True when the top search hit clears the similarity floor."""
        results = await self.search_knowledge_base(query, 1)
        if not results:
            return False
        return results[0].similarity_or_zero >= self.settings.kb_similarity_threshold

    async def get_knowledge_base_entry(self, entry_id: str) -> Optional[KnowledgeBaseEntry]:
        if not self.settings.kb_enabled or not entry_id or not entry_id.strip():
            return None
        return await self.executor.execute(
            lambda: self.client.get_entry(entry_id.strip()),
            default=None,
            operation="kb_get_entry",
        )

    async def is_healthy(self) -> bool:
        """
        Health check for the upstream KB; suitable for a scheduler's keep-alive ping.

        A configured Redis mirror is pinged too. The mirror is optional, so an
        unreachable one is logged but does not mark the service unhealthy.
        """
        if not self.settings.kb_enabled:
            return False
        kb_ok = await self.client.health()
        if self._redis is not None and not await health_check(self._redis):
            logger.warning("Redis cache mirror unreachable, serving from local cache only")
        return kb_ok

"""Response assembly for knowledge-base chat.

Turns retrieval and gating results into an ``EnhancedRAGResponse``. Accepted
evidence is sent to the KB ``/chat`` endpoint for a grounded answer; rejected
evidence, or a failed ``/chat`` call, becomes a hedged low-confidence answer
that still carries the retrieved entries as sources. Terminal states
(disabled, empty, error, skipped) have their own constructors.

Nothing here raises to the caller.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

import structlog

from legalrag.confidence import ConfidenceGate, GateDecision
from legalrag.kb_client import KnowledgeBaseClient
from legalrag.models import EnhancedRAGResponse, KnowledgeBaseEntry, RAGMetadata, StructuredQuery
from legalrag.retry import RetryingExecutor

logger = structlog.get_logger(__name__)

LOW_CONFIDENCE_TEMPLATE = (
    "I found some related information but I'm not confident enough to provide a complete answer. "
    "Confidence: {pct:.1f}%. Please consult a licensed lawyer for specific legal advice."
)

DISABLED_ERROR = "Knowledge base is disabled"
EMPTY_QUESTION_ERROR = "Empty question"
SERVICE_ERROR_PREFIX = "KB service error: "


def low_confidence_answer(confidence: float) -> str:
    return LOW_CONFIDENCE_TEMPLATE.format(pct=confidence * 100)


class ResponseAssembler:
    """Build the final response for one question."""

    def __init__(
        self,
        client: KnowledgeBaseClient,
        gate: Optional[ConfidenceGate] = None,
        executor: Optional[RetryingExecutor] = None,
    ):
        self.client = client
        self.gate = gate or ConfidenceGate()
        self.executor = executor or RetryingExecutor()

    async def assemble(
        self,
        question: str,
        entries: Sequence[KnowledgeBaseEntry],
        confidence: float,
        retrieval_method: str,
        query: StructuredQuery,
        mode: str,
        used_sqg: bool = True,
    ) -> EnhancedRAGResponse:
        """
        Gate the evidence and produce a KB-first or low-confidence response.

        Args:
            question: Original question text
            entries: Ranked retrieved entries
            confidence: Score from the confidence scorer
            retrieval_method: Method label from retrieval
            query: Structured form of the question
            mode: Chat mode ("A" or "B")
            used_sqg: Whether query structuring ran

        Returns:
            EnhancedRAGResponse; never raises
        """
        try:
            return await self._assemble(question, entries, confidence, retrieval_method, query, mode, used_sqg)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Response assembly failed", error=str(e), error_type=type(e).__name__)
            return self.error_response(e)

    async def _assemble(
        self,
        question: str,
        entries: Sequence[KnowledgeBaseEntry],
        confidence: float,
        retrieval_method: str,
        query: StructuredQuery,
        mode: str,
        used_sqg: bool,
    ) -> EnhancedRAGResponse:
        threshold = self.gate.threshold(query, mode)
        metadata = RAGMetadata(
            confidence=confidence,
            kb_first=False,
            used_sqg=used_sqg,
            used_reranking=False,
            retrieval_method=retrieval_method,
            legal_topics=query.legal_topics,
            threshold=threshold,
        )

        if self.gate.decide(confidence, threshold) is GateDecision.REJECT:
            logger.info(
                "Low confidence, using fallback",
                confidence=round(confidence, 4),
                threshold=round(threshold, 4),
                results=len(entries),
            )
            return self.low_confidence_response(entries, metadata)

        answer = await self.executor.execute(
            lambda: self.client.chat(question, entries, mode, kb_first=True),
            default="",
            operation="kb_chat",
        )
        if not answer.strip():
            logger.warning("KB chat returned no answer, degrading to low confidence", confidence=round(confidence, 4))
            return self.low_confidence_response(entries, metadata)

        return EnhancedRAGResponse(
            answer=answer,
            sources=list(entries),
            metadata=metadata.model_copy(update={"kb_first": True}),
        )

    def low_confidence_response(
        self,
        entries: Sequence[KnowledgeBaseEntry],
        metadata: RAGMetadata,
    ) -> EnhancedRAGResponse:
        """Hedged answer; low confidence is not an error, so ``error`` stays empty."""
        return EnhancedRAGResponse(
            answer=low_confidence_answer(metadata.confidence),
            sources=list(entries),
            metadata=metadata.model_copy(update={"kb_first": False}),
        )

    @staticmethod
    def disabled_response() -> EnhancedRAGResponse:
        return EnhancedRAGResponse(
            error=DISABLED_ERROR,
            metadata=RAGMetadata(confidence=0.0, retrieval_method="disabled"),
        )

    @staticmethod
    def empty_response() -> EnhancedRAGResponse:
        return EnhancedRAGResponse(
            error=EMPTY_QUESTION_ERROR,
            metadata=RAGMetadata(confidence=0.0, retrieval_method="empty"),
        )

    @staticmethod
    def error_response(exc: BaseException) -> EnhancedRAGResponse:
        return EnhancedRAGResponse(
            error=f"{SERVICE_ERROR_PREFIX}{exc}",
            metadata=RAGMetadata(confidence=0.0, retrieval_method="error"),
        )

    @staticmethod
    def skipped_response(reason: str) -> EnhancedRAGResponse:
        """No retrieval was attempted; the caller answers conversationally."""
        return EnhancedRAGResponse(
            metadata=RAGMetadata(confidence=0.0, retrieval_method="none", skip_reason=reason),
        )

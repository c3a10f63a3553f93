"""Civilify legal knowledge-base retrieval core.

Turns a legal question into a structured query, retrieves supporting entries
from the external KB service, scores them and decides between a KB-first
answer and a hedged fallback.

Main components:
- service.py: KnowledgeBaseService facade (chat_with_knowledge_base, search_knowledge_base)
- sqg.py: structured query generation with heuristic fallback
- retrieval.py: vector / lexical / fast-path hybrid retrieval
- confidence.py: confidence scoring, dynamic thresholds and the gate
- skip_classifier.py: retrieval skip pre-filter
- composer.py: response assembly
- kb_client.py, auth.py, retry.py: KB HTTP access
"""

from legalrag.models import EnhancedRAGResponse, KnowledgeBaseEntry, RAGMetadata, StructuredQuery
from legalrag.service import KnowledgeBaseService

__all__ = [
    "EnhancedRAGResponse",
    "KnowledgeBaseEntry",
    "KnowledgeBaseService",
    "RAGMetadata",
    "StructuredQuery",
]

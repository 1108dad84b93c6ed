"""Semantic retrieval over stored message embeddings."""

from chatrecall.retrieval.rag import (
    RAGContextKind,
    RAGResult,
    RAGService,
    format_results_for_prompt,
)
from chatrecall.retrieval.search import (
    ConversationMatch,
    ConversationSearchService,
    ConversationVectors,
    SearchHandle,
    SearchStatus,
)

__all__ = [
    "ConversationMatch",
    "ConversationSearchService",
    "ConversationVectors",
    "RAGContextKind",
    "RAGResult",
    "RAGService",
    "SearchHandle",
    "SearchStatus",
    "format_results_for_prompt",
]

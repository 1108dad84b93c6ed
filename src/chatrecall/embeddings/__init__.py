"""Embedding generation, background scheduling and vector similarity."""

from chatrecall.embeddings.scheduler import (
    EmbeddingProgress,
    EmbeddingScheduler,
    EmbeddingStatus,
)
from chatrecall.embeddings.service import EmbeddingService
from chatrecall.embeddings.similarity import cosine_similarity, cosine_similarity_strict

__all__ = [
    "EmbeddingProgress",
    "EmbeddingScheduler",
    "EmbeddingService",
    "EmbeddingStatus",
    "cosine_similarity",
    "cosine_similarity_strict",
]

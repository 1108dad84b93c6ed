"""Cosine similarity over embedding vectors."""

from typing import Sequence

import numpy as np

from chatrecall.exceptions import DimensionMismatchError


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    # Rounding can push |v|.|v| / |v|^2 slightly past 1
    return max(-1.0, min(1.0, similarity))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    Returns 0.0 when either vector has zero magnitude or the lengths differ;
    vectors of different lengths come from different models and never match.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    return _cosine(a, b)


def cosine_similarity_strict(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity that refuses vectors of different dimensionality.

    Raises:
        DimensionMismatchError: If ``len(a) != len(b)``
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    if len(a) == 0:
        return 0.0
    return _cosine(a, b)

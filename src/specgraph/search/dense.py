"""Cosine-similarity ranking over externally supplied embedding vectors."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from specgraph.exceptions import ValidationError, VectorDimensionError
from specgraph.models import ScoredSpec, SpecChunk


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between `a` and `b`.

    Returns 1.0 for identical direction, 0.0 for orthogonal vectors and -1.0
    for opposite ones. A zero-magnitude vector on either side yields 0.0.

    Raises:
        VectorDimensionError: If the vectors have different lengths.
    """
    if len(a) != len(b):
        raise VectorDimensionError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    sim = float(np.dot(va, vb) / magnitude)
    # Guard against rounding drift just outside [-1, 1]
    return max(-1.0, min(1.0, sim))


def rank_by_similarity(
    query_vector: Sequence[float],
    candidates: list[SpecChunk],
    vectors: Sequence[Sequence[float]],
) -> list[ScoredSpec]:
    """Score every candidate against `query_vector`, best first.

    Every candidate is returned (dense ranking has no relevance cutoff).
    Equal scores keep candidate order.
    """
    if len(candidates) != len(vectors):
        raise ValidationError(
            f"Got {len(vectors)} vectors for {len(candidates)} candidates"
        )
    scored = [
        (i, cosine_similarity(query_vector, vec)) for i, vec in enumerate(vectors)
    ]
    scored.sort(key=lambda item: (-item[1], item[0]))
    return [ScoredSpec(chunk=candidates[i], score=score) for i, score in scored]

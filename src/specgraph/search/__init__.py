"""Spec retrieval: lexical BM25, dense cosine, and RRF fusion."""

from specgraph.search.dense import cosine_similarity, rank_by_similarity
from specgraph.search.hybrid import (
    HybridMatcher,
    match_chunks,
    match_chunks_detailed,
    reciprocal_rank_fusion,
)
from specgraph.search.lexical import LexicalIndex, build_index, search_index

__all__ = [
    "LexicalIndex",
    "build_index",
    "search_index",
    "cosine_similarity",
    "rank_by_similarity",
    "HybridMatcher",
    "reciprocal_rank_fusion",
    "match_chunks",
    "match_chunks_detailed",
]

"""Hybrid retrieval: dense cosine ranking + BM25, fused with Reciprocal Rank Fusion."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from specgraph.embeddings.base import Embedder
from specgraph.exceptions import EmbeddingError, ValidationError
from specgraph.models import (
    ChangedCodeChunk,
    DetailedSpecMatch,
    FusedSpec,
    ScoredSpec,
    SpecChunk,
    SpecMatch,
)
from specgraph.search.context_text import (
    build_diff_contextual_text,
    build_spec_contextual_text,
)
from specgraph.search.dense import cosine_similarity
from specgraph.search.lexical import LexicalIndex

logger = logging.getLogger("specgraph.search")

DEFAULT_TOP_K = 3

# Damps the advantage of either list's very top positions
RRF_K = 60


@dataclass
class FusedCandidate:
    """A candidate (by position in the candidate list) after fusion."""

    index: int
    rrf_score: float
    cosine_score: float = 0.0
    bm25_score: float = 0.0


def fuse_rankings(
    dense: Sequence[tuple[int, float]],
    lexical: Sequence[tuple[int, float]],
    top_k: int = DEFAULT_TOP_K,
    k: int = RRF_K,
) -> list[FusedCandidate]:
    """Reciprocal Rank Fusion over two rankings of candidate indices.

    Each candidate accumulates ``1 / (k + rank)`` (1-based rank) for every
    list it appears in. The raw score from each list is kept (0.0 when the
    candidate is absent). Equal fused scores are ordered by candidate index.
    """
    fused: dict[int, FusedCandidate] = {}

    for rank, (idx, score) in enumerate(dense, start=1):
        entry = fused.setdefault(idx, FusedCandidate(index=idx, rrf_score=0.0))
        entry.rrf_score += 1.0 / (k + rank)
        entry.cosine_score = score

    for rank, (idx, score) in enumerate(lexical, start=1):
        entry = fused.setdefault(idx, FusedCandidate(index=idx, rrf_score=0.0))
        entry.rrf_score += 1.0 / (k + rank)
        entry.bm25_score = score

    ordered = sorted(fused.values(), key=lambda c: (-c.rrf_score, c.index))
    return ordered[: max(top_k, 0)]


def reciprocal_rank_fusion(
    dense_ranked: list[ScoredSpec],
    bm25_ranked: list[ScoredSpec],
    candidates: list[SpecChunk],
    top_k: int = DEFAULT_TOP_K,
    k: int = RRF_K,
) -> list[FusedSpec]:
    """Fuse two ScoredSpec rankings over `candidates` into a top-K list."""
    dense = [(_position(candidates, s.chunk), s.score) for s in dense_ranked]
    lexical = [(_position(candidates, s.chunk), s.score) for s in bm25_ranked]
    return _to_fused_specs(fuse_rankings(dense, lexical, top_k, k), candidates)


def _position(candidates: list[SpecChunk], chunk: SpecChunk) -> int:
    for i, candidate in enumerate(candidates):
        if candidate is chunk:
            return i
    for i, candidate in enumerate(candidates):
        if candidate == chunk:
            return i
    raise ValidationError(f"Ranked spec {chunk.test_name!r} is not among the candidates")


def _to_fused_specs(fused: list[FusedCandidate], candidates: list[SpecChunk]) -> list[FusedSpec]:
    return [
        FusedSpec(
            chunk=candidates[c.index],
            cosine_score=c.cosine_score,
            bm25_score=c.bm25_score,
            rrf_score=c.rrf_score,
            rank=rank,
        )
        for rank, c in enumerate(fused, start=1)
    ]


class HybridMatcher:
    """Selects, per changed code chunk, the spec chunks most likely affected.

    Flow for each changed chunk:
      1. Dense: contextual embedding, cosine against every spec chunk.
      2. Lexical: contextual query text against a BM25 index of the specs.
      3. RRF: fuse both rankings into the top-K specs.

    Code and spec embeddings are requested as two concurrent batches.
    """

    def __init__(
        self,
        embedder: Embedder,
        top_k: int = DEFAULT_TOP_K,
        rrf_k: int = RRF_K,
        name_boost: float = 2.0,
        fuzziness: float = 0.2,
    ) -> None:
        self.embedder = embedder
        self.top_k = top_k
        self.rrf_k = rrf_k
        self.name_boost = name_boost
        self.fuzziness = fuzziness

    async def embed_chunks(
        self,
        code_chunks: list[ChangedCodeChunk],
        spec_chunks: list[SpecChunk],
    ) -> tuple[list[list[float]], list[list[float]]]:
        """Embed code and spec chunks as two concurrent batches.

        An empty side is not sent to the embedder.
        """

        async def batch(texts: list[str]) -> list[list[float]]:
            if not texts:
                return []
            vectors = await self.embedder.embed_batch(texts)
            if len(vectors) != len(texts):
                raise EmbeddingError(
                    f"Embedder returned {len(vectors)} vectors for {len(texts)} texts"
                )
            return vectors

        code_vectors, spec_vectors = await asyncio.gather(
            batch([build_diff_contextual_text(c) for c in code_chunks]),
            batch([build_spec_contextual_text(s) for s in spec_chunks]),
        )
        return code_vectors, spec_vectors

    async def match_chunks_detailed(
        self,
        code_chunks: list[ChangedCodeChunk],
        spec_chunks: list[SpecChunk],
        top_k: int | None = None,
        code_vectors: list[list[float]] | None = None,
        spec_vectors: list[list[float]] | None = None,
    ) -> list[DetailedSpecMatch]:
        """Fuse-rank every changed chunk against the full spec set.

        Precomputed vectors, when given, are used instead of calling the
        embedder. Either side empty yields an empty list.
        """
        if not code_chunks or not spec_chunks:
            return []

        if code_vectors is None or spec_vectors is None:
            code_vectors, spec_vectors = await self.embed_chunks(code_chunks, spec_chunks)

        return self.rank(code_chunks, spec_chunks, code_vectors, spec_vectors, top_k)

    def rank(
        self,
        code_chunks: list[ChangedCodeChunk],
        spec_chunks: list[SpecChunk],
        code_vectors: Sequence[Sequence[float]],
        spec_vectors: Sequence[Sequence[float]],
        top_k: int | None = None,
    ) -> list[DetailedSpecMatch]:
        """CPU-only part of matching, given all vectors."""
        if not code_chunks or not spec_chunks:
            return []

        if len(code_vectors) != len(code_chunks) or len(spec_vectors) != len(spec_chunks):
            raise ValidationError(
                f"Got {len(code_vectors)}/{len(spec_vectors)} vectors for "
                f"{len(code_chunks)} code and {len(spec_chunks)} spec chunks"
            )

        limit = self.top_k if top_k is None else top_k
        index = LexicalIndex.build(
            spec_chunks, name_boost=self.name_boost, fuzziness=self.fuzziness
        )

        matches: list[DetailedSpecMatch] = []
        for i, chunk in enumerate(code_chunks):
            query = build_diff_contextual_text(chunk)

            dense = [
                (j, cosine_similarity(code_vectors[i], vec))
                for j, vec in enumerate(spec_vectors)
            ]
            dense.sort(key=lambda item: (-item[1], item[0]))
            lexical = index.search_ids(query)

            fused = fuse_rankings(dense, lexical, limit, self.rrf_k)
            matches.append(
                DetailedSpecMatch(chunk=chunk, relevant_specs=_to_fused_specs(fused, spec_chunks))
            )
            logger.debug(
                "%s: %d lexical hits, top %d fused", chunk.filename, len(lexical), len(fused)
            )
        return matches

    async def match_chunks(
        self,
        code_chunks: list[ChangedCodeChunk],
        spec_chunks: list[SpecChunk],
        top_k: int | None = None,
    ) -> list[SpecMatch]:
        """Like `match_chunks_detailed` but with only the fused score."""
        detailed = await self.match_chunks_detailed(code_chunks, spec_chunks, top_k)
        return [_to_simple(m) for m in detailed]

    async def match_single_chunk(
        self,
        code_chunk: ChangedCodeChunk,
        spec_chunks: list[SpecChunk],
        top_k: int | None = None,
    ) -> SpecMatch:
        """Match one changed chunk, embedding it with a single call."""
        if not spec_chunks:
            return SpecMatch(chunk=code_chunk)

        query_vector, spec_vectors = await asyncio.gather(
            self.embedder.embed(build_diff_contextual_text(code_chunk)),
            self.embedder.embed_batch([build_spec_contextual_text(s) for s in spec_chunks]),
        )
        detailed = self.rank([code_chunk], spec_chunks, [query_vector], spec_vectors, top_k)
        return _to_simple(detailed[0])


def _to_simple(match: DetailedSpecMatch) -> SpecMatch:
    return SpecMatch(
        chunk=match.chunk,
        relevant_specs=[ScoredSpec(chunk=s.chunk, score=s.rrf_score) for s in match.relevant_specs],
    )


async def match_chunks_detailed(
    code_chunks: list[ChangedCodeChunk],
    spec_chunks: list[SpecChunk],
    embedder: Embedder,
    top_k: int = DEFAULT_TOP_K,
) -> list[DetailedSpecMatch]:
    """Fuse-rank `code_chunks` against `spec_chunks`, keeping all three scores."""
    return await HybridMatcher(embedder, top_k=top_k).match_chunks_detailed(
        code_chunks, spec_chunks
    )


async def match_chunks(
    code_chunks: list[ChangedCodeChunk],
    spec_chunks: list[SpecChunk],
    embedder: Embedder,
    top_k: int = DEFAULT_TOP_K,
) -> list[SpecMatch]:
    """Fuse-rank `code_chunks` against `spec_chunks`, fused score only."""
    return await HybridMatcher(embedder, top_k=top_k).match_chunks(code_chunks, spec_chunks)

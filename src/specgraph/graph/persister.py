"""Persist one complete analysis run into the graph.

Five ordered phases:

  1. Merge the infrastructure chain Org -> Repo -> PullRequest.
  2. Create a fresh AnalysisRun.
  3. Embed code chunks and spec chunks as two concurrent batches.
  4. Fuse-rank and persist every code chunk with its selector changes,
     matched specs and MATCHED edges; unmatched specs are stored unlinked.
  5. Create the Prediction and one TestPrediction per upstream verdict.

A raised exception means the run is not fully persisted. Sibling chunk groups
committed before the failure stay in the graph, since each one is its own
transaction, but the returned identifiers only exist on full success.
"""

from __future__ import annotations

import asyncio
import logging
import time

from specgraph.chunking.spec_chunker import chunk_specs
from specgraph.embeddings.base import Embedder
from specgraph.exceptions import GraphUnavailableError, PartialPersistError, ValidationError
from specgraph.graph.ids import make_chunk_id, make_spec_chunk_id
from specgraph.graph.repository import GraphRepository, check_pr_metadata
from specgraph.models import (
    ChangedCodeChunk,
    DetailedSpecMatch,
    PersistOptions,
    PersistResult,
    SpecChunk,
    TestVerdict,
    VerdictStatus,
)
from specgraph.predictions import count_by_status
from specgraph.search.hybrid import DEFAULT_TOP_K, RRF_K, HybridMatcher

logger = logging.getLogger("specgraph.persist")

DEFAULT_MAX_CONCURRENCY = 8


def validate_options(options: PersistOptions) -> None:
    """Reject inputs the graph cannot key on."""
    if not options.org_name.strip():
        raise ValidationError("org_name is required")
    if not options.repo_full_name.strip():
        raise ValidationError("repo_full_name is required")
    check_pr_metadata(options.pr_metadata)
    for verdict in options.predictions:
        if not isinstance(verdict.status, VerdictStatus):
            raise ValidationError(f"Invalid verdict status for {verdict.test!r}: {verdict.status!r}")
        if not verdict.test.strip():
            raise ValidationError("Every verdict needs a test name")


def resolve_spec(verdict: TestVerdict, specs: list[SpecChunk]) -> SpecChunk | None:
    """Best-matching spec chunk for a verdict.

    Exact test name within the verdict's own file first, then exact test
    name anywhere, then the first chunk of the verdict's file.
    """
    if verdict.file:
        for spec in specs:
            if spec.test_name == verdict.test and spec.filename == verdict.file:
                return spec
    for spec in specs:
        if spec.test_name == verdict.test:
            return spec
    if verdict.file:
        for spec in specs:
            if spec.filename == verdict.file:
                return spec
    return None


async def persist_analysis_run(
    repository: GraphRepository,
    options: PersistOptions,
    embedder: Embedder,
    top_k: int = DEFAULT_TOP_K,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    rrf_k: int = RRF_K,
    name_boost: float = 2.0,
    fuzziness: float = 0.2,
) -> PersistResult:
    """Persist one analysis run and return its run and prediction ids.

    Raises:
        ValidationError: malformed options (before any I/O).
        EmbeddingError: the embedding service failed.
        GraphUnavailableError: the graph store could not be reached.
        PartialPersistError: one or more chunk groups failed to persist.
    """
    validate_options(options)
    spec_chunks = chunk_specs(options.spec_files)
    code_chunks = options.code_chunks

    # Phase 1
    org_id = await repository.merge_org(options.org_name)
    repo_id = await repository.merge_repo(org_id, options.org_name, options.repo_full_name)
    pr_id = await repository.merge_pull_request(repo_id, options.pr_metadata)
    logger.info("PR #%d merged as %s", options.pr_metadata.pr_number, pr_id)

    # Phase 2. The run node is created before embedding, so its duration
    # covers the upstream analysis only, not phases 3-5.
    duration_ms = max(int((time.time() - options.analysis_started_at) * 1000), 0)
    run_id = await repository.create_analysis_run(
        pr_id,
        model=options.model,
        temperature=options.temperature,
        duration_ms=duration_ms,
        code_chunk_count=len(code_chunks),
        spec_chunk_count=len(spec_chunks),
    )
    logger.info("Created analysis run %s", run_id)

    # Phase 3
    matcher = HybridMatcher(
        embedder, top_k=top_k, rrf_k=rrf_k, name_boost=name_boost, fuzziness=fuzziness
    )
    code_vectors, spec_vectors = await matcher.embed_chunks(code_chunks, spec_chunks)
    logger.info("Embedded %d code and %d spec chunks", len(code_vectors), len(spec_vectors))

    # Phase 4
    matches = matcher.rank(code_chunks, spec_chunks, code_vectors, spec_vectors)
    await _persist_chunks(
        repository, run_id, code_chunks, matches, spec_chunks, code_vectors, spec_vectors,
        max_concurrency,
    )

    # Phase 5
    counts = count_by_status(options.predictions)
    prediction_id = await repository.create_prediction(
        run_id,
        raw_markdown=options.raw_markdown,
        broken_count=counts[VerdictStatus.BROKEN],
        risk_count=counts[VerdictStatus.RISK],
        ok_count=counts[VerdictStatus.OK],
        model=options.model,
        duration_ms=options.llm_duration_ms,
    )
    await _persist_verdicts(repository, prediction_id, options.predictions, spec_chunks)
    logger.info(
        "Persisted run %s: %d chunks, %d specs, %d verdicts",
        run_id, len(code_chunks), len(spec_chunks), len(options.predictions),
    )
    return PersistResult(run_id=run_id, prediction_id=prediction_id)


async def _persist_chunks(
    repository: GraphRepository,
    run_id: str,
    code_chunks: list[ChangedCodeChunk],
    matches: list[DetailedSpecMatch],
    spec_chunks: list[SpecChunk],
    code_vectors: list[list[float]],
    spec_vectors: list[list[float]],
    max_concurrency: int,
) -> None:
    """Fan out one task per code chunk, then store specs nothing matched."""
    semaphore = asyncio.Semaphore(max(max_concurrency, 1))
    vector_by_spec_id = {
        make_spec_chunk_id(s.content): v for s, v in zip(spec_chunks, spec_vectors)
    }
    # `rank` returns one match per chunk, in input order, when both sides are non-empty
    match_by_position = {i: m for i, m in enumerate(matches)}

    def spec_vector(spec: SpecChunk) -> list[float]:
        return vector_by_spec_id.get(make_spec_chunk_id(spec.content), [])

    async def persist_one(order: int, chunk: ChangedCodeChunk) -> None:
        async with semaphore:
            embedding = code_vectors[order] if order < len(code_vectors) else []
            chunk_id = await repository.merge_code_chunk(run_id, order, chunk, embedding)
            for change in chunk.selector_changes:
                await repository.merge_selector_change(chunk_id, change)
            match = match_by_position.get(order)
            if match is None:
                return
            for fused in match.relevant_specs:
                spec_id = await repository.merge_spec_chunk(fused.chunk, spec_vector(fused.chunk))
                await repository.merge_match(
                    chunk_id,
                    spec_id,
                    cosine_score=fused.cosine_score,
                    bm25_score=fused.bm25_score,
                    rrf_score=fused.rrf_score,
                    rank=fused.rank,
                )

    results = await asyncio.gather(
        *(persist_one(i, chunk) for i, chunk in enumerate(code_chunks)),
        return_exceptions=True,
    )

    failures: dict[str, BaseException] = {}
    for chunk, result in zip(code_chunks, results):
        if isinstance(result, GraphUnavailableError):
            raise result
        if isinstance(result, BaseException):
            chunk_id = make_chunk_id(chunk.filename, chunk.raw_diff)
            logger.warning("Failed to persist chunk %s (%s): %s", chunk.filename, chunk_id, result)
            failures[chunk_id] = result
    if failures:
        raise PartialPersistError(run_id, failures)

    matched = {make_spec_chunk_id(s.chunk.content) for m in matches for s in m.relevant_specs}
    unmatched = [s for s in spec_chunks if make_spec_chunk_id(s.content) not in matched]
    for spec in unmatched:
        await repository.merge_spec_chunk(spec, spec_vector(spec))
    if unmatched:
        logger.debug("Stored %d unmatched spec chunks", len(unmatched))


async def _persist_verdicts(
    repository: GraphRepository,
    prediction_id: str,
    verdicts: list[TestVerdict],
    spec_chunks: list[SpecChunk],
) -> None:
    for verdict in verdicts:
        spec = resolve_spec(verdict, spec_chunks)
        if spec is not None and not verdict.file:
            verdict = verdict.model_copy(update={"file": spec.filename})
        spec_id = make_spec_chunk_id(spec.content) if spec is not None else None
        await repository.create_test_prediction(prediction_id, spec_id, verdict)

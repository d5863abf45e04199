"""Typed create/merge operations on the analysis graph.

`merge_*` operations are idempotent: re-merging an existing id leaves its
on-create properties untouched, and re-merging an existing relationship
between the same two ids never creates a parallel one. `create_*`
operations always insert a fresh event node with a random id.

Each operation is one logical write: the node and its mandatory
relationship commit together or not at all.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from specgraph.exceptions import ValidationError
from specgraph.models import (
    ChangedCodeChunk,
    PRMetadata,
    SelectorChange,
    SpecChunk,
    TestVerdict,
)


class GraphRepository(ABC):
    """Abstract analysis-graph repository.

    Owned explicitly by the caller: construct it, pass it around, and close
    it at the run or process boundary (``async with repo: ...``).
    """

    # -- infrastructure -------------------------------------------------

    @abstractmethod
    async def merge_org(self, name: str, platform: str = "github") -> str:
        """Merge an Org node; returns its id."""

    @abstractmethod
    async def merge_repo(
        self, org_id: str, org_name: str, repo_full_name: str, language: str = "typescript"
    ) -> str:
        """Merge a Repo node and its OWNS edge from the org."""

    @abstractmethod
    async def merge_pull_request(self, repo_id: str, meta: PRMetadata) -> str:
        """Merge a PullRequest node and its HAS_PR edge from the repo."""

    # -- events ------------------------------------------------------------

    @abstractmethod
    async def create_analysis_run(
        self,
        pr_id: str,
        *,
        model: str,
        temperature: float,
        duration_ms: int,
        code_chunk_count: int,
        spec_chunk_count: int,
    ) -> str:
        """Create a fresh AnalysisRun linked from the PR by ANALYZED_BY."""

    @abstractmethod
    async def create_prediction(
        self,
        run_id: str,
        *,
        raw_markdown: str,
        broken_count: int,
        risk_count: int,
        ok_count: int,
        model: str,
        duration_ms: int,
    ) -> str:
        """Create a Prediction linked from the run by PRODUCED."""

    @abstractmethod
    async def create_test_prediction(
        self, prediction_id: str, spec_id: str | None, verdict: TestVerdict
    ) -> str:
        """Create a TestPrediction (CONTAINS) and, if given, its REFERS_TO edge."""

    # -- content-addressable ------------------------------------------------

    @abstractmethod
    async def merge_code_chunk(
        self, run_id: str, order: int, chunk: ChangedCodeChunk, embedding: list[float]
    ) -> str:
        """Merge a CodeChunk and the run's INCLUDES{order} edge to it."""

    @abstractmethod
    async def merge_spec_chunk(self, chunk: SpecChunk, embedding: list[float]) -> str:
        """Merge a SpecChunk node (no mandatory relationship)."""

    @abstractmethod
    async def merge_selector_change(self, chunk_id: str, change: SelectorChange) -> str:
        """Merge a SelectorChange and its HAS_SELECTOR_CHANGE edge from the chunk."""

    @abstractmethod
    async def merge_match(
        self,
        chunk_id: str,
        spec_id: str,
        *,
        cosine_score: float,
        bm25_score: float,
        rrf_score: float,
        rank: int,
    ) -> None:
        """Merge the MATCHED edge between a chunk and a spec, overwriting its scores."""

    # -- lifecycle ------------------------------------------------------------

    @abstractmethod
    async def verify_connectivity(self) -> None:
        """Raise GraphUnavailableError if the store cannot be reached."""

    @abstractmethod
    async def close(self) -> None:
        """Release every connection held by the repository."""

    async def __aenter__(self) -> GraphRepository:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def check_pr_metadata(meta: PRMetadata) -> None:
    """Fail fast on PR metadata the graph cannot key on."""
    if meta.pr_number <= 0:
        raise ValidationError(f"PR number must be positive, got {meta.pr_number}")


def check_id(value: str, what: str) -> None:
    if not value:
        raise ValidationError(f"{what} id is required")

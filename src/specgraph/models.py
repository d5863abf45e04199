"""Data models for changed code, spec chunks, matches and verdicts."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LineKind(str, Enum):
    """Kinds of lines inside a diff hunk."""

    ADDED = "added"
    REMOVED = "removed"
    CONTEXT = "context"


class DiffLine(BaseModel):
    """A single line of a diff hunk."""

    kind: LineKind
    content: str
    line_number: int = 0  # new-file line for added/context, old-file line for removed


class DiffHunk(BaseModel):
    """A hunk of a unified diff."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    section: str = ""  # enclosing-scope text git prints after the @@ header
    lines: list[DiffLine] = Field(default_factory=list)


class SelectorChange(BaseModel):
    """Before/after value of one UI element's test-selector attribute."""

    model_config = ConfigDict(frozen=True)

    element: str
    attribute: str
    added_value: str | None = None
    removed_value: str | None = None


class ChangedCodeChunk(BaseModel):
    """One cohesive unit of changed code (usually one file of a diff)."""

    filename: str
    raw_diff: str
    hunks: list[DiffHunk] = Field(default_factory=list)
    components: list[str] = Field(default_factory=list)
    functions: list[str] = Field(default_factory=list)
    selector_changes: list[SelectorChange] = Field(default_factory=list)
    test_ids: list[str] = Field(default_factory=list)
    summary: str = ""

    @property
    def lines_added(self) -> int:
        return sum(1 for h in self.hunks for line in h.lines if line.kind == LineKind.ADDED)

    @property
    def lines_removed(self) -> int:
        return sum(1 for h in self.hunks for line in h.lines if line.kind == LineKind.REMOVED)


class SpecFile(BaseModel):
    """A whole E2E spec file as read from disk."""

    name: str
    content: str


class SpecChunk(BaseModel):
    """One test case extracted from a spec file."""

    test_name: str
    filename: str
    content: str


class ScoredSpec(BaseModel):
    """A spec chunk scored by a single ranker (or by fusion alone)."""

    chunk: SpecChunk
    score: float


class FusedSpec(BaseModel):
    """A spec chunk after Reciprocal Rank Fusion, keeping every signal."""

    chunk: SpecChunk
    cosine_score: float = 0.0
    bm25_score: float = 0.0
    rrf_score: float
    rank: int  # 1-based position in the fused list


class SpecMatch(BaseModel):
    """Top specs for a changed chunk, single fused score."""

    chunk: ChangedCodeChunk
    relevant_specs: list[ScoredSpec] = Field(default_factory=list)


class DetailedSpecMatch(BaseModel):
    """Top specs for a changed chunk with all three scores."""

    chunk: ChangedCodeChunk
    relevant_specs: list[FusedSpec] = Field(default_factory=list)


class VerdictStatus(str, Enum):
    """Upstream prediction for a single test."""

    BROKEN = "broken"
    RISK = "risk"
    OK = "ok"


class TestVerdict(BaseModel):
    """Per-test prediction produced upstream (usually by a language model)."""

    __test__ = False  # keep pytest from collecting this class

    test: str
    file: str = ""
    line: int = 0
    status: VerdictStatus
    reason: str = ""


class PRMetadata(BaseModel):
    """Pull request facts stored on the PullRequest node."""

    pr_number: int
    title: str = ""
    description: str = ""
    author: str = ""
    branch: str = ""
    commit_sha: str = ""
    base_sha: str = ""
    created_at: str | None = None  # ISO-8601
    merged_at: str | None = None  # ISO-8601


class PersistOptions(BaseModel):
    """Everything `persist_analysis_run` needs for one analysis."""

    model_config = ConfigDict(protected_namespaces=())

    org_name: str
    repo_full_name: str
    pr_metadata: PRMetadata
    code_chunks: list[ChangedCodeChunk] = Field(default_factory=list)
    spec_files: list[SpecFile] = Field(default_factory=list)
    raw_markdown: str = ""
    predictions: list[TestVerdict] = Field(default_factory=list)
    model: str = ""
    temperature: float = 0.0
    analysis_started_at: float  # epoch seconds
    llm_duration_ms: int = 0


class PersistResult(BaseModel):
    """Identifiers returned by a fully persisted run."""

    run_id: str
    prediction_id: str

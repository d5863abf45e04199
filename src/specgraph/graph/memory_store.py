"""In-memory analysis graph repository backed by NetworkX.

Mirrors the merge/create semantics of the Neo4j repository exactly, so it
serves as the store for dry runs and tests. Relationships are keyed by type
plus their identity properties (see `IDENTITY_PROPERTIES`), which is what a
Cypher `MERGE` on the same pattern would match.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import networkx as nx

from specgraph.exceptions import GraphUnavailableError, GraphWriteError
from specgraph.graph.ids import (
    content_hash,
    make_chunk_id,
    make_org_id,
    make_pr_id,
    make_repo_id,
    make_selector_change_id,
    make_spec_chunk_id,
    new_event_id,
)
from specgraph.graph.repository import GraphRepository, check_id, check_pr_metadata
from specgraph.graph.schema import IDENTITY_PROPERTIES, NodeLabel, RelType
from specgraph.models import (
    ChangedCodeChunk,
    PRMetadata,
    SelectorChange,
    SpecChunk,
    TestVerdict,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryGraphRepository(GraphRepository):
    """Graph repository holding everything in a `networkx.MultiDiGraph`."""

    def __init__(self, graph: nx.MultiDiGraph | None = None) -> None:
        self.graph = graph if graph is not None else nx.MultiDiGraph()
        self._closed = False

    # ------------------------------------------------------------------
    # Primitive operations
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise GraphUnavailableError("Repository is closed")

    def _merge_node(self, label: NodeLabel, node_id: str, on_create: dict[str, Any]) -> None:
        if node_id in self.graph:
            existing = self.graph.nodes[node_id]["label"]
            if existing != label.value:
                raise GraphWriteError(f"Id {node_id} already used by a {existing} node")
            return
        self.graph.add_node(node_id, label=label.value, id=node_id, createdAt=_now(), **on_create)

    def _create_node(self, label: NodeLabel, node_id: str, props: dict[str, Any]) -> None:
        if node_id in self.graph:
            raise GraphWriteError(f"Uniqueness constraint violated: {label.value} {node_id}")
        self.graph.add_node(node_id, label=label.value, id=node_id, createdAt=_now(), **props)

    def _require(self, node_id: str, label: NodeLabel) -> None:
        data = self.graph.nodes.get(node_id)
        if data is None or data.get("label") != label.value:
            raise GraphWriteError(f"Cannot link: {label.value} {node_id} does not exist")

    @staticmethod
    def _edge_key(rel: RelType, props: dict[str, Any]) -> str:
        identity = IDENTITY_PROPERTIES.get(rel, ())
        if not identity:
            return rel.value
        return rel.value + "|" + "|".join(f"{p}={props.get(p)!r}" for p in identity)

    def _merge_edge(
        self,
        src: tuple[str, NodeLabel],
        rel: RelType,
        dst: tuple[str, NodeLabel],
        props: dict[str, Any] | None = None,
        set_props: dict[str, Any] | None = None,
    ) -> None:
        """MATCH both endpoints, MERGE the edge, then SET `set_props`."""
        self._require(*src)
        self._require(*dst)
        props = props or {}
        key = self._edge_key(rel, props)
        if not self.graph.has_edge(src[0], dst[0], key=key):
            self.graph.add_edge(src[0], dst[0], key=key, type=rel.value, **props)
        if set_props:
            self.graph.edges[src[0], dst[0], key].update(set_props)

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    async def merge_org(self, name: str, platform: str = "github") -> str:
        self._check_open()
        check_id(name, "org name")
        org_id = make_org_id(name)
        self._merge_node(NodeLabel.ORG, org_id, {"name": name, "platform": platform})
        return org_id

    async def merge_repo(
        self, org_id: str, org_name: str, repo_full_name: str, language: str = "typescript"
    ) -> str:
        self._check_open()
        check_id(org_id, "org")
        check_id(repo_full_name, "repo full name")
        repo_name = repo_full_name.split("/")[-1] or repo_full_name
        repo_id = make_repo_id(org_name, repo_name)
        self._require(org_id, NodeLabel.ORG)
        self._merge_node(NodeLabel.REPO, repo_id, {
            "name": repo_name, "fullName": repo_full_name, "language": language,
        })
        self._merge_edge((org_id, NodeLabel.ORG), RelType.OWNS, (repo_id, NodeLabel.REPO))
        return repo_id

    async def merge_pull_request(self, repo_id: str, meta: PRMetadata) -> str:
        self._check_open()
        check_id(repo_id, "repo")
        check_pr_metadata(meta)
        pr_id = make_pr_id(repo_id, meta.pr_number)
        self._require(repo_id, NodeLabel.REPO)
        self._merge_node(NodeLabel.PULL_REQUEST, pr_id, {
            "prNumber": int(meta.pr_number),
            "title": meta.title,
            "description": meta.description,
            "author": meta.author,
            "branch": meta.branch,
            "commitSha": meta.commit_sha,
            "baseSha": meta.base_sha,
            "openedAt": meta.created_at,
            "mergedAt": meta.merged_at,
        })
        self._merge_edge((repo_id, NodeLabel.REPO), RelType.HAS_PR, (pr_id, NodeLabel.PULL_REQUEST))
        return pr_id

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

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
        self._check_open()
        check_id(pr_id, "pull request")
        self._require(pr_id, NodeLabel.PULL_REQUEST)
        run_id = new_event_id()
        self._create_node(NodeLabel.ANALYSIS_RUN, run_id, {
            "model": model,
            "temperature": float(temperature),
            "durationMs": int(duration_ms),
            "codeChunkCount": int(code_chunk_count),
            "specChunkCount": int(spec_chunk_count),
        })
        self._merge_edge(
            (pr_id, NodeLabel.PULL_REQUEST), RelType.ANALYZED_BY, (run_id, NodeLabel.ANALYSIS_RUN)
        )
        return run_id

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
        self._check_open()
        check_id(run_id, "analysis run")
        self._require(run_id, NodeLabel.ANALYSIS_RUN)
        prediction_id = new_event_id()
        self._create_node(NodeLabel.PREDICTION, prediction_id, {
            "rawMarkdown": raw_markdown,
            "brokenCount": int(broken_count),
            "riskCount": int(risk_count),
            "okCount": int(ok_count),
            "model": model,
            "durationMs": int(duration_ms),
        })
        self._merge_edge(
            (run_id, NodeLabel.ANALYSIS_RUN), RelType.PRODUCED, (prediction_id, NodeLabel.PREDICTION)
        )
        return prediction_id

    async def create_test_prediction(
        self, prediction_id: str, spec_id: str | None, verdict: TestVerdict
    ) -> str:
        self._check_open()
        check_id(prediction_id, "prediction")
        self._require(prediction_id, NodeLabel.PREDICTION)
        if spec_id:
            self._require(spec_id, NodeLabel.SPEC_CHUNK)
        tp_id = new_event_id()
        self._create_node(NodeLabel.TEST_PREDICTION, tp_id, {
            "testName": verdict.test,
            "file": verdict.file,
            "line": int(verdict.line),
            "status": verdict.status.value,
            "reason": verdict.reason,
        })
        self._merge_edge(
            (prediction_id, NodeLabel.PREDICTION), RelType.CONTAINS, (tp_id, NodeLabel.TEST_PREDICTION)
        )
        if spec_id:
            self._merge_edge(
                (tp_id, NodeLabel.TEST_PREDICTION), RelType.REFERS_TO, (spec_id, NodeLabel.SPEC_CHUNK)
            )
        return tp_id

    # ------------------------------------------------------------------
    # Content-addressable
    # ------------------------------------------------------------------

    async def merge_code_chunk(
        self, run_id: str, order: int, chunk: ChangedCodeChunk, embedding: list[float]
    ) -> str:
        self._check_open()
        check_id(run_id, "analysis run")
        self._require(run_id, NodeLabel.ANALYSIS_RUN)
        chunk_id = make_chunk_id(chunk.filename, chunk.raw_diff)
        self._merge_node(NodeLabel.CODE_CHUNK, chunk_id, {
            "filename": chunk.filename,
            "rawDiff": chunk.raw_diff,
            "summary": chunk.summary,
            "components": list(chunk.components),
            "functions": list(chunk.functions),
            "testIds": list(chunk.test_ids),
            "hunkCount": len(chunk.hunks),
            "linesAdded": chunk.lines_added,
            "linesRemoved": chunk.lines_removed,
            "embedding": [float(x) for x in embedding],
            "embeddingInputHash": content_hash(chunk.filename + chunk.raw_diff),
        })
        self._merge_edge(
            (run_id, NodeLabel.ANALYSIS_RUN), RelType.INCLUDES, (chunk_id, NodeLabel.CODE_CHUNK),
            props={"order": int(order)},
        )
        return chunk_id

    async def merge_spec_chunk(self, chunk: SpecChunk, embedding: list[float]) -> str:
        self._check_open()
        spec_id = make_spec_chunk_id(chunk.content)
        self._merge_node(NodeLabel.SPEC_CHUNK, spec_id, {
            "testName": chunk.test_name,
            "filename": chunk.filename,
            "content": chunk.content,
            "type": "e2e",
            "framework": "playwright",
            "embedding": [float(x) for x in embedding],
            "embeddingInputHash": content_hash(chunk.content),
        })
        return spec_id

    async def merge_selector_change(self, chunk_id: str, change: SelectorChange) -> str:
        self._check_open()
        check_id(chunk_id, "code chunk")
        self._require(chunk_id, NodeLabel.CODE_CHUNK)
        selector_id = make_selector_change_id(change)
        self._merge_node(NodeLabel.SELECTOR_CHANGE, selector_id, {
            "element": change.element,
            "attribute": change.attribute,
            "addedValue": change.added_value,
            "removedValue": change.removed_value,
        })
        self._merge_edge(
            (chunk_id, NodeLabel.CODE_CHUNK),
            RelType.HAS_SELECTOR_CHANGE,
            (selector_id, NodeLabel.SELECTOR_CHANGE),
        )
        return selector_id

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
        self._check_open()
        check_id(chunk_id, "code chunk")
        check_id(spec_id, "spec chunk")
        self._merge_edge(
            (chunk_id, NodeLabel.CODE_CHUNK),
            RelType.MATCHED,
            (spec_id, NodeLabel.SPEC_CHUNK),
            set_props={
                "cosineScore": float(cosine_score),
                "bm25Score": float(bm25_score),
                "rrfScore": float(rrf_score),
                "rank": int(rank),
            },
        )

    # ------------------------------------------------------------------
    # Lifecycle and inspection
    # ------------------------------------------------------------------

    async def verify_connectivity(self) -> None:
        self._check_open()

    async def close(self) -> None:
        self._closed = True

    def nodes_with_label(self, label: NodeLabel) -> list[dict[str, Any]]:
        return [dict(data) for _, data in self.graph.nodes(data=True) if data.get("label") == label.value]

    def edges_of_type(self, rel: RelType) -> list[tuple[str, str, dict[str, Any]]]:
        return [
            (src, dst, dict(data))
            for src, dst, data in self.graph.edges(data=True)
            if data.get("type") == rel.value
        ]

    def get_stats(self) -> dict[str, Any]:
        """Node and edge counts per label/type."""
        node_types: dict[str, int] = {}
        for _, data in self.graph.nodes(data=True):
            node_types[data["label"]] = node_types.get(data["label"], 0) + 1
        edge_types: dict[str, int] = {}
        for _, _, data in self.graph.edges(data=True):
            edge_types[data["type"]] = edge_types.get(data["type"], 0) + 1
        return {
            "total_nodes": self.graph.number_of_nodes(),
            "total_edges": self.graph.number_of_edges(),
            "node_types": node_types,
            "edge_types": edge_types,
        }

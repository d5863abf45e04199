"""Tests for the in-memory graph repository's merge/create semantics."""

from __future__ import annotations

import pytest

from specgraph.exceptions import GraphUnavailableError, GraphWriteError, ValidationError
from specgraph.graph.ids import make_chunk_id, make_org_id, make_spec_chunk_id
from specgraph.graph.memory_store import MemoryGraphRepository
from specgraph.graph.schema import NodeLabel, RelType
from specgraph.models import (
    ChangedCodeChunk,
    PRMetadata,
    SelectorChange,
    SpecChunk,
    TestVerdict,
    VerdictStatus,
)


async def _seed_run(repo: MemoryGraphRepository) -> str:
    org_id = await repo.merge_org("acme")
    repo_id = await repo.merge_repo(org_id, "acme", "acme/shop")
    pr_id = await repo.merge_pull_request(repo_id, PRMetadata(pr_number=7, title="Rename pay button"))
    return await repo.create_analysis_run(
        pr_id, model="m", temperature=0.0, duration_ms=10, code_chunk_count=1, spec_chunk_count=1
    )


CHUNK = ChangedCodeChunk(filename="src/Checkout.tsx", raw_diff="+<Button data-test-id='x'/>")
SPEC = SpecChunk(test_name="pays", filename="checkout.spec.ts", content="test('pays', () => {})")


class TestInfrastructure:
    @pytest.mark.asyncio
    async def test_merge_org_is_idempotent(self, memory_repo):
        first = await memory_repo.merge_org("acme")
        second = await memory_repo.merge_org("acme")
        assert first == second == make_org_id("acme")
        assert len(memory_repo.nodes_with_label(NodeLabel.ORG)) == 1

    @pytest.mark.asyncio
    async def test_on_create_properties_not_overwritten(self, memory_repo):
        org_id = await memory_repo.merge_org("acme")
        await memory_repo.merge_repo(org_id, "acme", "acme/shop", language="typescript")
        await memory_repo.merge_repo(org_id, "acme", "acme/shop", language="python")
        [repo] = memory_repo.nodes_with_label(NodeLabel.REPO)
        assert repo["language"] == "typescript"
        assert repo["name"] == "shop"
        assert len(memory_repo.edges_of_type(RelType.OWNS)) == 1

    @pytest.mark.asyncio
    async def test_pull_request_chain(self, memory_repo):
        await _seed_run(memory_repo)
        [pr] = memory_repo.nodes_with_label(NodeLabel.PULL_REQUEST)
        assert pr["prNumber"] == 7
        assert len(memory_repo.edges_of_type(RelType.HAS_PR)) == 1
        assert len(memory_repo.edges_of_type(RelType.ANALYZED_BY)) == 1

    @pytest.mark.asyncio
    async def test_invalid_pr_number(self, memory_repo):
        org_id = await memory_repo.merge_org("acme")
        repo_id = await memory_repo.merge_repo(org_id, "acme", "acme/shop")
        with pytest.raises(ValidationError):
            await memory_repo.merge_pull_request(repo_id, PRMetadata(pr_number=0))

    @pytest.mark.asyncio
    async def test_missing_endpoint_writes_nothing(self, memory_repo):
        with pytest.raises(GraphWriteError):
            await memory_repo.merge_repo("no-such-org", "acme", "acme/shop")
        assert memory_repo.graph.number_of_nodes() == 0


class TestEvents:
    @pytest.mark.asyncio
    async def test_runs_are_always_new(self, memory_repo):
        first = await _seed_run(memory_repo)
        second = await _seed_run(memory_repo)
        assert first != second
        assert len(memory_repo.nodes_with_label(NodeLabel.ANALYSIS_RUN)) == 2
        assert len(memory_repo.nodes_with_label(NodeLabel.PULL_REQUEST)) == 1

    @pytest.mark.asyncio
    async def test_test_prediction_with_and_without_spec(self, memory_repo):
        run_id = await _seed_run(memory_repo)
        spec_id = await memory_repo.merge_spec_chunk(SPEC, [0.1])
        prediction_id = await memory_repo.create_prediction(
            run_id, raw_markdown="# r", broken_count=1, risk_count=0, ok_count=1,
            model="m", duration_ms=5,
        )
        await memory_repo.create_test_prediction(
            prediction_id, spec_id, TestVerdict(test="pays", status=VerdictStatus.BROKEN)
        )
        await memory_repo.create_test_prediction(
            prediction_id, None, TestVerdict(test="unknown", status=VerdictStatus.OK)
        )
        assert len(memory_repo.edges_of_type(RelType.CONTAINS)) == 2
        [(_, target, _)] = memory_repo.edges_of_type(RelType.REFERS_TO)
        assert target == spec_id


class TestContentAddressable:
    @pytest.mark.asyncio
    async def test_same_chunk_merged_once(self, memory_repo):
        run_id = await _seed_run(memory_repo)
        first = await memory_repo.merge_code_chunk(run_id, 0, CHUNK, [1.0, 0.0])
        second = await memory_repo.merge_code_chunk(run_id, 0, CHUNK, [0.0, 1.0])
        assert first == second == make_chunk_id(CHUNK.filename, CHUNK.raw_diff)
        [node] = memory_repo.nodes_with_label(NodeLabel.CODE_CHUNK)
        assert node["embedding"] == [1.0, 0.0]
        assert len(memory_repo.edges_of_type(RelType.INCLUDES)) == 1

    @pytest.mark.asyncio
    async def test_includes_order_is_part_of_identity(self, memory_repo):
        run_id = await _seed_run(memory_repo)
        await memory_repo.merge_code_chunk(run_id, 0, CHUNK, [])
        await memory_repo.merge_code_chunk(run_id, 1, CHUNK, [])
        orders = sorted(d["order"] for _, _, d in memory_repo.edges_of_type(RelType.INCLUDES))
        assert orders == [0, 1]

    @pytest.mark.asyncio
    async def test_selector_change_merged_once(self, memory_repo):
        run_id = await _seed_run(memory_repo)
        chunk_id = await memory_repo.merge_code_chunk(run_id, 0, CHUNK, [])
        change = SelectorChange(element="Button", attribute="data-test-id", added_value="x")
        await memory_repo.merge_selector_change(chunk_id, change)
        await memory_repo.merge_selector_change(chunk_id, change)
        assert len(memory_repo.nodes_with_label(NodeLabel.SELECTOR_CHANGE)) == 1
        assert len(memory_repo.edges_of_type(RelType.HAS_SELECTOR_CHANGE)) == 1

    @pytest.mark.asyncio
    async def test_match_edge_updates_scores(self, memory_repo):
        run_id = await _seed_run(memory_repo)
        chunk_id = await memory_repo.merge_code_chunk(run_id, 0, CHUNK, [])
        spec_id = await memory_repo.merge_spec_chunk(SPEC, [])
        await memory_repo.merge_match(chunk_id, spec_id, cosine_score=0.1, bm25_score=1.0,
                                      rrf_score=0.01, rank=2)
        await memory_repo.merge_match(chunk_id, spec_id, cosine_score=0.9, bm25_score=2.0,
                                      rrf_score=0.03, rank=1)
        [(_, _, edge)] = memory_repo.edges_of_type(RelType.MATCHED)
        assert edge["cosineScore"] == 0.9
        assert edge["rank"] == 1

    @pytest.mark.asyncio
    async def test_match_requires_both_nodes(self, memory_repo):
        run_id = await _seed_run(memory_repo)
        chunk_id = await memory_repo.merge_code_chunk(run_id, 0, CHUNK, [])
        with pytest.raises(GraphWriteError):
            await memory_repo.merge_match(chunk_id, make_spec_chunk_id("missing"),
                                          cosine_score=0, bm25_score=0, rrf_score=0, rank=1)
        assert memory_repo.edges_of_type(RelType.MATCHED) == []

    @pytest.mark.asyncio
    async def test_spec_chunk_properties(self, memory_repo):
        await memory_repo.merge_spec_chunk(SPEC, [0.5])
        [node] = memory_repo.nodes_with_label(NodeLabel.SPEC_CHUNK)
        assert node["testName"] == "pays"
        assert node["framework"] == "playwright"
        assert node["type"] == "e2e"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_closed_repository_is_unavailable(self):
        async with MemoryGraphRepository() as repo:
            await repo.verify_connectivity()
        with pytest.raises(GraphUnavailableError):
            await repo.merge_org("acme")

    @pytest.mark.asyncio
    async def test_stats(self, memory_repo):
        await _seed_run(memory_repo)
        stats = memory_repo.get_stats()
        assert stats["total_nodes"] == 4
        assert stats["node_types"]["AnalysisRun"] == 1
        assert stats["edge_types"]["OWNS"] == 1

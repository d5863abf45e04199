"""Neo4j-backed analysis graph repository.

Every write is a parameterized Cypher statement run inside one managed
write transaction (`execute_write`). Integer properties are coerced with
`int()` so the driver sends them as 64-bit Cypher INTEGERs rather than
floats.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import (
    DatabaseUnavailable,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
)

from specgraph.config import Neo4jConfig
from specgraph.exceptions import ConfigError, GraphUnavailableError, GraphWriteError
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
from specgraph.models import (
    ChangedCodeChunk,
    PRMetadata,
    SelectorChange,
    SpecChunk,
    TestVerdict,
)

logger = logging.getLogger("specgraph.graph")

# Connection acquisition timeouts are DriverErrors too
_UNAVAILABLE = (ServiceUnavailable, SessionExpired, DatabaseUnavailable, DriverError)

# ---------------------------------------------------------------------------
# Cypher
# ---------------------------------------------------------------------------

MERGE_ORG = """
MERGE (n:Org {id: $id})
ON CREATE SET n.name = $name, n.platform = $platform, n.createdAt = datetime()
"""

MERGE_REPO = """
MERGE (n:Repo {id: $id})
ON CREATE SET n.name = $name, n.fullName = $fullName,
              n.language = $language, n.createdAt = datetime()
"""

LINK_OWNS = """
MATCH (org:Org {id: $orgId}), (repo:Repo {id: $repoId})
MERGE (org)-[r:OWNS]->(repo)
RETURN type(r) AS rel
"""

MERGE_PULL_REQUEST = """
MERGE (n:PullRequest {id: $id})
ON CREATE SET n.prNumber = $prNumber, n.title = $title,
              n.description = $description, n.author = $author,
              n.branch = $branch, n.commitSha = $commitSha, n.baseSha = $baseSha,
              n.createdAt = CASE WHEN $createdAt IS NOT NULL
                                 THEN datetime($createdAt) ELSE datetime() END,
              n.mergedAt = CASE WHEN $mergedAt IS NOT NULL
                                THEN datetime($mergedAt) ELSE null END
"""

LINK_HAS_PR = """
MATCH (repo:Repo {id: $repoId}), (pr:PullRequest {id: $prId})
MERGE (repo)-[r:HAS_PR]->(pr)
RETURN type(r) AS rel
"""

CREATE_ANALYSIS_RUN = """
CREATE (n:AnalysisRun {
  id: $id, model: $model, temperature: $temperature,
  durationMs: $durationMs, codeChunkCount: $codeChunkCount,
  specChunkCount: $specChunkCount, createdAt: datetime()
})
"""

LINK_ANALYZED_BY = """
MATCH (pr:PullRequest {id: $prId}), (run:AnalysisRun {id: $runId})
MERGE (pr)-[r:ANALYZED_BY]->(run)
RETURN type(r) AS rel
"""

MERGE_CODE_CHUNK = """
MERGE (n:CodeChunk {id: $id})
ON CREATE SET n.filename = $filename, n.rawDiff = $rawDiff,
              n.summary = $summary, n.components = $components,
              n.functions = $functions, n.testIds = $testIds,
              n.hunkCount = $hunkCount, n.linesAdded = $linesAdded,
              n.linesRemoved = $linesRemoved, n.embedding = $embedding,
              n.embeddingInputHash = $embeddingInputHash,
              n.createdAt = datetime()
"""

LINK_INCLUDES = """
MATCH (run:AnalysisRun {id: $runId}), (chunk:CodeChunk {id: $chunkId})
MERGE (run)-[r:INCLUDES {order: $order}]->(chunk)
RETURN type(r) AS rel
"""

MERGE_SPEC_CHUNK = """
MERGE (n:SpecChunk {id: $id})
ON CREATE SET n.testName = $testName, n.filename = $filename,
              n.content = $content, n.type = $type, n.framework = $framework,
              n.embedding = $embedding, n.embeddingInputHash = $embeddingInputHash,
              n.createdAt = datetime()
"""

MERGE_SELECTOR_CHANGE = """
MERGE (n:SelectorChange {id: $id})
ON CREATE SET n.element = $element, n.attribute = $attribute,
              n.addedValue = $addedValue, n.removedValue = $removedValue
"""

LINK_HAS_SELECTOR_CHANGE = """
MATCH (chunk:CodeChunk {id: $chunkId}), (sel:SelectorChange {id: $selectorId})
MERGE (chunk)-[r:HAS_SELECTOR_CHANGE]->(sel)
RETURN type(r) AS rel
"""

MERGE_MATCHED = """
MATCH (chunk:CodeChunk {id: $chunkId}), (spec:SpecChunk {id: $specId})
MERGE (chunk)-[r:MATCHED]->(spec)
SET r.cosineScore = $cosineScore, r.bm25Score = $bm25Score,
    r.rrfScore = $rrfScore, r.rank = $rank
RETURN type(r) AS rel
"""

CREATE_PREDICTION = """
CREATE (n:Prediction {
  id: $id, rawMarkdown: $rawMarkdown,
  brokenCount: $brokenCount, riskCount: $riskCount, okCount: $okCount,
  model: $model, durationMs: $durationMs, createdAt: datetime()
})
"""

LINK_PRODUCED = """
MATCH (run:AnalysisRun {id: $runId}), (pred:Prediction {id: $predictionId})
MERGE (run)-[r:PRODUCED]->(pred)
RETURN type(r) AS rel
"""

CREATE_TEST_PREDICTION = """
CREATE (n:TestPrediction {
  id: $id, testName: $testName, file: $file, line: $line,
  status: $status, reason: $reason, createdAt: datetime()
})
"""

LINK_CONTAINS = """
MATCH (pred:Prediction {id: $predictionId}), (tp:TestPrediction {id: $testPredictionId})
MERGE (pred)-[r:CONTAINS]->(tp)
RETURN type(r) AS rel
"""

LINK_REFERS_TO = """
MATCH (tp:TestPrediction {id: $testPredictionId}), (spec:SpecChunk {id: $specId})
MERGE (tp)-[r:REFERS_TO]->(spec)
RETURN type(r) AS rel
"""


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------

async def _run(tx, query: str, params: dict[str, Any]) -> None:
    result = await tx.run(query, params)
    await result.consume()


async def _link(tx, query: str, params: dict[str, Any], what: str) -> None:
    """Run a MATCH ... MERGE relationship statement; both endpoints must exist."""
    result = await tx.run(query, params)
    record = await result.single()
    if record is None:
        # Raising inside the transaction function rolls the whole write back
        raise GraphWriteError(f"Cannot link {what}: endpoint node missing ({params})")


def create_driver(config: Neo4jConfig) -> AsyncDriver:
    """Build an async driver with a bounded pool and acquisition wait."""
    if not config.uri:
        raise ConfigError("neo4j.uri (or NEO4J_URI) is required")
    password = config.password
    if not password:
        raise ConfigError(f"environment variable {config.password_env} is not set")
    return AsyncGraphDatabase.driver(
        config.uri,
        auth=(config.user, password),
        max_connection_pool_size=config.max_connection_pool_size,
        connection_acquisition_timeout=config.connection_acquisition_timeout,
    )


class Neo4jGraphRepository(GraphRepository):
    """Graph repository on top of an injected neo4j async driver."""

    def __init__(self, driver: AsyncDriver, database: str | None = None) -> None:
        self._driver = driver
        self._database = database

    @classmethod
    def from_config(cls, config: Neo4jConfig) -> Neo4jGraphRepository:
        return cls(create_driver(config), database=config.database)

    @property
    def driver(self) -> AsyncDriver:
        return self._driver

    async def _write(self, work: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Run `work(tx, *args)` in one managed write transaction."""
        try:
            async with self._driver.session(database=self._database) as session:
                return await session.execute_write(work, *args)
        except GraphWriteError:
            raise
        except _UNAVAILABLE as e:
            raise GraphUnavailableError(f"Graph store unavailable: {e}") from e
        except Neo4jError as e:
            raise GraphWriteError(f"Graph write failed: {e}") from e

    # -- infrastructure -------------------------------------------------

    async def merge_org(self, name: str, platform: str = "github") -> str:
        check_id(name, "org name")
        org_id = make_org_id(name)

        async def work(tx):
            await _run(tx, MERGE_ORG, {"id": org_id, "name": name, "platform": platform})

        await self._write(work)
        return org_id

    async def merge_repo(
        self, org_id: str, org_name: str, repo_full_name: str, language: str = "typescript"
    ) -> str:
        check_id(org_id, "org")
        check_id(repo_full_name, "repo full name")
        repo_name = repo_full_name.split("/")[-1] or repo_full_name
        repo_id = make_repo_id(org_name, repo_name)

        async def work(tx):
            await _run(tx, MERGE_REPO, {
                "id": repo_id,
                "name": repo_name,
                "fullName": repo_full_name,
                "language": language,
            })
            await _link(tx, LINK_OWNS, {"orgId": org_id, "repoId": repo_id}, "Org-OWNS->Repo")

        await self._write(work)
        return repo_id

    async def merge_pull_request(self, repo_id: str, meta: PRMetadata) -> str:
        check_id(repo_id, "repo")
        check_pr_metadata(meta)
        pr_id = make_pr_id(repo_id, meta.pr_number)

        async def work(tx):
            await _run(tx, MERGE_PULL_REQUEST, {
                "id": pr_id,
                "prNumber": int(meta.pr_number),
                "title": meta.title,
                "description": meta.description,
                "author": meta.author,
                "branch": meta.branch,
                "commitSha": meta.commit_sha,
                "baseSha": meta.base_sha,
                "createdAt": meta.created_at,
                "mergedAt": meta.merged_at,
            })
            await _link(tx, LINK_HAS_PR, {"repoId": repo_id, "prId": pr_id}, "Repo-HAS_PR->PullRequest")

        await self._write(work)
        return pr_id

    # -- events ------------------------------------------------------------

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
        check_id(pr_id, "pull request")
        run_id = new_event_id()

        async def work(tx):
            await _run(tx, CREATE_ANALYSIS_RUN, {
                "id": run_id,
                "model": model,
                "temperature": float(temperature),
                "durationMs": int(duration_ms),
                "codeChunkCount": int(code_chunk_count),
                "specChunkCount": int(spec_chunk_count),
            })
            await _link(tx, LINK_ANALYZED_BY, {"prId": pr_id, "runId": run_id},
                        "PullRequest-ANALYZED_BY->AnalysisRun")

        await self._write(work)
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
        check_id(run_id, "analysis run")
        prediction_id = new_event_id()

        async def work(tx):
            await _run(tx, CREATE_PREDICTION, {
                "id": prediction_id,
                "rawMarkdown": raw_markdown,
                "brokenCount": int(broken_count),
                "riskCount": int(risk_count),
                "okCount": int(ok_count),
                "model": model,
                "durationMs": int(duration_ms),
            })
            await _link(tx, LINK_PRODUCED, {"runId": run_id, "predictionId": prediction_id},
                        "AnalysisRun-PRODUCED->Prediction")

        await self._write(work)
        return prediction_id

    async def create_test_prediction(
        self, prediction_id: str, spec_id: str | None, verdict: TestVerdict
    ) -> str:
        check_id(prediction_id, "prediction")
        test_prediction_id = new_event_id()

        async def work(tx):
            await _run(tx, CREATE_TEST_PREDICTION, {
                "id": test_prediction_id,
                "testName": verdict.test,
                "file": verdict.file,
                "line": int(verdict.line),
                "status": verdict.status.value,
                "reason": verdict.reason,
            })
            await _link(tx, LINK_CONTAINS,
                        {"predictionId": prediction_id, "testPredictionId": test_prediction_id},
                        "Prediction-CONTAINS->TestPrediction")
            if spec_id:
                await _link(tx, LINK_REFERS_TO,
                            {"testPredictionId": test_prediction_id, "specId": spec_id},
                            "TestPrediction-REFERS_TO->SpecChunk")

        await self._write(work)
        return test_prediction_id

    # -- content-addressable ------------------------------------------------

    async def merge_code_chunk(
        self, run_id: str, order: int, chunk: ChangedCodeChunk, embedding: list[float]
    ) -> str:
        check_id(run_id, "analysis run")
        chunk_id = make_chunk_id(chunk.filename, chunk.raw_diff)

        async def work(tx):
            await _run(tx, MERGE_CODE_CHUNK, {
                "id": chunk_id,
                "filename": chunk.filename,
                "rawDiff": chunk.raw_diff,
                "summary": chunk.summary,
                "components": list(chunk.components),
                "functions": list(chunk.functions),
                "testIds": list(chunk.test_ids),
                "hunkCount": int(len(chunk.hunks)),
                "linesAdded": int(chunk.lines_added),
                "linesRemoved": int(chunk.lines_removed),
                "embedding": [float(x) for x in embedding],
                "embeddingInputHash": content_hash(chunk.filename + chunk.raw_diff),
            })
            await _link(tx, LINK_INCLUDES,
                        {"runId": run_id, "chunkId": chunk_id, "order": int(order)},
                        "AnalysisRun-INCLUDES->CodeChunk")

        await self._write(work)
        return chunk_id

    async def merge_spec_chunk(self, chunk: SpecChunk, embedding: list[float]) -> str:
        spec_id = make_spec_chunk_id(chunk.content)

        async def work(tx):
            await _run(tx, MERGE_SPEC_CHUNK, {
                "id": spec_id,
                "testName": chunk.test_name,
                "filename": chunk.filename,
                "content": chunk.content,
                "type": "e2e",
                "framework": "playwright",
                "embedding": [float(x) for x in embedding],
                "embeddingInputHash": content_hash(chunk.content),
            })

        await self._write(work)
        return spec_id

    async def merge_selector_change(self, chunk_id: str, change: SelectorChange) -> str:
        check_id(chunk_id, "code chunk")
        selector_id = make_selector_change_id(change)

        async def work(tx):
            await _run(tx, MERGE_SELECTOR_CHANGE, {
                "id": selector_id,
                "element": change.element,
                "attribute": change.attribute,
                "addedValue": change.added_value,
                "removedValue": change.removed_value,
            })
            await _link(tx, LINK_HAS_SELECTOR_CHANGE,
                        {"chunkId": chunk_id, "selectorId": selector_id},
                        "CodeChunk-HAS_SELECTOR_CHANGE->SelectorChange")

        await self._write(work)
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
        check_id(chunk_id, "code chunk")
        check_id(spec_id, "spec chunk")

        async def work(tx):
            await _link(tx, MERGE_MATCHED, {
                "chunkId": chunk_id,
                "specId": spec_id,
                "cosineScore": float(cosine_score),
                "bm25Score": float(bm25_score),
                "rrfScore": float(rrf_score),
                "rank": int(rank),
            }, "CodeChunk-MATCHED->SpecChunk")

        await self._write(work)

    # -- lifecycle ------------------------------------------------------------

    async def verify_connectivity(self) -> None:
        try:
            await self._driver.verify_connectivity()
        except (DriverError, Neo4jError) as e:
            raise GraphUnavailableError(f"Graph store unavailable: {e}") from e

    async def close(self) -> None:
        await self._driver.close()

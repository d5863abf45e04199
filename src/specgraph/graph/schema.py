"""Fixed property-graph schema: labels, relationship types and constraints."""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger("specgraph.graph")


class NodeLabel(str, Enum):
    """Node labels of the analysis graph."""

    ORG = "Org"
    REPO = "Repo"
    PULL_REQUEST = "PullRequest"
    ANALYSIS_RUN = "AnalysisRun"
    CODE_CHUNK = "CodeChunk"
    SPEC_CHUNK = "SpecChunk"
    SELECTOR_CHANGE = "SelectorChange"
    PREDICTION = "Prediction"
    TEST_PREDICTION = "TestPrediction"


class RelType(str, Enum):
    """Relationship types of the analysis graph."""

    OWNS = "OWNS"  # Org -> Repo
    HAS_PR = "HAS_PR"  # Repo -> PullRequest
    ANALYZED_BY = "ANALYZED_BY"  # PullRequest -> AnalysisRun
    INCLUDES = "INCLUDES"  # AnalysisRun -> CodeChunk {order}
    HAS_SELECTOR_CHANGE = "HAS_SELECTOR_CHANGE"  # CodeChunk -> SelectorChange
    MATCHED = "MATCHED"  # CodeChunk -> SpecChunk {cosineScore, bm25Score, rrfScore, rank}
    PRODUCED = "PRODUCED"  # AnalysisRun -> Prediction
    CONTAINS = "CONTAINS"  # Prediction -> TestPrediction
    REFERS_TO = "REFERS_TO"  # TestPrediction -> SpecChunk (0..1)


# Merged by content hash; concurrent runs may MERGE the same id.
CONTENT_ADDRESSABLE_LABELS: tuple[NodeLabel, ...] = (
    NodeLabel.ORG,
    NodeLabel.REPO,
    NodeLabel.PULL_REQUEST,
    NodeLabel.CODE_CHUNK,
    NodeLabel.SPEC_CHUNK,
    NodeLabel.SELECTOR_CHANGE,
)

# Always created fresh with a random id.
EVENT_LABELS: tuple[NodeLabel, ...] = (
    NodeLabel.ANALYSIS_RUN,
    NodeLabel.PREDICTION,
    NodeLabel.TEST_PREDICTION,
)

# Relationship properties that are part of the relationship's identity
# (MERGE pattern), as opposed to properties SET after matching.
IDENTITY_PROPERTIES: dict[RelType, tuple[str, ...]] = {
    RelType.INCLUDES: ("order",),
}


def constraint_name(label: NodeLabel) -> str:
    return f"{label.value.lower()}_id_unique"


def constraint_statements() -> list[str]:
    """One uniqueness constraint on `id` per node label.

    Every statement is idempotent (IF NOT EXISTS).
    """
    return [
        f"CREATE CONSTRAINT {constraint_name(label)} IF NOT EXISTS "
        f"FOR (n:{label.value}) REQUIRE n.id IS UNIQUE"
        for label in (*CONTENT_ADDRESSABLE_LABELS, *EVENT_LABELS)
    ]


async def ensure_schema(driver, database: str | None = None) -> list[str]:
    """Create every uniqueness constraint that does not exist yet.

    One-time setup, kept out of the per-run path. Safe to call repeatedly.
    Returns the statements that were executed.
    """
    statements = constraint_statements()
    async with driver.session(database=database) as session:
        for statement in statements:
            result = await session.run(statement)
            await result.consume()
    logger.info("Ensured %d graph constraints", len(statements))
    return statements

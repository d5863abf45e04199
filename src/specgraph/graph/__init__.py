"""Property-graph persistence for analysis runs."""

from specgraph.graph.factory import create_graph_repository
from specgraph.graph.memory_store import MemoryGraphRepository
from specgraph.graph.neo4j_store import Neo4jGraphRepository
from specgraph.graph.persister import persist_analysis_run
from specgraph.graph.repository import GraphRepository
from specgraph.graph.schema import NodeLabel, RelType, ensure_schema

__all__ = [
    "GraphRepository",
    "MemoryGraphRepository",
    "Neo4jGraphRepository",
    "NodeLabel",
    "RelType",
    "create_graph_repository",
    "ensure_schema",
    "persist_analysis_run",
]

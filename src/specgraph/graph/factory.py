"""Factory for creating graph repositories from configuration."""

from __future__ import annotations

from specgraph.config import Neo4jConfig
from specgraph.graph.repository import GraphRepository


def create_graph_repository(config: Neo4jConfig, dry_run: bool = False) -> GraphRepository:
    """Create a graph repository from configuration.

    Args:
        config: Graph store connection settings.
        dry_run: Use an in-memory graph instead of connecting to Neo4j.

    Returns:
        A repository the caller owns and must close.

    Raises:
        ConfigError: If the Neo4j URI or password is missing.
    """
    if dry_run:
        from specgraph.graph.memory_store import MemoryGraphRepository

        return MemoryGraphRepository()

    from specgraph.graph.neo4j_store import Neo4jGraphRepository

    return Neo4jGraphRepository.from_config(config)

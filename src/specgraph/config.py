"""Configuration management for SpecGraph."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from specgraph.exceptions import ConfigError

SPECGRAPH_DIR = ".specgraph"
CONFIG_FILE = "config.json"
EMBEDDING_PROVIDERS = ("openai", "ollama", "local")


class Neo4jConfig(BaseModel):
    """Graph store connection settings."""

    uri: str = ""
    user: str = "neo4j"
    password_env: str = "NEO4J_PASSWORD"
    database: str | None = None
    max_connection_pool_size: int = 10
    connection_acquisition_timeout: float = 10.0  # seconds

    @property
    def password(self) -> str | None:
        return os.environ.get(self.password_env) if self.password_env else None


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: str = "ollama"
    model: str = "nomic-embed-text"
    base_url: str | None = "http://localhost:11434/v1"
    api_key_env: str = ""
    batch_size: int = 64

    @property
    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        if self.provider == "openai":
            return os.environ.get("OPENAI_API_KEY")
        return None


class RetrievalConfig(BaseModel):
    """Hybrid retrieval knobs."""

    top_k: int = 3
    rrf_k: int = 60
    name_boost: float = 2.0
    fuzziness: float = 0.2


class PersistConfig(BaseModel):
    """Run persistence settings."""

    org_name: str = ""
    repo_full_name: str = ""
    max_concurrency: int = 8


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    neo4j: Neo4jConfig = Field(default_factory=Neo4jConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    persist: PersistConfig = Field(default_factory=PersistConfig)
    spec_patterns: list[str] = Field(
        default_factory=lambda: [
            "*.spec.ts",
            "*.spec.tsx",
            "*.spec.js",
            "*.test.ts",
            "*.test.js",
            "*.cy.ts",
            "*.cy.js",
        ]
    )


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .specgraph directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / SPECGRAPH_DIR).is_dir():
            return current
        current = current.parent
    if (current / SPECGRAPH_DIR).is_dir():
        return current
    return None


def get_specgraph_dir(root: Path) -> Path:
    """Get the .specgraph directory for a project root."""
    return root / SPECGRAPH_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .specgraph/config.json."""
    config_path = get_specgraph_dir(root) / CONFIG_FILE
    if config_path.exists():
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    return ProjectConfig(name=root.name)


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .specgraph/config.json."""
    sg_dir = get_specgraph_dir(root)
    sg_dir.mkdir(parents=True, exist_ok=True)
    config_path = sg_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'neo4j.uri')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)


def apply_env_overrides(config: ProjectConfig, environ: dict[str, str] | None = None) -> ProjectConfig:
    """Overlay NEO4J_URI / NEO4J_USER from the environment onto `config`.

    NEO4J_PASSWORD is never copied into the config; it is read at connect
    time through `Neo4jConfig.password_env`.
    """
    env = os.environ if environ is None else environ
    updates: dict[str, Any] = {}
    if env.get("NEO4J_URI"):
        updates["uri"] = env["NEO4J_URI"]
    if env.get("NEO4J_USER"):
        updates["user"] = env["NEO4J_USER"]
    if not updates:
        return config
    neo4j = config.neo4j.model_copy(update=updates)
    return config.model_copy(update={"neo4j": neo4j})


def validate_config(config: ProjectConfig, require_graph: bool = True) -> None:
    """Raise ConfigError listing every problem found in `config`."""
    errors: list[str] = []

    if require_graph:
        if not config.neo4j.uri:
            errors.append("neo4j.uri (or NEO4J_URI) is required")
        if not config.neo4j.user:
            errors.append("neo4j.user (or NEO4J_USER) is required")
        if not config.neo4j.password:
            errors.append(f"environment variable {config.neo4j.password_env} is not set")
    if config.neo4j.max_connection_pool_size <= 0:
        errors.append("neo4j.max_connection_pool_size must be positive")
    if config.neo4j.connection_acquisition_timeout <= 0:
        errors.append("neo4j.connection_acquisition_timeout must be positive")
    if config.embedding.provider.lower() not in EMBEDDING_PROVIDERS:
        errors.append(
            f"embedding.provider must be one of {', '.join(EMBEDDING_PROVIDERS)}"
        )
    if not config.embedding.model:
        errors.append("embedding.model is required")
    if config.retrieval.top_k <= 0:
        errors.append("retrieval.top_k must be positive")
    if config.retrieval.rrf_k < 0:
        errors.append("retrieval.rrf_k must not be negative")
    if not 0.0 <= config.retrieval.fuzziness < 1.0:
        errors.append("retrieval.fuzziness must be in [0, 1)")
    if config.persist.max_concurrency <= 0:
        errors.append("persist.max_concurrency must be positive")

    if errors:
        raise ConfigError("; ".join(errors))

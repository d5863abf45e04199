"""Factory for creating embedding providers from configuration."""

from __future__ import annotations

from specgraph.config import EmbeddingConfig
from specgraph.embeddings.base import Embedder


def create_embedder(config: EmbeddingConfig) -> Embedder:
    """Create an embedding provider from configuration.

    Raises:
        ValueError: If the provider is unknown.
        ProviderNotAvailableError: If the provider's SDK is not installed.
    """
    provider = config.provider.lower()

    if provider in ("openai", "ollama", "local"):
        from specgraph.embeddings.openai_provider import OpenAIEmbedder

        return OpenAIEmbedder(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            batch_size=config.batch_size,
        )
    else:
        raise ValueError(
            f"Unknown embedding provider: '{provider}'. "
            f"Supported providers: openai, ollama, local"
        )

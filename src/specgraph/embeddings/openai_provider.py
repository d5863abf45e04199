"""OpenAI-compatible embedding provider (OpenAI, Ollama, vLLM, ...)."""

from __future__ import annotations

import logging
from typing import Any

from specgraph.embeddings.base import Embedder
from specgraph.exceptions import EmbeddingError

logger = logging.getLogger("specgraph.embeddings")


class OpenAIEmbedder(Embedder):
    """Calls the `/embeddings` endpoint of any OpenAI-compatible API."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        api_key: str | None = None,
        base_url: str | None = None,
        batch_size: int = 64,
    ) -> None:
        super().__init__(model, api_key, base_url)
        self.batch_size = batch_size
        self._async_client = None

    def _get_client(self):
        if self._async_client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                from specgraph.exceptions import ProviderNotAvailableError
                raise ProviderNotAvailableError("openai", "openai")

            kwargs: dict[str, Any] = {}
            # Local OpenAI-compatible servers accept any key but the SDK requires one
            kwargs["api_key"] = self.api_key or "unused"
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._async_client = AsyncOpenAI(**kwargs)
        return self._async_client

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        client = self._get_client()
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            try:
                response = await client.embeddings.create(model=self.model, input=batch)
            except Exception as e:
                raise EmbeddingError(f"Embedding request failed: {e}") from e
            data = sorted(response.data, key=lambda d: d.index)
            vectors.extend(list(d.embedding) for d in data)

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts"
            )
        dims = {len(v) for v in vectors}
        if len(dims) > 1:
            raise EmbeddingError(f"Embedding service returned mixed dimensions: {sorted(dims)}")
        logger.debug("embedded %d texts with %s", len(texts), self.model)
        return vectors

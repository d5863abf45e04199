"""Embedding providers (vector generation is delegated to an external service)."""

from specgraph.embeddings.base import Embedder
from specgraph.embeddings.factory import create_embedder

__all__ = ["Embedder", "create_embedder"]

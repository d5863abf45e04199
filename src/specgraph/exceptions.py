"""Custom exceptions for SpecGraph."""

from __future__ import annotations


class SpecGraphError(Exception):
    """Base exception for all SpecGraph errors."""


class ConfigError(SpecGraphError):
    """Configuration-related errors."""


class ValidationError(SpecGraphError):
    """Malformed input, raised before any I/O happens."""


class VectorDimensionError(ValidationError):
    """Two vectors that must be compared have different lengths."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vectors must have the same dimension (got {left} and {right})")
        self.left = left
        self.right = right


class SpecsNotFoundError(SpecGraphError):
    """The spec directory does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Specs directory not found: {path}")
        self.path = path


class EmbeddingError(SpecGraphError):
    """The embedding service failed or returned unusable data."""


class ProviderNotAvailableError(EmbeddingError):
    """Raised when an embedding provider's SDK is not installed."""

    def __init__(self, provider: str, package: str):
        super().__init__(
            f"Provider '{provider}' requires the '{package}' package. "
            f"Install it with: pip install {package}"
        )


class GraphError(SpecGraphError):
    """Graph store errors."""


class GraphUnavailableError(GraphError):
    """The graph store cannot be reached or no connection could be acquired."""


class GraphWriteError(GraphError):
    """A single graph transaction failed."""


class PartialPersistError(GraphError):
    """Some chunk groups of a run could not be persisted.

    Sibling groups were committed in their own transactions, but the run as
    a whole must be treated as not fully persisted.
    """

    def __init__(self, run_id: str, failures: dict[str, BaseException]):
        names = ", ".join(sorted(failures))
        super().__init__(
            f"Run {run_id}: {len(failures)} chunk(s) failed to persist: {names}"
        )
        self.run_id = run_id
        self.failures = failures


class PredictionParseError(SpecGraphError):
    """Upstream verdict text could not be interpreted."""

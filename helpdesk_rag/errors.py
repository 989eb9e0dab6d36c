"""Exception types raised by the retrieval pipeline."""

from __future__ import annotations


class HelpdeskRAGError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(HelpdeskRAGError):
    """Raised when settings are missing or inconsistent."""


class EmbeddingError(HelpdeskRAGError):
    """Raised when the embedding provider fails to return a vector."""


class VectorStoreError(HelpdeskRAGError):
    """Raised by vector index backends when an operation cannot complete."""

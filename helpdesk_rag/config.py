"""Runtime settings for the retrieval pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping

from .errors import ConfigurationError


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# Environment variable -> (field name, parser)
_ENV_OVERRIDES = {
    "CHUNK_SIZE": ("chunk_size", int),
    "CHUNK_OVERLAP": ("chunk_overlap", int),
    "MAX_CHUNKS_PER_QUERY": ("max_chunks_per_query", int),
    "SIMILARITY_THRESHOLD": ("similarity_threshold", float),
    "USE_QDRANT": ("use_qdrant", _env_bool),
    "QDRANT_URL": ("qdrant_url", str),
    "QDRANT_API_KEY": ("qdrant_api_key", str),
    "QDRANT_COLLECTION": ("qdrant_collection", str),
    "EMBEDDING_MODEL": ("embedding_model", str),
    "CHAT_MODEL": ("chat_model", str),
}


@dataclass
class RAGSettings:
    """Tunable parameters shared by the chunker, retriever and caches."""

    chunk_size: int = 500
    chunk_overlap: int = 50
    max_chunks_per_query: int = 5
    similarity_threshold: float = 0.7
    # Upper bound applied by adjust_threshold; scores from the external index
    # run higher than the base threshold assumes.
    threshold_ceiling: float = 0.3
    cache_ttl_seconds: float = 300.0
    result_cache_size: int = 100
    result_cache_evict: int = 20
    embedding_cache_size: int = 1000
    embedding_cache_evict: int = 100
    embedding_timeout: float = 30.0
    search_timeout: float = 10.0
    use_qdrant: bool = False
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    qdrant_collection: str = "rag_chunks"
    vector_size: int = 1536
    embedding_model: str = "text-embedding-ada-002"
    chat_model: str = "gpt-4o-mini"

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be positive")
        if self.chunk_overlap < 0:
            raise ConfigurationError("chunk_overlap cannot be negative")
        if self.max_chunks_per_query <= 0:
            raise ConfigurationError("max_chunks_per_query must be positive")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError("similarity_threshold must be between 0 and 1")
        if not 0.0 < self.threshold_ceiling <= 1.0:
            raise ConfigurationError("threshold_ceiling must be in (0, 1]")
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError("cache_ttl_seconds must be positive")
        if self.result_cache_evict <= 0 or self.result_cache_evict > self.result_cache_size:
            raise ConfigurationError("result_cache_evict must be between 1 and result_cache_size")
        if self.embedding_cache_evict <= 0 or self.embedding_cache_evict > self.embedding_cache_size:
            raise ConfigurationError("embedding_cache_evict must be between 1 and embedding_cache_size")
        if self.embedding_timeout <= 0 or self.search_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "RAGSettings":
        """Build settings from a mapping, ignoring unknown keys."""

        known = {f.name for f in fields(cls)}
        try:
            return cls(**{key: value for key, value in values.items() if key in known})
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

    @classmethod
    def from_env(cls, base: Mapping[str, Any] | None = None) -> "RAGSettings":
        """Create settings with environment variable overrides."""

        values = dict(base or {})
        for env_name, (field_name, parser) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = parser(raw)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from exc
        return cls.from_mapping(values)

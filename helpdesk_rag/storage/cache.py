"""Time-bounded caches for embeddings and ranked results."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from ..models import SearchResult
from .vector_store import EmbeddingBackend

logger = logging.getLogger(__name__)

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 300.0


class TTLCache(Generic[V]):
    """Thread-safe key/value cache with expiry and oldest-first eviction.

    When the cache grows past ``max_entries`` the ``evict_count`` entries
    with the oldest timestamps are dropped in one pass.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: Optional[int] = None,
        evict_count: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.evict_count = max(1, evict_count)
        self._clock = clock
        self._entries: Dict[str, Tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())
            if self.max_entries is not None and len(self._entries) > self.max_entries:
                self._evict_oldest()

    def _evict_oldest(self) -> None:
        oldest = sorted(self._entries.items(), key=lambda item: item[1][1])[: self.evict_count]
        for key, _ in oldest:
            del self._entries[key]
        logger.debug("Evicted %d cache entries", len(oldest))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EmbeddingCache:
    """Memoize query embeddings keyed by their normalized text."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 1000,
        evict_count: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self._cache: TTLCache[np.ndarray] = TTLCache(
            ttl_seconds=ttl_seconds,
            max_entries=max_entries,
            evict_count=evict_count,
            clock=clock,
        )
        self.hits = 0
        self.misses = 0

    @staticmethod
    def cache_key(text: str) -> str:
        return text.lower().strip()

    async def get_embedding(self, text: str) -> np.ndarray:
        key = self.cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        vectors = await self.backend.embed([text])
        vector = np.asarray(vectors, dtype=np.float32)
        if vector.ndim == 2:
            vector = vector[0]
        self._cache.set(key, vector)
        return vector

    async def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        """Embed documents in bulk; bulk calls bypass the cache."""

        return np.asarray(await self.backend.embed(list(texts)), dtype=np.float32)

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> dict:
        return {
            "model": getattr(self.backend, "model_name", "unknown"),
            "cache_size": len(self._cache),
            "cache_keys": self._cache.keys()[:10],
            "hits": self.hits,
            "misses": self.misses,
        }


class ResultCache:
    """Short-lived cache of final ranked results per query/strategy/filter."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 100,
        evict_count: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[List[SearchResult]] = TTLCache(
            ttl_seconds=ttl_seconds,
            max_entries=max_entries,
            evict_count=evict_count,
            clock=clock,
        )

    @staticmethod
    def cache_key(query: str, strategy: str, source_filter: Optional[str]) -> str:
        return f"{query}|{strategy}|{source_filter or 'all'}"

    def get(self, query: str, strategy: str, source_filter: Optional[str]) -> Optional[List[SearchResult]]:
        cached = self._cache.get(self.cache_key(query, strategy, source_filter))
        return list(cached) if cached is not None else None

    def set(self, query: str, strategy: str, source_filter: Optional[str], results: List[SearchResult]) -> None:
        self._cache.set(self.cache_key(query, strategy, source_filter), list(results))

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

"""Vector index contract and the in-process NumPy implementation."""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..models import ChunkMetadata, DocumentChunk, SearchResult

logger = logging.getLogger(__name__)


class EmbeddingBackend:
    """Protocol for embedding providers."""

    model_name: str

    async def embed(self, texts: Sequence[str]) -> np.ndarray:  # pragma: no cover - interface
        raise NotImplementedError


def cosine_similarity(first: Any, second: Any) -> float:
    """Cosine similarity that returns 0.0 instead of raising.

    Zero-magnitude vectors, missing vectors and length mismatches all score
    zero.
    """

    if first is None or second is None:
        return 0.0
    a = np.asarray(first, dtype=np.float64).ravel()
    b = np.asarray(second, dtype=np.float64).ravel()
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


@dataclass
class MetadataFilter:
    """Equality filter over chunk metadata fields.

    ``must`` holds fields that have to match, ``must_not`` fields that must
    differ. Both map ``ChunkMetadata`` attribute names to values.
    """

    must: Dict[str, Any] = field(default_factory=dict)
    must_not: Dict[str, Any] = field(default_factory=dict)

    def matches(self, metadata: ChunkMetadata) -> bool:
        for key, value in self.must.items():
            if getattr(metadata, key, None) != value:
                return False
        for key, value in self.must_not.items():
            if getattr(metadata, key, None) == value:
                return False
        return True

    @property
    def is_empty(self) -> bool:
        return not self.must and not self.must_not


class VectorIndex(ABC):
    """Similarity-search backend shared by the in-process and external stores."""

    name: str = "abstract"
    # Whether search results carry their embedding vectors.
    has_vectors: bool = False

    async def initialize(self) -> None:
        """Prepare the backend; raise to signal it is unavailable."""

    @abstractmethod
    async def upsert(self, chunks: Sequence[DocumentChunk]) -> int:
        """Insert or replace chunks, returning the number written."""

    @abstractmethod
    async def search_vectors(
        self,
        query_vector: np.ndarray,
        *,
        limit: int = 5,
        score_threshold: float = 0.0,
        filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        """Return chunks scoring at least ``score_threshold``, best first."""

    @abstractmethod
    async def delete_by_filter(self, filter: Optional[MetadataFilter]) -> int:
        """Delete matching chunks; ``None`` deletes everything."""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """Return at least ``point_count`` plus backend specific details."""

    @abstractmethod
    async def scroll_chunks(self, *, limit: int = 1000) -> List[DocumentChunk]:
        """Return up to ``limit`` stored chunks without their vectors."""

    async def close(self) -> None:
        """Release any held connections."""


class InMemoryVectorIndex(VectorIndex):
    """Linear-scan cosine index, optionally persisted on disk."""

    name = "memory"
    has_vectors = True

    def __init__(self, storage_dir: str | Path | None = None) -> None:
        self.storage_dir = Path(storage_dir) if storage_dir is not None else None
        self._chunks: List[DocumentChunk] = []
        self._embeddings: np.ndarray | None = None
        self._lock = threading.Lock()
        if self.storage_dir is not None:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            self._vectors_path = self.storage_dir / "vectors.npy"
            self._meta_path = self.storage_dir / "metadata.json"
            self._load()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if not (self._meta_path.exists() and self._vectors_path.exists()):
            return
        with self._meta_path.open("r", encoding="utf-8") as fh:
            meta = json.load(fh)
        embeddings = np.load(self._vectors_path)
        chunks: List[DocumentChunk] = []
        for row, item in zip(embeddings, meta.get("chunks", [])):
            chunks.append(
                DocumentChunk(
                    id=item["id"],
                    text=item["text"],
                    metadata=ChunkMetadata(**item["metadata"]),
                    vector=row,
                )
            )
        self._chunks = chunks
        self._embeddings = embeddings if chunks else None
        logger.info("Loaded %d chunks from %s", len(chunks), self.storage_dir)

    def _save(self) -> None:
        if self.storage_dir is None:
            return
        payload = {
            "chunks": [
                {"id": chunk.id, "text": chunk.text, "metadata": chunk.metadata.to_dict()}
                for chunk in self._chunks
            ]
        }
        with self._meta_path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        if self._embeddings is not None:
            np.save(self._vectors_path, self._embeddings)
        elif self._vectors_path.exists():
            self._vectors_path.unlink()

    # ------------------------------------------------------------------
    async def upsert(self, chunks: Sequence[DocumentChunk]) -> int:
        new_chunks = [chunk for chunk in chunks if chunk.vector is not None]
        if len(new_chunks) != len(chunks):
            logger.warning("Skipping %d chunks without vectors", len(chunks) - len(new_chunks))
        if not new_chunks:
            return 0

        embeddings = np.vstack([np.asarray(chunk.vector, dtype=np.float32) for chunk in new_chunks])

        with self._lock:
            if self._embeddings is not None and embeddings.shape[1] != self._embeddings.shape[1]:
                raise ValueError("Embedding dimension mismatch")

            replaced = {chunk.id for chunk in new_chunks}
            keep = [idx for idx, chunk in enumerate(self._chunks) if chunk.id not in replaced]
            kept_chunks = [self._chunks[idx] for idx in keep]
            if self._embeddings is not None and keep:
                self._embeddings = np.vstack([self._embeddings[keep], embeddings])
            else:
                self._embeddings = embeddings
            self._chunks = kept_chunks + list(new_chunks)
            self._save()

        return len(new_chunks)

    def _snapshot(self) -> tuple[List[DocumentChunk], np.ndarray | None]:
        with self._lock:
            return list(self._chunks), self._embeddings

    async def search_vectors(
        self,
        query_vector: np.ndarray,
        *,
        limit: int = 5,
        score_threshold: float = 0.0,
        filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        chunks, doc_vectors = self._snapshot()
        if not chunks or doc_vectors is None:
            return []

        query_vec = np.asarray(query_vector, dtype=np.float32).ravel()
        if query_vec.shape[0] != doc_vectors.shape[1]:
            logger.warning(
                "Query vector dimension %d does not match index dimension %d",
                query_vec.shape[0],
                doc_vectors.shape[1],
            )
            return []

        # Cosine similarity; zero-magnitude rows score 0.
        doc_norms = np.linalg.norm(doc_vectors, axis=1)
        query_norm = float(np.linalg.norm(query_vec))
        denominators = doc_norms * query_norm
        dots = doc_vectors @ query_vec
        similarities = np.divide(
            dots,
            denominators,
            out=np.zeros_like(dots, dtype=np.float64),
            where=denominators > 0,
        )

        order = similarities.argsort()[::-1]
        results: List[SearchResult] = []
        for idx in order:
            score = float(similarities[idx])
            if score < score_threshold:
                break
            chunk = chunks[idx]
            if filter is not None and not filter.matches(chunk.metadata):
                continue
            results.append(SearchResult(chunk=chunk, similarity=min(max(score, 0.0), 1.0)))
            if len(results) >= limit:
                break
        return results

    async def delete_by_filter(self, filter: Optional[MetadataFilter]) -> int:
        with self._lock:
            if filter is None or filter.is_empty:
                keep: List[int] = []
            else:
                keep = [idx for idx, chunk in enumerate(self._chunks) if not filter.matches(chunk.metadata)]
            removed = len(self._chunks) - len(keep)
            self._chunks = [self._chunks[idx] for idx in keep]
            if self._embeddings is not None and keep:
                self._embeddings = self._embeddings[keep]
            else:
                self._embeddings = None
            self._save()
        logger.info("Deleted %d chunks from in-memory index", removed)
        return removed

    async def stats(self) -> Dict[str, Any]:
        chunks, embeddings = self._snapshot()
        avg_length = sum(len(chunk.text) for chunk in chunks) / len(chunks) if chunks else 0
        return {
            "point_count": len(chunks),
            "total_sources": len({chunk.metadata.source_url for chunk in chunks}),
            "avg_chunk_length": round(avg_length),
            "vector_size": int(embeddings.shape[1]) if embeddings is not None else None,
        }

    async def scroll_chunks(self, *, limit: int = 1000) -> List[DocumentChunk]:
        chunks, _ = self._snapshot()
        return chunks[:limit]

    # ------------------------------------------------------------------
    def iter_chunks(self) -> Iterable[DocumentChunk]:
        """Snapshot of every chunk, used by lexical scoring."""

        chunks, _ = self._snapshot()
        return chunks

    @property
    def chunk_count(self) -> int:
        with self._lock:
            return len(self._chunks)

    @property
    def embedding_dimension(self) -> int | None:
        with self._lock:
            if self._embeddings is None:
                return None
            return int(self._embeddings.shape[1])

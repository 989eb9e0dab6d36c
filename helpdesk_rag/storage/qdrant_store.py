"""Qdrant-backed implementation of the vector index contract."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from pydantic import ValidationError
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from ..errors import VectorStoreError
from ..models import DocumentChunk, SearchResult
from .payload import ChunkPayload
from .vector_store import MetadataFilter, VectorIndex

logger = logging.getLogger(__name__)

# Payload fields indexed for server-side filtering.
INDEXED_FIELDS = {
    "source_url": PayloadSchemaType.KEYWORD,
    "source_title": PayloadSchemaType.KEYWORD,
    "is_manually_added": PayloadSchemaType.BOOL,
}


def to_qdrant_filter(filter: Optional[MetadataFilter]) -> Optional[Filter]:
    """Translate a ``MetadataFilter`` into Qdrant's filter model."""

    if filter is None or filter.is_empty:
        return None
    must = [FieldCondition(key=key, match=MatchValue(value=value)) for key, value in filter.must.items()]
    must_not = [
        FieldCondition(key=key, match=MatchValue(value=value)) for key, value in filter.must_not.items()
    ]
    return Filter(must=must or None, must_not=must_not or None)


class QdrantVectorIndex(VectorIndex):
    """Delegate similarity search to a Qdrant collection."""

    name = "qdrant"
    # Points are fetched without vectors to keep responses small.
    has_vectors = False

    def __init__(
        self,
        *,
        url: str = "http://localhost:6333",
        api_key: str | None = None,
        collection_name: str = "rag_chunks",
        vector_size: int = 1536,
        timeout: int = 10,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        self.client = client or AsyncQdrantClient(url=url, api_key=api_key, timeout=timeout)
        self.url = url
        self.collection_name = collection_name
        self.vector_size = vector_size

    async def initialize(self) -> None:
        """Connect and make sure the collection exists with a matching size."""

        collections = await self.client.get_collections()
        exists = any(col.name == self.collection_name for col in collections.collections)

        if not exists:
            await self.create_collection()
            return

        info = await self.client.get_collection(collection_name=self.collection_name)
        vectors = info.config.params.vectors
        existing_size = getattr(vectors, "size", None)
        if existing_size and existing_size != self.vector_size:
            logger.warning(
                "Vector size mismatch for %s: expected %d, collection has %d",
                self.collection_name,
                self.vector_size,
                existing_size,
            )
            self.vector_size = existing_size
        logger.info("Using existing Qdrant collection %s", self.collection_name)

    async def create_collection(self) -> None:
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
        )
        for field_name, schema in INDEXED_FIELDS.items():
            await self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field_name,
                field_schema=schema,
            )
        logger.info("Created Qdrant collection %s with payload indexes", self.collection_name)

    async def recreate_collection(self) -> None:
        try:
            await self.client.delete_collection(collection_name=self.collection_name)
        except Exception as exc:  # collection may not exist yet
            logger.warning("Collection deletion failed: %s", exc)
        await self.create_collection()

    async def health_check(self) -> Dict[str, str]:
        try:
            await self.client.get_collections()
        except Exception as exc:
            return {"status": "unhealthy", "service": "qdrant", "error": str(exc)}
        return {"status": "healthy", "service": "qdrant"}

    # ------------------------------------------------------------------
    async def upsert(self, chunks: Sequence[DocumentChunk]) -> int:
        points = []
        for chunk in chunks:
            if chunk.vector is None or len(chunk.vector) != self.vector_size:
                raise VectorStoreError(
                    f"Chunk {chunk.id} has invalid vector size, expected {self.vector_size}"
                )
            points.append(
                PointStruct(
                    id=chunk.id,
                    vector=np.asarray(chunk.vector, dtype=np.float32).tolist(),
                    payload=ChunkPayload.from_chunk(chunk.text, chunk.metadata).to_payload(),
                )
            )
        if not points:
            return 0

        await self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
        logger.info("Upserted %d points to %s", len(points), self.collection_name)
        return len(points)

    def _to_chunk(self, point: Any) -> Optional[DocumentChunk]:
        if point is None or not point.payload:
            logger.warning("Skipping Qdrant point without payload: %s", getattr(point, "id", None))
            return None
        try:
            payload = ChunkPayload.model_validate(point.payload)
        except ValidationError as exc:
            logger.warning("Skipping malformed Qdrant payload for %s: %s", point.id, exc)
            return None
        if not payload.text:
            logger.warning("Qdrant point %s has no text", point.id)
        return DocumentChunk(id=str(point.id), text=payload.text, metadata=payload.to_metadata())

    async def search_vectors(
        self,
        query_vector: np.ndarray,
        *,
        limit: int = 5,
        score_threshold: float = 0.0,
        filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=np.asarray(query_vector, dtype=np.float32).tolist(),
            limit=limit,
            score_threshold=score_threshold,
            query_filter=to_qdrant_filter(filter),
            with_payload=True,
            with_vectors=False,
        )
        results: List[SearchResult] = []
        for point in response.points:
            chunk = self._to_chunk(point)
            if chunk is None:
                continue
            results.append(SearchResult(chunk=chunk, similarity=min(max(float(point.score), 0.0), 1.0)))
        results.sort(key=lambda result: result.similarity, reverse=True)
        logger.debug("Qdrant returned %d results above %.2f", len(results), score_threshold)
        return results

    async def delete_by_filter(self, filter: Optional[MetadataFilter]) -> int:
        before = await self._count()
        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=FilterSelector(filter=to_qdrant_filter(filter) or Filter()),
            wait=True,
        )
        removed = before - await self._count()
        logger.info("Deleted %d points from %s", removed, self.collection_name)
        return removed

    async def _count(self) -> int:
        result = await self.client.count(collection_name=self.collection_name, exact=True)
        return int(result.count)

    async def stats(self) -> Dict[str, Any]:
        info = await self.client.get_collection(collection_name=self.collection_name)
        return {
            "point_count": await self._count(),
            "collection_name": self.collection_name,
            "vector_size": self.vector_size,
            "distance": "cosine",
            "segments_count": info.segments_count,
        }

    async def scroll_chunks(self, *, limit: int = 1000) -> List[DocumentChunk]:
        points, _ = await self.client.scroll(
            collection_name=self.collection_name,
            limit=limit,
            with_payload=True,
            with_vectors=False,
        )
        return [chunk for chunk in (self._to_chunk(point) for point in points) if chunk is not None]

    async def close(self) -> None:
        await self.client.close()

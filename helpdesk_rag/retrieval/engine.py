"""Retrieval facade tying analysis, search, ranking and caching together."""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config import RAGSettings
from ..errors import EmbeddingError
from ..models import (
    ChunkMetadata,
    CitationReport,
    Document,
    DocumentChunk,
    QueryAnalysis,
    SearchResult,
    SearchStrategy,
    SourceInfo,
)
from ..storage.backend import VectorBackendSelector
from ..storage.cache import EmbeddingCache, ResultCache
from ..storage.vector_store import EmbeddingBackend, InMemoryVectorIndex, MetadataFilter, VectorIndex
from ..utils.chunking import chunk_text
from ..utils.text import extract_brand_name, extract_domain
from .analyzer import QueryAnalyzer
from .citations import CitationBuilder
from .expander import QueryExpander
from .postprocess import ResultPostProcessor
from .retriever import MultiStrategyRetriever

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_TOKENS = 2000
CHARS_PER_TOKEN = 4
SOURCE_SCAN_LIMIT = 1000


def chunk_id(url: str, index: int) -> str:
    """Stable id so re-ingesting a page overwrites its previous chunks."""

    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{url}:{index}"))


class RAGEngine:
    """Entry point for ingestion and multi-strategy search.

    The engine owns the backend selector and the caches; a single instance
    is meant to be shared by every request in the process.
    """

    def __init__(
        self,
        settings: RAGSettings,
        embedder: EmbeddingBackend,
        *,
        external: Optional[VectorIndex] = None,
        storage_dir: str | Path | None = None,
        embedding_cache: Optional[EmbeddingCache] = None,
        result_cache: Optional[ResultCache] = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self._log = log or logger
        self.embeddings = embedding_cache or EmbeddingCache(
            embedder,
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.embedding_cache_size,
            evict_count=settings.embedding_cache_evict,
        )
        self.result_cache = result_cache or ResultCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.result_cache_size,
            evict_count=settings.result_cache_evict,
        )
        self.backends = VectorBackendSelector(
            InMemoryVectorIndex(storage_dir),
            external,
            init_timeout=settings.search_timeout,
            log=self._log,
        )
        self.analyzer = QueryAnalyzer()
        self.expander = QueryExpander()
        self.retriever = MultiStrategyRetriever(self.backends, self.embeddings, settings, log=self._log)
        self.postprocessor = ResultPostProcessor(max_results=settings.max_chunks_per_query, log=self._log)
        self.citations = CitationBuilder(log=self._log)

    async def initialize(self) -> None:
        await self.backends.initialize()

    async def _ensure_initialized(self) -> None:
        if not self.backends.initialized:
            await self.initialize()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    async def add_document(self, document: Document) -> int:
        """Chunk, embed and store ``document``. Returns the number of chunks."""

        await self._ensure_initialized()
        self._log.info("Adding document: %s", document.title)

        texts = chunk_text(
            document.content,
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )
        if not texts:
            self._log.warning("Document %s produced no chunks", document.url)
            return 0

        vectors = await self.embeddings.embed_many(texts)
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")

        chunks = [
            DocumentChunk(
                id=chunk_id(document.url, index),
                text=text,
                metadata=ChunkMetadata(
                    source_url=document.url,
                    source_title=document.title,
                    description=document.description,
                    chunk_index=index,
                    total_chunks=len(texts),
                    created_at=document.timestamp,
                    word_count=len(text.split()),
                    is_manually_added=document.is_manually_added,
                ),
                vector=vectors[index],
            )
            for index, text in enumerate(texts)
        ]
        await self.backends.active.upsert(chunks)
        self.result_cache.clear()
        self._log.info(
            "Added %d chunks to %s from: %s", len(chunks), self.backends.backend_name, document.title
        )
        return len(chunks)

    async def add_documents(self, documents: Iterable[Document]) -> Tuple[int, List[Dict[str, str]]]:
        total = 0
        errors: List[Dict[str, str]] = []
        for document in documents:
            try:
                total += await self.add_document(document)
            except Exception as exc:
                self._log.error("Failed to add document %s: %s", document.title or document.url, exc)
                errors.append({"document": document.title or document.url, "error": str(exc)})
        return total, errors

    async def reindex_document(self, document: Document) -> int:
        await self._ensure_initialized()
        removed = await self.backends.active.delete_by_filter(MetadataFilter(must={"source_url": document.url}))
        self._log.info("Removed %d chunks before reindexing %s", removed, document.url)
        return await self.add_document(document)

    async def clear_knowledge_base(self) -> None:
        await self._ensure_initialized()
        await self.backends.active.delete_by_filter(None)
        self.embeddings.clear()
        self.result_cache.clear()

    async def clear_configured_sources(self) -> int:
        """Remove every chunk that was not added manually."""

        await self._ensure_initialized()
        removed = await self.backends.active.delete_by_filter(MetadataFilter(must_not={"is_manually_added": True}))
        self.embeddings.clear()
        self.result_cache.clear()
        return removed

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    async def _is_empty(self) -> bool:
        stats = await self.backends.active.stats()
        return int(stats.get("point_count", 0)) == 0

    async def search(
        self,
        query: str,
        strategy: SearchStrategy | str = SearchStrategy.HYBRID,
        history: Sequence[Mapping[str, str]] | None = None,
        top_k: Optional[int] = None,
        source_filter: Optional[str] = None,
    ) -> List[SearchResult]:
        """Return ranked chunks for ``query``, best first.

        Invalid input, an empty knowledge base and search timeouts all yield
        ``[]``. Embedding failures propagate as :class:`EmbeddingError`.
        """

        if not isinstance(query, str) or not query.strip():
            self._log.error("Invalid query provided to search: %r", query)
            return []
        try:
            strategy = SearchStrategy(strategy)
        except ValueError:
            self._log.error("Unknown search strategy: %r", strategy)
            return []

        if top_k is not None and top_k < 1:
            self._log.error("Invalid top_k provided to search: %r", top_k)
            return []

        top_k = top_k or self.settings.max_chunks_per_query
        try:
            await self._ensure_initialized()
            if await self._is_empty():
                self._log.warning("Knowledge base on %s backend is empty", self.backends.backend_name)
                return []

            plan = self.analyzer.preprocess(query)
            analysis = plan.analysis
            expanded = self.expander.expand(query, analysis)

            cache_query = query.strip()
            cached = self.result_cache.get(cache_query, strategy.value, source_filter)
            if cached is not None:
                self._log.info("Cache hit for query", extra={"query": cache_query, "strategy": strategy.value})
                return cached

            contextual = self.analyzer.contextual_query(query, history)
            results = await self.retriever.retrieve(
                contextual, strategy, analysis, top_k=top_k, history=history
            )
            if not self.backends.using_external:
                results = await self.retriever.rerank(results, query, expanded, analysis)
            results = self.postprocessor.process(results, analysis, source_filter)
        except asyncio.TimeoutError:
            self._log.error("Search timed out", extra={"query": query, "strategy": strategy.value})
            return []
        except EmbeddingError:
            raise
        except Exception as exc:
            self._log.error("Search error: %s", exc, extra={"query": query, "strategy": strategy.value})
            return []

        self.result_cache.set(cache_query, strategy.value, source_filter, results)
        self._log.info(
            "Search completed",
            extra={
                "query": query,
                "optimized_query": plan.optimized,
                "strategy": strategy.value,
                "query_type": analysis.type.value,
                "result_count": len(results),
            },
        )
        return results

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------
    @staticmethod
    def build_context(results: Sequence[SearchResult], max_tokens: int = DEFAULT_CONTEXT_TOKENS) -> str:
        context = ""
        tokens = 0
        for result in results:
            entry = f"Source: {result.metadata.source_title} ({result.metadata.source_url})\n{result.text}\n\n"
            entry_tokens = math.ceil(len(entry) / CHARS_PER_TOKEN)
            if tokens + entry_tokens > max_tokens:
                break
            context += entry
            tokens += entry_tokens
        return context.strip()

    def generate_citations(
        self,
        results: Sequence[SearchResult],
        query: str,
        history: Sequence[Mapping[str, str]] | None = None,
    ) -> CitationReport:
        try:
            analysis = self.analyzer.analyze(query) if query else QueryAnalysis.general(query)
            return self.citations.build_citations(results, query, analysis)
        except Exception as exc:
            self._log.error("Citation generation failed: %s", exc, extra={"query": query})
            return CitationReport()

    @staticmethod
    def generate_source_citations(results: Sequence[SearchResult]) -> List[Dict[str, Any]]:
        """Group results by page URL, keeping the best similarity per page."""

        sources: Dict[str, Dict[str, Any]] = {}
        for result in results:
            url = result.metadata.source_url
            entry = sources.setdefault(
                url,
                {"url": url, "title": result.metadata.source_title, "similarity": result.similarity, "chunks": 0},
            )
            entry["chunks"] += 1
            entry["similarity"] = max(entry["similarity"], result.similarity)
        return sorted(sources.values(), key=lambda source: source["similarity"], reverse=True)

    async def _all_chunks(self) -> List[DocumentChunk]:
        if self.backends.using_external:
            return await self.backends.active.scroll_chunks(limit=SOURCE_SCAN_LIMIT)
        return list(self.backends.fallback.iter_chunks())

    async def get_available_sources(self) -> List[SourceInfo]:
        await self._ensure_initialized()
        try:
            chunks = await self._all_chunks()
        except Exception as exc:
            self._log.error("Failed to list sources from %s: %s", self.backends.backend_name, exc)
            return []

        grouped: Dict[str, SourceInfo] = {}
        for chunk in chunks:
            url = chunk.metadata.source_url
            brand = extract_brand_name(url)
            source = grouped.get(brand)
            if source is None:
                source = grouped[brand] = SourceInfo(
                    title=brand,
                    domain=extract_domain(url),
                    is_manually_added=chunk.metadata.is_manually_added,
                )
            source.chunk_count += 1
            if chunk.metadata.source_title not in source.pages:
                source.pages.append(chunk.metadata.source_title)
        return sorted(grouped.values(), key=lambda source: source.title)

    async def get_stats(self) -> Dict[str, Any]:
        await self._ensure_initialized()
        stats: Dict[str, Any] = {
            "chunk_size": self.settings.chunk_size,
            "chunk_overlap": self.settings.chunk_overlap,
            "max_chunks_per_query": self.settings.max_chunks_per_query,
            "similarity_threshold": self.settings.similarity_threshold,
            "backend_in_use": self.backends.backend_name,
            "backend_state": self.backends.state.value,
            "embedding_stats": self.embeddings.stats(),
            "citation_stats": self.citations.stats(),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        if self.backends.last_error:
            stats["backend_error"] = self.backends.last_error
        try:
            backend_stats = await self.backends.active.stats()
        except Exception as exc:
            self._log.warning("Backend stats failed: %s", exc)
            stats.update(total_chunks=0, error=str(exc))
        else:
            stats["total_chunks"] = backend_stats.get("point_count", 0)
            stats.update({key: value for key, value in backend_stats.items() if key != "point_count"})
        stats["total_sources"] = len(await self.get_available_sources())
        return stats

    async def close(self) -> None:
        if self.backends.external is not None:
            await self.backends.external.close()

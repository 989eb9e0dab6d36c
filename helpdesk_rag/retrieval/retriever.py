"""Multi-strategy retrieval against the active vector backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..config import RAGSettings
from ..errors import EmbeddingError
from ..models import QueryAnalysis, QueryType, SearchResult, SearchStrategy
from ..storage.backend import VectorBackendSelector
from ..storage.cache import EmbeddingCache
from ..storage.vector_store import MetadataFilter, cosine_similarity
from .lexical import KEYWORD_MIN_SIMILARITY, bm25_scores, keyword_density, keyword_score

logger = logging.getLogger(__name__)

SEMANTIC_WEIGHT = 0.7
LEXICAL_WEIGHT = 0.3
MIN_THRESHOLD = 0.1
MAX_THRESHOLD = 0.95
FALLBACK_THRESHOLD_DROP = 0.2
FALLBACK_THRESHOLD_FLOOR = 0.2
CONTEXT_TURNS = 3
CONTEXT_TERMS = 10

_TYPE_THRESHOLD_SHIFT = {
    QueryType.DEFINITION: -0.10,
    QueryType.HOW_TO: -0.05,
    QueryType.TROUBLESHOOTING: -0.08,
    QueryType.COMPARISON: +0.05,
}


def _sorted(results: List[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=lambda result: result.similarity, reverse=True)


class MultiStrategyRetriever:
    """Run semantic, keyword, hybrid or contextual retrieval for a query.

    The retriever holds no per-query state: everything a call needs lives
    in its arguments and locals, so concurrent calls stay independent.
    """

    def __init__(
        self,
        backends: VectorBackendSelector,
        embeddings: EmbeddingCache,
        settings: RAGSettings,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self.backends = backends
        self.embeddings = embeddings
        self.settings = settings
        self._log = log or logger

    # ------------------------------------------------------------------
    # Strategy and threshold selection
    # ------------------------------------------------------------------
    @staticmethod
    def resolve_strategy(strategy: SearchStrategy | str, analysis: QueryAnalysis) -> SearchStrategy:
        strategy = SearchStrategy(strategy)
        if strategy is not SearchStrategy.AUTO:
            return strategy
        if analysis.type is QueryType.DEFINITION:
            return SearchStrategy.SEMANTIC
        if analysis.type is QueryType.HOW_TO:
            return SearchStrategy.HYBRID
        if analysis.type is QueryType.TROUBLESHOOTING:
            return SearchStrategy.KEYWORD
        if analysis.is_short:
            return SearchStrategy.SEMANTIC
        return SearchStrategy.HYBRID

    def adjust_threshold(self, analysis: QueryAnalysis) -> float:
        threshold = self.settings.similarity_threshold

        if analysis.is_short:
            threshold -= 0.15
        elif analysis.is_long:
            threshold += 0.10

        threshold += _TYPE_THRESHOLD_SHIFT.get(analysis.type, 0.0)

        if len(analysis.keywords) > 3:
            threshold += 0.05

        # Multi-word keywords are usually product or feature names.
        if any(" " in keyword and len(keyword) > 5 for keyword in analysis.keywords):
            threshold -= 0.10

        threshold = min(threshold, self.settings.threshold_ceiling)
        return max(MIN_THRESHOLD, min(MAX_THRESHOLD, threshold))

    @staticmethod
    def fallback_threshold(threshold: float) -> float:
        return min(threshold, max(FALLBACK_THRESHOLD_FLOOR, threshold - FALLBACK_THRESHOLD_DROP))

    def fallback_strategy(self) -> SearchStrategy:
        return SearchStrategy.SEMANTIC if self.backends.using_external else SearchStrategy.KEYWORD

    # ------------------------------------------------------------------
    # External calls
    # ------------------------------------------------------------------
    async def embed(self, text: str) -> np.ndarray:
        try:
            return await asyncio.wait_for(
                self.embeddings.get_embedding(text), timeout=self.settings.embedding_timeout
            )
        except asyncio.TimeoutError:
            raise
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Failed to create embedding: {exc}") from exc

    async def _vector_search(
        self,
        query_vector: np.ndarray,
        *,
        limit: int,
        threshold: float,
        filter: Optional[MetadataFilter],
    ) -> List[SearchResult]:
        index = self.backends.active
        try:
            results = await asyncio.wait_for(
                index.search_vectors(query_vector, limit=limit, score_threshold=threshold, filter=filter),
                timeout=self.settings.search_timeout,
            )
        except asyncio.TimeoutError:
            raise
        except Exception as exc:
            self._log.error("Vector search failed on %s backend: %s", index.name, exc)
            return []
        return _sorted(results)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------
    async def semantic_search(
        self,
        query: str,
        analysis: QueryAnalysis,
        *,
        top_k: int,
        filter: Optional[MetadataFilter] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        if threshold is None:
            threshold = self.adjust_threshold(analysis)
        query_vector = await self.embed(query)
        return await self._vector_search(query_vector, limit=top_k, threshold=threshold, filter=filter)

    def keyword_search(
        self,
        query: str,
        analysis: QueryAnalysis,
        *,
        top_k: int,
        filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        """Purely lexical search over the in-process chunk list.

        The external backend only supports similarity search, so this yields
        nothing while it is active.
        """

        if self.backends.using_external:
            self._log.debug("Keyword search unavailable on external backend")
            return []

        chunks = self.backends.fallback.iter_chunks()
        if not chunks:
            self._log.warning("Keyword search: knowledge base is empty")
            return []

        scored: List[SearchResult] = []
        for chunk in chunks:
            if not chunk.text:
                self._log.warning("Skipping chunk %s without text", chunk.id)
                continue
            if filter is not None and not filter.matches(chunk.metadata):
                continue
            similarity = keyword_score(query, chunk.text, chunk.metadata.source_title)
            if similarity <= KEYWORD_MIN_SIMILARITY:
                continue
            similarity *= self._keyword_type_boost(chunk.text, analysis)
            scored.append(SearchResult(chunk=chunk, similarity=min(similarity, 1.0)))

        return _sorted(scored)[:top_k]

    @staticmethod
    def _keyword_type_boost(text: str, analysis: QueryAnalysis) -> float:
        lowered = text.lower()
        if analysis.type is QueryType.TROUBLESHOOTING and ("error" in lowered or "problem" in lowered):
            return 1.2
        if analysis.type is QueryType.DEFINITION and (" is " in lowered or "means" in lowered):
            return 1.1
        return 1.0

    async def hybrid_search(
        self,
        query: str,
        analysis: QueryAnalysis,
        *,
        top_k: int,
        filter: Optional[MetadataFilter] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        """Blend vector similarity (0.7) with a normalized BM25 score (0.3).

        BM25 statistics come from the whole in-process corpus, or from the
        candidate set when the external index is active.
        """

        if threshold is None:
            threshold = self.adjust_threshold(analysis)
        query_vector = await self.embed(query)

        if self.backends.using_external:
            candidates = await self._vector_search(
                query_vector, limit=top_k * 2, threshold=threshold * 0.8, filter=filter
            )
            corpus = [(candidate.id, candidate.text) for candidate in candidates]
        else:
            semantic = await self._vector_search(
                query_vector, limit=top_k * 2, threshold=threshold, filter=filter
            )
            lexical = self.keyword_search(query, analysis, top_k=top_k * 2, filter=filter)
            merged: Dict[str, SearchResult] = {result.id: result for result in semantic}
            for result in lexical:
                if result.id not in merged:
                    similarity = max(cosine_similarity(query_vector, result.vector), 0.0)
                    merged[result.id] = SearchResult(chunk=result.chunk, similarity=min(similarity, 1.0))
            candidates = list(merged.values())
            corpus = [(chunk.id, chunk.text) for chunk in self.backends.fallback.iter_chunks()]

        ids = [chunk_id for chunk_id, _ in corpus]
        lexical_scores = dict(zip(ids, bm25_scores(query, [text or "" for _, text in corpus])))

        combined = []
        for candidate in candidates:
            lexical_score = lexical_scores.get(candidate.id, 0.0)
            score = candidate.similarity * SEMANTIC_WEIGHT + lexical_score * LEXICAL_WEIGHT
            combined.append(
                SearchResult(
                    chunk=candidate.chunk,
                    similarity=min(score, 1.0),
                    bm25_score=lexical_score,
                    original_similarity=candidate.similarity,
                )
            )
        return _sorted(combined)[:top_k]

    @staticmethod
    def enhance_query_with_context(query: str, history: Sequence[Mapping[str, str]] | None) -> str:
        """Append salient words (longer than three characters) from recent turns."""

        if not history:
            return query
        recent = " ".join(str(turn.get("content", "")) for turn in list(history)[-CONTEXT_TURNS:])
        terms = [word for word in recent.split() if len(word) > 3][:CONTEXT_TERMS]
        return f"{query} {' '.join(terms)}" if terms else query

    async def contextual_search(
        self,
        query: str,
        analysis: QueryAnalysis,
        *,
        top_k: int,
        history: Sequence[Mapping[str, str]] | None = None,
        filter: Optional[MetadataFilter] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        context_query = self.enhance_query_with_context(query, history)
        if threshold is None:
            threshold = self.adjust_threshold(analysis)
        if self.backends.using_external:
            return await self.semantic_search(
                context_query, analysis, top_k=top_k, filter=filter, threshold=threshold * 0.9
            )
        return await self.hybrid_search(context_query, analysis, top_k=top_k, filter=filter, threshold=threshold)

    # ------------------------------------------------------------------
    async def execute(
        self,
        query: str,
        strategy: SearchStrategy,
        analysis: QueryAnalysis,
        *,
        top_k: int,
        filter: Optional[MetadataFilter] = None,
        history: Sequence[Mapping[str, str]] | None = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        if strategy is SearchStrategy.SEMANTIC:
            return await self.semantic_search(query, analysis, top_k=top_k, filter=filter, threshold=threshold)
        if strategy is SearchStrategy.KEYWORD:
            return self.keyword_search(query, analysis, top_k=top_k, filter=filter)
        if strategy is SearchStrategy.CONTEXTUAL:
            return await self.contextual_search(
                query, analysis, top_k=top_k, history=history, filter=filter, threshold=threshold
            )
        return await self.hybrid_search(query, analysis, top_k=top_k, filter=filter, threshold=threshold)

    async def retrieve(
        self,
        query: str,
        strategy: SearchStrategy | str,
        analysis: QueryAnalysis,
        *,
        top_k: int,
        filter: Optional[MetadataFilter] = None,
        history: Sequence[Mapping[str, str]] | None = None,
    ) -> List[SearchResult]:
        """Run the chosen strategy, retrying once with a relaxed setup on no hits."""

        concrete = self.resolve_strategy(strategy, analysis)
        results = await self.execute(query, concrete, analysis, top_k=top_k, filter=filter, history=history)
        if results:
            return results

        relaxed = self.fallback_threshold(self.adjust_threshold(analysis))
        fallback = self.fallback_strategy()
        self._log.info(
            "No results with %s strategy, retrying with %s at threshold %.2f",
            concrete.value,
            fallback.value,
            relaxed,
        )
        return await self.execute(
            query, fallback, analysis, top_k=top_k, filter=filter, history=history, threshold=relaxed
        )

    # ------------------------------------------------------------------
    async def rerank(
        self,
        results: List[SearchResult],
        original_query: str,
        expanded_query: str,
        analysis: QueryAnalysis,
    ) -> List[SearchResult]:
        """Recombine scores with original/expanded query similarity and keyword density.

        Only meaningful when results carry their vectors, i.e. the in-process
        backend is active.
        """

        if len(results) <= 1 or not self.backends.active.has_vectors:
            return results

        original_vector = await self.embed(original_query)
        expanded_vector = await self.embed(expanded_query)

        reranked = []
        for result in results:
            score = result.similarity
            original_similarity = cosine_similarity(original_vector, result.vector)
            score = score * 0.7 + original_similarity * 0.3
            expanded_similarity = cosine_similarity(expanded_vector, result.vector)
            score = score * 0.8 + expanded_similarity * 0.2
            density = keyword_density(result.text, analysis.keywords)
            score = score * 0.9 + density * 0.1

            chunk_index = result.metadata.chunk_index
            position_boost = max(0.8, 1 - chunk_index / 10) if chunk_index else 1.0
            score *= position_boost

            reranked.append(
                SearchResult(
                    chunk=result.chunk,
                    similarity=min(max(score, 0.0), 1.0),
                    bm25_score=result.bm25_score,
                    original_similarity=original_similarity,
                    expanded_similarity=expanded_similarity,
                    keyword_density=density,
                    position_boost=position_boost,
                )
            )
        return _sorted(reranked)

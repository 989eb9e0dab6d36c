"""Source filtering, diversity and boosting of retrieved results."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from ..models import QueryAnalysis, QueryType, SearchResult
from ..utils.text import (
    extract_brand_name,
    extract_domain,
    extract_url_path,
    jaccard_similarity,
    token_set,
)
from .tables import (
    CONTENT_TYPE_BOOSTS,
    HOW_TO_ACTION_WORDS,
    QUERY_TYPE_URL_BOOSTS,
    TYPE_CONTENT_BOOSTS,
)

logger = logging.getLogger(__name__)

MAX_PER_SOURCE = 2
TEXT_SIMILARITY_THRESHOLD = 0.7


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def age_in_days(timestamp: Optional[str], now: datetime) -> Optional[float]:
    parsed = _parse_timestamp(timestamp)
    if parsed is None:
        return None
    return (now - parsed).total_seconds() / 86400


def _by_similarity(results: List[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=lambda result: result.similarity, reverse=True)


class ResultPostProcessor:
    """Filter, diversify and boost a ranked result list.

    Steps run in a fixed order: source filter, diversity filter, query-type
    ranking and finally metadata boosts (applied inside the ranking pass).
    """

    def __init__(
        self,
        *,
        max_results: int = 5,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        log: logging.Logger | None = None,
    ) -> None:
        self.max_results = max_results
        self._clock = clock
        self._log = log or logger

    def process(
        self,
        results: List[SearchResult],
        analysis: QueryAnalysis,
        source_filter: Optional[str] = None,
    ) -> List[SearchResult]:
        results = self.filter_by_source(results, source_filter)
        results = self.apply_diversity(results)
        return self.apply_query_type_ranking(results, analysis)

    # ------------------------------------------------------------------
    def filter_by_source(self, results: List[SearchResult], source_filter: Optional[str]) -> List[SearchResult]:
        if not source_filter or source_filter == "all":
            return results
        filtered = [
            result for result in results if extract_brand_name(result.metadata.source_url) == source_filter
        ]
        self._log.info(
            "Source filter %s kept %d of %d results", source_filter, len(filtered), len(results)
        )
        return filtered

    def apply_diversity(self, results: List[SearchResult]) -> List[SearchResult]:
        """Cap results per domain and drop duplicate pages or near-identical text."""

        kept: List[SearchResult] = []
        kept_tokens: List[Set[str]] = []
        per_domain: dict[str, int] = {}
        seen_paths: Set[str] = set()

        for result in _by_similarity(results):
            url = result.metadata.source_url
            domain = extract_domain(url)
            if per_domain.get(domain, 0) >= MAX_PER_SOURCE:
                continue
            path = extract_url_path(url)
            if path in seen_paths:
                continue
            tokens = token_set(result.text)
            if any(jaccard_similarity(tokens, other) > TEXT_SIMILARITY_THRESHOLD for other in kept_tokens):
                continue

            kept.append(result)
            kept_tokens.append(tokens)
            per_domain[domain] = per_domain.get(domain, 0) + 1
            seen_paths.add(path)
            if len(kept) >= self.max_results:
                break

        self._log.debug(
            "Diversity filter kept %d of %d results from %d domains",
            len(kept),
            len(results),
            len(per_domain),
        )
        return kept

    # ------------------------------------------------------------------
    def type_boost(self, text: str, analysis: QueryAnalysis) -> float:
        lowered = text.lower()
        boost = 1.0

        cues, factor = TYPE_CONTENT_BOOSTS.get(analysis.type, ((), 1.0))
        if any(cue in lowered for cue in cues):
            boost = factor

        if analysis.type is QueryType.DEFINITION:
            if any(keyword and keyword.lower() in lowered for keyword in analysis.keywords):
                boost *= 1.2
        elif analysis.type is QueryType.HOW_TO:
            if any(word in lowered for word in HOW_TO_ACTION_WORDS):
                boost *= 1.15

        query = analysis.original.lower().strip()
        if query and query in lowered:
            boost *= 1.3

        matches = sum(1 for keyword in analysis.keywords if keyword and keyword.lower() in lowered)
        if matches > 1:
            boost *= 1 + matches * 0.1
        return boost

    def apply_query_type_ranking(self, results: List[SearchResult], analysis: QueryAnalysis) -> List[SearchResult]:
        ranked = []
        for result in results:
            if not result.text:
                self._log.warning("Result %s has no text, skipping boosts", result.id)
                ranked.append(result)
                continue
            boost = self.type_boost(result.text, analysis)
            boost = self.apply_metadata_boosts(result, boost, analysis)
            ranked.append(
                SearchResult(
                    chunk=result.chunk,
                    similarity=min(result.similarity * boost, 1.0),
                    relevance_boost=boost,
                    bm25_score=result.bm25_score,
                    original_similarity=result.original_similarity,
                    expanded_similarity=result.expanded_similarity,
                    keyword_density=result.keyword_density,
                    position_boost=result.position_boost,
                )
            )
        return _by_similarity(ranked)

    def apply_metadata_boosts(self, result: SearchResult, current_boost: float, analysis: QueryAnalysis) -> float:
        boost = current_boost
        metadata = result.metadata
        title = metadata.source_title.lower()
        url = metadata.source_url or ""
        description = metadata.description.lower()

        # Source authority
        domain = extract_domain(url)
        if "docs." in domain or "documentation" in domain:
            boost *= 1.2
        elif "github.com" in domain and "/docs/" in url:
            boost *= 1.15
        elif "official" in title or "documentation" in title:
            boost *= 1.1

        # Content type, first match only
        url_lower = url.lower()
        for pattern, factor in CONTENT_TYPE_BOOSTS:
            if pattern in title or pattern in url_lower or pattern in description:
                boost *= factor
                break

        alignment = QUERY_TYPE_URL_BOOSTS.get(analysis.type)
        if alignment is not None:
            title_words, url_parts, factor = alignment
            if any(word in title for word in title_words) or any(part in url_lower for part in url_parts):
                boost *= factor

        days_old = age_in_days(metadata.created_at, self._clock())
        if days_old is not None:
            if days_old < 7:
                boost *= 1.1
            elif days_old < 30:
                boost *= 1.05
            elif days_old > 365:
                boost *= 0.95

        word_count = metadata.word_count
        if 200 < word_count < 2000:
            boost *= 1.05
        elif word_count < 50:
            boost *= 0.9

        if metadata.chunk_index == 0 and metadata.total_chunks > 1:
            boost *= 1.1
        elif metadata.chunk_index < 3 and metadata.total_chunks > 5:
            boost *= 1.05

        return boost

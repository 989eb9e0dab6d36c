"""Turn ranked search results into presentation citations."""

from __future__ import annotations

import logging
import re
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, List, Sequence
from urllib.parse import urlparse

from ..models import (
    Citation,
    CitationContent,
    CitationContext,
    CitationRelevance,
    CitationReport,
    CitationSource,
    CitationSummary,
    Highlight,
    QueryAnalysis,
    QueryType,
    SearchResult,
)
from ..utils.text import extract_words
from .postprocess import age_in_days

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200
EXCERPT_STEP = 50
WORD_SNAP = 20
EMPTY_EXCERPT = "No content available for this source."
TOP_SOURCES = 3

_CONFIDENCE_INDICATORS = {
    QueryType.DEFINITION: (("is", "are", "means", "refers to", "defined as"), 0.2),
    QueryType.HOW_TO: (("step", "process", "procedure", "method", "way to"), 0.15),
    QueryType.TROUBLESHOOTING: (("error", "problem", "issue", "fix", "solution"), 0.1),
}

_RELEVANCE_INDICATORS = {
    QueryType.DEFINITION: ("is", "are", "means"),
    QueryType.HOW_TO: ("step", "process", "how"),
    QueryType.TROUBLESHOOTING: ("error", "problem", "fix"),
}

_SECTIONS = (
    (("Introduction", "Overview"), "introduction"),
    (("Example", "Sample"), "examples"),
    (("Error", "Problem"), "troubleshooting"),
    (("Step", "Process"), "procedures"),
)

_CONCEPT_PATTERNS = (
    re.compile(r"(?:related to|similar to|like|such as)\s+([^,.\n]+)", re.IGNORECASE),
    re.compile(r"(?:see also|also see|refer to)\s+([^,.\n]+)", re.IGNORECASE),
)


def source_type(url: str) -> str:
    if not url:
        return "unknown"
    if "docs." in url:
        return "documentation"
    if "github.com" in url:
        return "code_repository"
    if "stackoverflow.com" in url:
        return "community"
    if "medium.com" in url or "blog." in url:
        return "article"
    if url.startswith("file://"):
        return "uploaded_file"
    return "web_page"


def citation_domain(url: str) -> str:
    if not url:
        return "unknown"
    if url.startswith("file://"):
        return "Local File"
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "unknown"
    if not hostname:
        return "unknown"
    return hostname.replace("www.", "", 1)


def generate_excerpt(text: str, query: str, max_length: int = EXCERPT_LENGTH) -> str:
    """Pick the window of ``text`` that mentions the most query words."""

    if not text or not text.strip():
        return EMPTY_EXCERPT
    if len(text) <= max_length:
        return text

    words = extract_words(query)
    lowered = text.lower()
    best_index = 0
    best_score = 0
    for start in range(0, len(text) - max_length + 1, EXCERPT_STEP):
        window = lowered[start : start + max_length]
        score = sum(1 for word in words if word in window)
        if score > best_score:
            best_score = score
            best_index = start

    excerpt = text[best_index : best_index + max_length]
    if best_index > 0:
        first_space = excerpt.find(" ")
        if 0 < first_space < WORD_SNAP:
            excerpt = excerpt[first_space + 1 :]
    if best_index + max_length < len(text):
        last_space = excerpt.rfind(" ")
        if last_space > max_length - WORD_SNAP:
            excerpt = excerpt[:last_space]

    return excerpt + ("..." if len(excerpt) < len(text) else "")


def match_type(text: str, query: str) -> str:
    lowered = text.lower()
    query_lower = query.lower()
    if query_lower in lowered:
        return "exact_match"
    words = extract_words(query)
    matching = [word for word in words if word in lowered]
    if words and len(matching) == len(words):
        return "all_words_match"
    if len(matching) > len(words) / 2:
        return "partial_match"
    return "semantic_match"


def matching_query_words(text: str, query: str) -> List[str]:
    lowered = text.lower()
    return [word for word in extract_words(query) if len(word) > 2 and word in lowered]


def generate_highlights(text: str, query: str) -> List[Highlight]:
    highlights = []
    for word in extract_words(query):
        if len(word) <= 2:
            continue
        for match in re.finditer(re.escape(word), text, re.IGNORECASE):
            highlights.append(Highlight(word=match.group(0), position=match.start(), length=len(match.group(0))))
    return sorted(highlights, key=lambda highlight: highlight.position)


class CitationBuilder:
    """Build citations and a summary for one response.

    Citations are derived views over search results; nothing is stored
    apart from cumulative counters exposed by :meth:`stats`.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        log: logging.Logger | None = None,
    ) -> None:
        self._clock = clock
        self._log = log or logger
        self._lock = threading.Lock()
        self._total_citations = 0
        self._unique_sources: set[str] = set()
        self._citation_types: Counter[str] = Counter()

    def build_citations(
        self,
        results: Sequence[SearchResult],
        query: str,
        analysis: QueryAnalysis,
    ) -> CitationReport:
        if not results:
            return CitationReport()

        total = len(results)
        citations = [
            self.create_citation(result, index, query, analysis, total) for index, result in enumerate(results)
        ]
        citations.sort(key=lambda citation: (citation.confidence, citation.relevance.similarity), reverse=True)

        summary = self.summarize(citations, analysis)
        self._record(citations)
        self._log.info(
            "Citations generated",
            extra={"query": query, "citation_count": len(citations), "confidence": summary.confidence},
        )
        return CitationReport(citations=citations, summary=summary)

    def create_citation(
        self,
        result: SearchResult,
        index: int,
        query: str,
        analysis: QueryAnalysis,
        total_results: int,
    ) -> Citation:
        metadata = result.metadata
        title = metadata.source_title or "Unknown Source"
        url = metadata.source_url or "#"
        text = result.text or ""

        return Citation(
            id=f"citation_{index}_{result.id}",
            source=CitationSource(title=title, url=url, type=source_type(url), domain=citation_domain(url)),
            content=CitationContent(
                text=text or "No content available",
                excerpt=generate_excerpt(text, query),
                word_count=len(text.split()),
                chunk_index=metadata.chunk_index,
                total_chunks=metadata.total_chunks,
            ),
            relevance=CitationRelevance(
                similarity=result.similarity,
                confidence=self.confidence(result, query, analysis),
                match_type=match_type(text, query),
                keywords=matching_query_words(text, query),
            ),
            highlights=generate_highlights(text, query),
            context=self.context(text, analysis),
            position=index + 1,
            total_results=total_results,
            timestamp=metadata.created_at or self._clock().isoformat(),
            is_manually_added=metadata.is_manually_added,
        )

    def confidence(self, result: SearchResult, query: str, analysis: QueryAnalysis) -> float:
        confidence = max(0.0, min(result.similarity, 1.0))
        lowered = (result.text or "").lower()

        indicators, bonus = _CONFIDENCE_INDICATORS.get(analysis.type, ((), 0.0))
        if any(indicator in lowered for indicator in indicators):
            confidence += bonus

        confidence += len(matching_query_words(lowered, query)) * 0.05

        days_old = age_in_days(result.metadata.created_at, self._clock())
        if days_old is not None and days_old < 30:
            confidence += 0.05

        return max(0.0, min(confidence, 1.0))

    def context(self, text: str, analysis: QueryAnalysis) -> CitationContext:
        section = "general"
        for markers, name in _SECTIONS:
            if any(marker in text for marker in markers):
                section = name
                break

        sentences = re.split(r"[.!?]+", text)
        topic = sentences[0].strip()[:100] if sentences else text[:100]

        concepts: List[str] = []
        for pattern in _CONCEPT_PATTERNS:
            concepts.extend(match.group(1).strip() for match in pattern.finditer(text))

        relevance = 0.5
        if any(indicator in text for indicator in _RELEVANCE_INDICATORS.get(analysis.type, ())):
            relevance += 0.3

        return CitationContext(
            section=section,
            topic=topic,
            related_concepts=concepts[:3],
            query_relevance=min(relevance, 1.0),
        )

    # ------------------------------------------------------------------
    def summarize(self, citations: List[Citation], analysis: QueryAnalysis) -> CitationSummary:
        if not citations:
            return CitationSummary()

        keywords = [keyword.lower() for keyword in analysis.keywords]
        covered = [
            keyword for keyword in keywords if any(keyword in citation.relevance.keywords for citation in citations)
        ]
        source_types: Dict[str, int] = dict(Counter(citation.source.type for citation in citations))

        return CitationSummary(
            total_sources=len(citations),
            unique_domains=len({citation.source.domain for citation in citations}),
            confidence=sum(citation.confidence for citation in citations) / len(citations),
            coverage=len(covered) / len(keywords) if keywords else 0.0,
            source_types=source_types,
            top_sources=[
                {
                    "title": citation.source.title,
                    "domain": citation.source.domain,
                    "confidence": citation.confidence,
                    "excerpt": citation.content.excerpt,
                }
                for citation in citations[:TOP_SOURCES]
            ],
        )

    def _record(self, citations: List[Citation]) -> None:
        with self._lock:
            self._total_citations += len(citations)
            for citation in citations:
                self._unique_sources.add(citation.source.url)
                self._citation_types[citation.source.type] += 1

    def stats(self) -> Dict[str, object]:
        with self._lock:
            return {
                "total_citations": self._total_citations,
                "unique_sources": len(self._unique_sources),
                "citation_types": dict(self._citation_types),
            }

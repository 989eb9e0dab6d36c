"""Core domain models for the helpdesk retrieval pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np


class QueryType(str, Enum):
    DEFINITION = "definition"
    HOW_TO = "how_to"
    COMPARISON = "comparison"
    TROUBLESHOOTING = "troubleshooting"
    EXAMPLE = "example"
    GENERAL = "general"


class SearchStrategy(str, Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"
    CONTEXTUAL = "contextual"
    AUTO = "auto"


@dataclass
class Document:
    """A raw document scraped or uploaded into the knowledge base."""

    url: str
    title: str
    content: str
    description: str = ""
    timestamp: Optional[str] = None
    is_manually_added: bool = False
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = self.url


@dataclass
class ChunkMetadata:
    """Normalized metadata attached to every stored chunk."""

    source_url: str
    source_title: str
    description: str = ""
    chunk_index: int = 0
    total_chunks: int = 1
    created_at: Optional[str] = None
    word_count: int = 0
    is_manually_added: bool = False

    def __post_init__(self) -> None:
        if self.total_chunks < 1 or not 0 <= self.chunk_index < self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} out of range for {self.total_chunks} chunks"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DocumentChunk:
    """A contiguous span of a source document with its embedding."""

    id: str
    text: str
    metadata: ChunkMetadata
    vector: Optional[np.ndarray] = field(default=None, repr=False, compare=False)


@dataclass
class QueryAnalysis:
    """Derived, per-query classification and keyword extraction."""

    original: str
    type: QueryType
    keywords: List[str]
    word_count: int
    has_question_mark: bool = False

    @property
    def is_short(self) -> bool:
        return self.word_count <= 3

    @property
    def is_long(self) -> bool:
        return self.word_count > 10

    @classmethod
    def general(cls, query: str) -> "QueryAnalysis":
        return cls(original=query, type=QueryType.GENERAL, keywords=[], word_count=0)


@dataclass
class SearchResult:
    """A chunk annotated with its relevance to one query."""

    chunk: DocumentChunk
    similarity: float
    relevance_boost: Optional[float] = None
    bm25_score: Optional[float] = None
    original_similarity: Optional[float] = None
    expanded_similarity: Optional[float] = None
    keyword_density: Optional[float] = None
    position_boost: Optional[float] = None

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def metadata(self) -> ChunkMetadata:
        return self.chunk.metadata

    @property
    def vector(self) -> Optional[np.ndarray]:
        return self.chunk.vector

    @property
    def citation(self) -> Optional[str]:
        """Return a human readable citation string when available."""

        return self.metadata.source_title or self.metadata.source_url or None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "similarity": self.similarity,
            "metadata": self.metadata.to_dict(),
        }
        for name in (
            "relevance_boost",
            "bm25_score",
            "original_similarity",
            "expanded_similarity",
            "keyword_density",
            "position_boost",
        ):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


@dataclass
class SourceInfo:
    """A knowledge-base source grouped by brand."""

    title: str
    domain: str
    chunk_count: int = 0
    is_manually_added: bool = False
    pages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Highlight:
    word: str
    position: int
    length: int


@dataclass
class CitationSource:
    title: str
    url: str
    type: str
    domain: str


@dataclass
class CitationContent:
    text: str
    excerpt: str
    word_count: int
    chunk_index: int
    total_chunks: int


@dataclass
class CitationRelevance:
    similarity: float
    confidence: float
    match_type: str
    keywords: List[str]


@dataclass
class CitationContext:
    section: str
    topic: str
    related_concepts: List[str]
    query_relevance: float


@dataclass
class Citation:
    """Presentation-oriented view of a search result."""

    id: str
    source: CitationSource
    content: CitationContent
    relevance: CitationRelevance
    highlights: List[Highlight]
    context: CitationContext
    position: int
    total_results: int
    timestamp: Optional[str] = None
    is_manually_added: bool = False

    @property
    def confidence(self) -> float:
        return self.relevance.confidence

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CitationSummary:
    total_sources: int = 0
    unique_domains: int = 0
    confidence: float = 0.0
    coverage: float = 0.0
    source_types: Dict[str, int] = field(default_factory=dict)
    top_sources: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class CitationReport:
    citations: List[Citation] = field(default_factory=list)
    summary: CitationSummary = field(default_factory=CitationSummary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "citations": [citation.to_dict() for citation in self.citations],
            "summary": asdict(self.summary),
        }

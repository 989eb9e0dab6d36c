"""Pattern based query classification and keyword extraction."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from ..models import QueryAnalysis, QueryType
from ..utils.text import extract_words
from .tables import PROBLEM_WORDS, QUERY_TYPE_CUES, STOPWORDS

logger = logging.getLogger(__name__)

_MAIN_TERM_PATTERNS = (
    re.compile(r"what is (?:a |an |the )?([^?]+)", re.IGNORECASE),
    re.compile(r"define (?:a |an |the )?([^?]+)", re.IGNORECASE),
    re.compile(r"meaning of (?:a |an |the )?([^?]+)", re.IGNORECASE),
)
_ACTION_PATTERNS = (
    re.compile(r"how to ([^?]+)", re.IGNORECASE),
    re.compile(r"how do (?:you |i )?([^?]+)", re.IGNORECASE),
    re.compile(r"steps to ([^?]+)", re.IGNORECASE),
)
_COMPARISON_PATTERNS = (
    re.compile(r"(.+?) (?:vs\.?|versus) ([^?]+)", re.IGNORECASE),
    re.compile(r"compare ([^?]+)", re.IGNORECASE),
    re.compile(r"difference between ([^?]+)", re.IGNORECASE),
)
_CONCEPT_PATTERNS = (
    re.compile(r"example of ([^?]+)", re.IGNORECASE),
    re.compile(r"sample of ([^?]+)", re.IGNORECASE),
    re.compile(r"show me ([^?]+)", re.IGNORECASE),
    re.compile(r"demonstrate ([^?]+)", re.IGNORECASE),
)

@dataclass
class QueryPlan:
    """Result of preprocessing one query."""

    original: str
    optimized: str
    analysis: QueryAnalysis


def _first_group(patterns, query: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(query)
        if match:
            return match.group(1).strip()
    return None


class QueryAnalyzer:
    """Classify queries by intent and pull out their keywords."""

    def __init__(self, *, stopwords: frozenset[str] = STOPWORDS) -> None:
        self.stopwords = stopwords

    def classify(self, query: str) -> QueryType:
        lowered = query.lower()
        for query_type, cues in QUERY_TYPE_CUES:
            if any(cue in lowered for cue in cues):
                return query_type
        return QueryType.GENERAL

    def analyze(self, query: str) -> QueryAnalysis:
        words = extract_words(query)
        keywords = [word for word in words if word not in self.stopwords]
        return QueryAnalysis(
            original=query,
            type=self.classify(query),
            keywords=keywords,
            word_count=len(words),
            has_question_mark="?" in query,
        )

    # ------------------------------------------------------------------
    # Query rewriting
    # ------------------------------------------------------------------
    def extract_main_term(self, query: str) -> str:
        """``"What is Snowflake?"`` -> ``"Snowflake"``."""

        return _first_group(_MAIN_TERM_PATTERNS, query) or query

    def extract_action_and_object(self, query: str) -> str:
        return _first_group(_ACTION_PATTERNS, query) or query

    def extract_comparison_terms(self, query: str) -> str:
        for pattern in _COMPARISON_PATTERNS:
            match = pattern.search(query)
            if match:
                return " ".join(group.strip() for group in match.groups())
        return query

    def extract_problem_terms(self, query: str) -> str:
        terms = [word for word in extract_words(query) if any(p in word for p in PROBLEM_WORDS)]
        return " ".join(terms) if terms else query

    def extract_concept_term(self, query: str) -> str:
        return _first_group(_CONCEPT_PATTERNS, query) or query

    def optimize_query(self, query: str, analysis: QueryAnalysis) -> str:
        """Reduce the query to the part most useful for retrieval."""

        if analysis.type is QueryType.DEFINITION:
            optimized = self.extract_main_term(query)
        elif analysis.type is QueryType.HOW_TO:
            optimized = self.extract_action_and_object(query)
        elif analysis.type is QueryType.COMPARISON:
            optimized = self.extract_comparison_terms(query)
        elif analysis.type is QueryType.TROUBLESHOOTING:
            optimized = self.extract_problem_terms(query)
        elif analysis.type is QueryType.EXAMPLE:
            optimized = self.extract_concept_term(query)
        else:
            optimized = " ".join(analysis.keywords)
        return optimized or query

    def contextual_query(self, query: str, history: Sequence[Mapping[str, str]] | None) -> str:
        """Append query words that the last three turns also mention."""

        if not history:
            return query
        recent = " ".join(str(turn.get("content", "")) for turn in list(history)[-3:])
        context_words = set(extract_words(recent))
        common = [
            word
            for word in extract_words(query)
            if word in context_words and word not in self.stopwords
        ]
        return f"{query} {' '.join(common)}" if common else query

    def preprocess(self, query: str) -> QueryPlan:
        original = query.strip()
        try:
            analysis = self.analyze(original)
            optimized = self.optimize_query(original, analysis)
        except Exception:
            logger.exception("Query preprocessing failed for %r", query)
            analysis = QueryAnalysis.general(original)
            optimized = original
        plan = QueryPlan(
            original=original,
            optimized=optimized,
            analysis=analysis,
        )
        logger.debug(
            "Query preprocessed",
            extra={"original": original, "optimized": optimized, "query_type": analysis.type.value},
        )
        return plan

"""Synonym based query expansion used as a secondary ranking signal."""

from __future__ import annotations

from typing import Dict, List, Mapping, Sequence

from ..models import QueryAnalysis, QueryType
from .tables import SYNONYMS, SYNONYMS_PER_KEYWORD, TYPE_BOOST_TERMS


class QueryExpander:
    """Augment query keywords with domain synonyms and intent terms.

    The expanded string is only used to re-rank candidates; the primary
    vector search always runs on the user's own wording.
    """

    def __init__(
        self,
        *,
        synonyms: Mapping[str, Sequence[str]] = SYNONYMS,
        type_terms: Mapping[QueryType, Sequence[str]] = TYPE_BOOST_TERMS,
        per_keyword: int = SYNONYMS_PER_KEYWORD,
    ) -> None:
        self.synonyms = synonyms
        self.type_terms = type_terms
        self.per_keyword = per_keyword

    def expansion_terms(self, analysis: QueryAnalysis) -> List[str]:
        keywords = [keyword for keyword in analysis.keywords if keyword]
        synonyms: List[str] = []
        for keyword in keywords:
            synonyms.extend(self.synonyms.get(keyword.lower(), ())[: self.per_keyword])
        type_terms = list(self.type_terms.get(analysis.type, ()))

        # dict preserves first-seen order
        ordered: Dict[str, None] = dict.fromkeys(keywords + synonyms + type_terms)
        return list(ordered)

    def expand(self, query: str, analysis: QueryAnalysis) -> str:
        terms = self.expansion_terms(analysis)
        return " ".join(terms) if terms else query

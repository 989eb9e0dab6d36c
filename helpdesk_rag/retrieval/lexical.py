"""Lexical scoring: phrase/term matching, BM25 and keyword density."""

from __future__ import annotations

import re
from typing import List, Sequence

import numpy as np
from rank_bm25 import BM25Okapi

from ..utils.text import extract_words

KEYWORD_MIN_SIMILARITY = 0.05
BM25_K1 = 1.2
BM25_B = 0.75
# Raw keyword scores are squashed with score / (score + KEYWORD_SCORE_HALF_POINT)
# so stronger matches keep ranking above weaker ones instead of saturating.
KEYWORD_SCORE_HALF_POINT = 15.0


def term_variations(phrase: str) -> List[str]:
    """Spelling variants of a (possibly multi-word) term.

    ``"auto loader"`` yields ``auto-loader``, ``auto_loader``, ``autoLoader``
    and ``AutoLoader`` besides the phrase itself.
    """

    lowered = phrase.lower().strip()
    variations = [lowered, re.sub(r"\s+", "-", lowered), re.sub(r"\s+", "_", lowered)]
    words = lowered.split()
    if len(words) > 1:
        camel = words[0] + "".join(word.capitalize() for word in words[1:])
        variations.extend([camel, camel[0].upper() + camel[1:]])
    return list(dict.fromkeys(variations))


def count_occurrences(term: str, text: str) -> int:
    if not term:
        return 0
    return len(re.findall(re.escape(term), text))


def keyword_score(query: str, text: str, title: str = "") -> float:
    """Score ``text`` for ``query`` by lexical overlap alone, in [0, 1)."""

    query_lower = query.lower().strip()
    if not query_lower or not text:
        return 0.0
    text_lower = text.lower()
    title_lower = title.lower()
    terms = query_lower.split()

    score = 0.0
    if query_lower in text_lower:
        score += 20

    if len(terms) > 1:
        present = sum(1 for term in terms if term in text_lower)
        if present == len(terms):
            score += 15
        elif present > len(terms) / 2:
            score += 10

    for term in terms:
        score += count_occurrences(term, text_lower) * 3
        if title_lower and term in title_lower:
            score += 5

    if len(terms) > 1:
        # camelCase variants only match the original casing
        for variation in term_variations(query_lower)[1:]:
            if variation in text or variation in text_lower:
                score += 1

    word_count = len(text.split())
    score = score / max(word_count / 200, 1)
    return score / (score + KEYWORD_SCORE_HALF_POINT)


def bm25_tokenize(text: str) -> List[str]:
    """Lowercased words longer than two characters."""

    return [word for word in extract_words(text) if len(word) > 2]


def bm25_scores(query: str, documents: Sequence[str]) -> List[float]:
    """Okapi BM25 of every document in ``documents`` for ``query``.

    The index is built over ``documents`` themselves, so IDF reflects that
    corpus. Scores are clipped at zero and divided by the best score, which
    puts the top match at 1.0 and everything else in proportion.
    """

    if not documents:
        return []
    query_tokens = bm25_tokenize(query)
    tokenized = [bm25_tokenize(document) for document in documents]
    if not query_tokens or not any(tokenized):
        return [0.0] * len(documents)

    index = BM25Okapi(tokenized, k1=BM25_K1, b=BM25_B)
    scores = np.clip(index.get_scores(query_tokens), 0.0, None)
    best = float(scores.max())
    if best <= 0.0:
        return [0.0] * len(documents)
    return [float(score) / best for score in scores]


def keyword_density(text: str, keywords: Sequence[str]) -> float:
    """Share of ``text`` made up of keyword occurrences, capped at 0.1."""

    words = text.lower().split()
    if not words:
        return 0.0
    text_lower = text.lower()
    matches = sum(count_occurrences(keyword.lower(), text_lower) for keyword in keywords if keyword)
    return min(matches / len(words), 0.1)


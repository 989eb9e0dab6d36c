"""Static vocabularies used by query analysis, expansion and ranking."""

from __future__ import annotations

from typing import Dict, FrozenSet, Tuple

from ..models import QueryType

SYNONYM_TABLE_VERSION = "2024.1"

STOPWORDS: FrozenSet[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does", "did",
        "will", "would", "could", "should", "may", "might", "must", "can", "this", "that", "these",
        "those", "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
    }
)

# Checked in this order; the first type with a matching cue wins.
QUERY_TYPE_CUES: Tuple[Tuple[QueryType, Tuple[str, ...]], ...] = (
    (QueryType.DEFINITION, ("what is", "what are", "define", "definition", "meaning of", "explain what")),
    (QueryType.HOW_TO, ("how to", "how do", "how can", "steps to", "process of", "way to")),
    (QueryType.COMPARISON, ("vs", "versus", "compare", "difference between", "better than", "advantages of")),
    (
        QueryType.TROUBLESHOOTING,
        ("error", "problem", "issue", "fix", "solve", "troubleshoot", "debug", "not working"),
    ),
    (QueryType.EXAMPLE, ("example", "sample", "instance", "case", "show me", "demonstrate")),
)

SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "connect": ("integration", "setup", "configure", "link", "establish"),
    "data": ("information", "dataset", "records"),
    "catalog": ("directory", "registry", "inventory"),
    "governance": ("management", "control", "oversight"),
    "security": ("protection", "safety", "privacy"),
    "analytics": ("analysis", "insights", "metrics"),
    "dashboard": ("interface", "panel", "console"),
    "api": ("interface", "endpoint", "service"),
    "database": ("db", "data store", "repository"),
    "table": ("dataset", "collection", "entity"),
    "column": ("field", "attribute", "property"),
    "query": ("search", "request", "question"),
    "user": ("person", "account", "profile"),
    "role": ("permission", "access", "privilege"),
    "admin": ("administrator", "manager", "supervisor"),
    "config": ("configuration", "settings", "setup"),
    "deploy": ("deployment", "release", "publish"),
    "monitor": ("tracking", "observability", "alerting"),
    "alert": ("notification", "warning", "alarm"),
}

SYNONYMS_PER_KEYWORD = 2

TYPE_BOOST_TERMS: Dict[QueryType, Tuple[str, ...]] = {
    QueryType.DEFINITION: ("what is", "meaning", "explanation"),
    QueryType.HOW_TO: ("steps", "process", "procedure", "tutorial"),
    QueryType.TROUBLESHOOTING: ("error", "issue", "problem", "fix", "solution"),
    QueryType.COMPARISON: ("vs", "versus", "difference", "compare"),
}

# Passage cues that earn the per-type ranking boost, with the boost factor.
TYPE_CONTENT_BOOSTS: Dict[QueryType, Tuple[Tuple[str, ...], float]] = {
    QueryType.DEFINITION: (("is", "means", "refers to", "definition", "defined as"), 1.4),
    QueryType.HOW_TO: (("step", "process", "procedure", "tutorial", "guide", "instructions"), 1.3),
    QueryType.TROUBLESHOOTING: (("error", "issue", "problem", "fix", "resolve", "debug"), 1.35),
    QueryType.COMPARISON: (("vs", "versus", "compare", "difference", "better", "advantages"), 1.25),
    QueryType.EXAMPLE: (("example", "sample", "demo", "for instance", "such as"), 1.2),
}

HOW_TO_ACTION_WORDS = ("create", "build", "configure", "setup", "install")

# First match only, in this order.
CONTENT_TYPE_BOOSTS: Tuple[Tuple[str, float], ...] = (
    ("getting-started", 1.15),
    ("quick-start", 1.15),
    ("tutorial", 1.1),
    ("guide", 1.1),
    ("reference", 1.05),
    ("api", 1.05),
    ("troubleshooting", 1.1),
    ("faq", 1.05),
    ("examples", 1.08),
    ("best-practices", 1.08),
)

# Title words / URL fragments aligned with each query type.
QUERY_TYPE_URL_BOOSTS: Dict[QueryType, Tuple[Tuple[str, ...], Tuple[str, ...], float]] = {
    QueryType.HOW_TO: (("setup", "configure", "install"), ("/setup/", "/configuration/", "/install/"), 1.2),
    QueryType.TROUBLESHOOTING: (("error", "troubleshoot", "debug"), ("/troubleshooting/", "/errors/"), 1.25),
    QueryType.DEFINITION: (("overview", "introduction", "concepts"), ("/concepts/", "/overview/"), 1.15),
}

PROBLEM_WORDS = ("error", "problem", "issue", "fix", "solve", "troubleshoot", "debug")

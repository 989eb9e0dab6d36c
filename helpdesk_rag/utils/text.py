"""Small text and URL helpers shared by the ranking components."""

from __future__ import annotations

import re
from typing import List, Set
from urllib.parse import urlparse

_NON_WORD = re.compile(r"[^\w\s]")

# Known documentation domains and the brand they belong to.
BRAND_MAP = {
    "docs.atlan.com": "Atlan",
    "docs.snowflake.com": "Snowflake",
    "docs.databricks.com": "Databricks",
}

_GENERIC_LABELS = ("www", "api", "app", "portal", "admin")


def extract_words(text: str) -> List[str]:
    """Lowercase ``text``, blank out punctuation and split on whitespace."""

    return _NON_WORD.sub(" ", text.lower()).split()


def token_set(text: str) -> Set[str]:
    """Return the set of words longer than two characters."""

    return {word for word in extract_words(text) if len(word) > 2}


def jaccard_similarity(first: Set[str], second: Set[str]) -> float:
    union = first | second
    if not union:
        return 0.0
    return len(first & second) / len(union)


def extract_domain(url: str | None) -> str:
    """Return the hostname of ``url``, or ``"unknown"`` when it has none."""

    if not url:
        return "unknown"
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "unknown"
    return hostname or "unknown"


def extract_url_path(url: str | None) -> str:
    """Return the URL path without query string or trailing slash."""

    if not url:
        return ""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url.split("?", 1)[0]
    if not parsed.scheme:
        return url.split("?", 1)[0]
    path = parsed.path.rstrip("/") or "/"
    return f"{parsed.netloc}{path}"


def extract_brand_name(url: str | None) -> str:
    """Map a source URL to the brand that publishes it."""

    domain = extract_domain(url)
    if domain == "unknown":
        return domain

    if domain in BRAND_MAP:
        return BRAND_MAP[domain]

    parts = domain.split(".")
    if domain.startswith("docs.") and len(parts) > 1:
        return parts[1].capitalize()

    if len(parts) > 1:
        for part in parts:
            if part not in _GENERIC_LABELS and len(part) > 2:
                return part.capitalize()

    return domain.capitalize()

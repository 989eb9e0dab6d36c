"""Tests for citation building."""

from datetime import datetime, timezone

import pytest

from helpdesk_rag.models import CitationReport
from helpdesk_rag.retrieval.analyzer import QueryAnalyzer
from helpdesk_rag.retrieval.citations import (
    EMPTY_EXCERPT,
    CitationBuilder,
    citation_domain,
    generate_excerpt,
    generate_highlights,
    match_type,
    source_type,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def builder():
    return CitationBuilder(clock=lambda: NOW)


def test_empty_results_give_zeroed_report(builder):
    report = builder.build_citations([], "anything", QueryAnalyzer().analyze("anything"))

    assert report.citations == []
    assert report.summary.total_sources == 0
    assert report.summary.confidence == 0
    assert report.summary.coverage == 0
    assert report.to_dict()["summary"]["total_sources"] == 0


@pytest.mark.parametrize(
    "url, kind, domain",
    [
        ("https://docs.atlan.com/a", "documentation", "docs.atlan.com"),
        ("https://github.com/org/repo", "code_repository", "github.com"),
        ("https://stackoverflow.com/q/1", "community", "stackoverflow.com"),
        ("https://www.medium.com/@a/post", "article", "medium.com"),
        ("file:///tmp/runbook.md", "uploaded_file", "Local File"),
        ("https://www.example.com/page", "web_page", "example.com"),
    ],
)
def test_source_type_and_domain(url, kind, domain):
    assert source_type(url) == kind
    assert citation_domain(url) == domain


def test_excerpt_centers_on_query_words():
    text = ("filler words only here " * 20) + "the warehouse resize setting lives in admin. " + ("more filler " * 20)

    excerpt = generate_excerpt(text, "warehouse resize")

    assert "warehouse resize" in excerpt
    assert len(excerpt) <= 203
    assert excerpt.endswith("...")


def test_excerpt_edge_cases():
    assert generate_excerpt("", "q") == EMPTY_EXCERPT
    assert generate_excerpt("   ", "q") == EMPTY_EXCERPT
    assert generate_excerpt("short text", "q") == "short text"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("How to resize a warehouse quickly", "exact_match"),
        ("Warehouse settings let you resize", "all_words_match"),
        ("You can resize compute", "partial_match"),
        ("Clusters run jobs", "semantic_match"),
    ],
)
def test_match_type(text, expected):
    assert match_type(text, "resize a warehouse") == expected


def test_highlights_sorted_by_position():
    highlights = generate_highlights("Resize the warehouse, then resize again", "warehouse resize")

    assert [(h.word, h.position) for h in highlights] == [("Resize", 0), ("warehouse", 11), ("resize", 27)]


def test_citations_sorted_by_confidence(builder, make_result):
    analysis = QueryAnalyzer().analyze("What is a warehouse?")
    results = [
        make_result("weak", "Clusters run nightly jobs", 0.6, url="https://docs.databricks.com/jobs"),
        make_result(
            "strong",
            "A warehouse is a cluster of compute resources",
            0.5,
            url="https://docs.snowflake.com/warehouses",
            created_at="2024-05-20T00:00:00Z",
        ),
    ]

    report = builder.build_citations(results, "What is a warehouse?", analysis)

    assert [c.id for c in report.citations] == ["citation_1_strong", "citation_0_weak"]
    strong = report.citations[0]
    assert strong.position == 2
    assert strong.total_results == 2
    assert strong.source.type == "documentation"
    assert strong.relevance.match_type == "partial_match"
    assert "warehouse" in strong.relevance.keywords
    assert 0.0 <= strong.confidence <= 1.0
    assert strong.context.section == "general"

    summary = report.summary
    assert summary.total_sources == 2
    assert summary.unique_domains == 2
    assert summary.source_types == {"documentation": 2}
    assert summary.coverage == pytest.approx(0.5)
    assert [source["title"] for source in summary.top_sources] == ["Guide", "Guide"]


def test_confidence_is_clamped(builder, make_result):
    analysis = QueryAnalyzer().analyze("warehouse resize credits")
    result = make_result("r", "warehouse resize credits step process", 0.99, created_at="2024-05-31T00:00:00Z")

    assert builder.confidence(result, "warehouse resize credits", analysis) == 1.0


def test_context_block(builder):
    analysis = QueryAnalyzer().analyze("error connecting to database")

    context = builder.context(
        "Error codes explained. See also network settings, and related to firewall rules.", analysis
    )

    assert context.section == "troubleshooting"
    assert context.topic == "Error codes explained"
    assert context.related_concepts == ["firewall rules", "network settings"]
    assert context.query_relevance == pytest.approx(0.5)


def test_stats_accumulate(builder, make_result):
    analysis = QueryAnalyzer().analyze("warehouse")
    results = [make_result("a", "warehouse text", 0.5, url="https://docs.snowflake.com/a")]

    builder.build_citations(results, "warehouse", analysis)
    builder.build_citations(results, "warehouse", analysis)

    assert builder.stats() == {
        "total_citations": 2,
        "unique_sources": 1,
        "citation_types": {"documentation": 2},
    }


def test_report_serializes():
    assert CitationReport().to_dict() == {
        "citations": [],
        "summary": {
            "total_sources": 0,
            "unique_domains": 0,
            "confidence": 0.0,
            "coverage": 0.0,
            "source_types": {},
            "top_sources": [],
        },
    }

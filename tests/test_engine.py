"""End-to-end tests for the retrieval facade using the hashing embedder."""

import asyncio
from collections import Counter
from unittest.mock import AsyncMock

import numpy as np
import pytest

from helpdesk_rag.config import RAGSettings
from helpdesk_rag.errors import EmbeddingError
from helpdesk_rag.models import Document
from helpdesk_rag.retrieval.engine import RAGEngine, chunk_id
from helpdesk_rag.utils.text import extract_brand_name, extract_domain


@pytest.fixture
async def engine(settings, embedder, documents):
    engine = RAGEngine(settings, embedder)
    await engine.initialize()
    total, errors = await engine.add_documents(documents)
    assert (total, errors) == (3, [])
    return engine


def _assert_ranked(results):
    scores = [result.similarity for result in results]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= score <= 1.0 for score in scores)


class TestIngestion:
    @pytest.mark.asyncio
    async def test_chunk_ids_are_deterministic(self, engine, documents):
        ids = {chunk.id for chunk in engine.backends.fallback.iter_chunks()}

        assert ids == {chunk_id(document.url, 0) for document in documents}

    @pytest.mark.asyncio
    async def test_empty_document_adds_nothing(self, engine):
        assert await engine.add_document(Document(url="https://x.io/empty", title="Empty", content="  ")) == 0

    @pytest.mark.asyncio
    async def test_failures_are_collected(self, engine, embedder):
        embedder.fail = True

        total, errors = await engine.add_documents(
            [Document(url="https://x.io/a", title="Broken", content="This page cannot be embedded right now.")]
        )

        assert total == 0
        assert errors[0]["document"] == "Broken"

    @pytest.mark.asyncio
    async def test_reindex_replaces_chunks(self, engine, documents):
        updated = Document(
            url=documents[1].url,
            title=documents[1].title,
            content="Warehouses can now suspend automatically after five idle minutes.",
        )

        assert await engine.reindex_document(updated) == 1

        chunks = engine.backends.fallback.iter_chunks()
        assert len(chunks) == 3
        texts = [chunk.text for chunk in chunks if chunk.metadata.source_url == updated.url]
        assert texts == ["Warehouses can now suspend automatically after five idle minutes"]


class TestSearch:
    @pytest.mark.asyncio
    async def test_repeated_search_served_from_cache(self, engine, embedder):
        first = await engine.search("what is Atlan?", "hybrid", source_filter="all")
        calls = embedder.calls

        second = await engine.search("what is Atlan?", "hybrid", source_filter="all")

        assert first
        assert embedder.calls == calls
        assert [(r.id, r.similarity) for r in second] == [(r.id, r.similarity) for r in first]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", ["semantic", "keyword", "hybrid", "contextual", "auto"])
    async def test_results_sorted_and_bounded(self, engine, strategy):
        for query in ("what is Atlan?", "error connecting to database", "resize a warehouse", "data catalog"):
            results = await engine.search(query, strategy)
            _assert_ranked(results)
            domains = Counter(extract_domain(result.metadata.source_url) for result in results)
            assert all(count <= 2 for count in domains.values())

    @pytest.mark.asyncio
    async def test_source_filter(self, engine):
        results = await engine.search("warehouse", "keyword", source_filter="Snowflake")

        assert results
        assert {extract_brand_name(result.metadata.source_url) for result in results} == {"Snowflake"}

    @pytest.mark.asyncio
    async def test_contextual_search_with_history(self, engine):
        history = [{"role": "user", "content": "We use Databricks clusters with expired tokens"}]

        results = await engine.search("how do I fix it?", "contextual", history=history)

        _assert_ranked(results)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", None, 42])
    async def test_invalid_query_returns_empty(self, engine, query):
        assert await engine.search(query) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("top_k", [0, -1])
    async def test_non_positive_top_k_returns_empty(self, engine, top_k):
        assert await engine.search("warehouse", "keyword", top_k=top_k) == []
        assert await engine.search("warehouse", "semantic", top_k=top_k) == []

    @pytest.mark.asyncio
    async def test_top_k_limits_results(self, engine):
        assert len(await engine.search("warehouse", "keyword", top_k=1)) <= 1

    @pytest.mark.asyncio
    async def test_slow_embedding_times_out_to_empty(self, embedder, documents):
        engine = RAGEngine(RAGSettings(embedding_timeout=0.05), embedder)
        await engine.add_documents(documents)

        async def slow_embed(texts):
            await asyncio.sleep(1)
            return np.zeros((len(texts), embedder.dim), dtype=np.float32)

        embedder.embed = slow_embed

        assert await engine.search("which tokens expire first?", "semantic") == []

    @pytest.mark.asyncio
    async def test_concurrent_searches_match_sequential_runs(self, settings, embedder, documents):
        queries = ("what is Atlan?", "error connecting to database", "resize a warehouse", "data catalog", "expired tokens")
        requests = [
            (query, strategy)
            for query in queries
            for strategy in ("semantic", "keyword", "hybrid")
        ]
        sequential_engine = RAGEngine(settings, embedder)
        concurrent_engine = RAGEngine(settings, embedder)
        await sequential_engine.add_documents(documents)
        await concurrent_engine.add_documents(documents)

        sequential = [await sequential_engine.search(query, strategy) for query, strategy in requests]
        concurrent = await asyncio.gather(*(concurrent_engine.search(query, strategy) for query, strategy in requests))

        for expected, actual in zip(sequential, concurrent):
            _assert_ranked(actual)
            assert [(r.id, r.similarity) for r in actual] == [(r.id, r.similarity) for r in expected]

    @pytest.mark.asyncio
    async def test_unknown_strategy_returns_empty(self, engine):
        assert await engine.search("warehouse", "telepathy") == []

    @pytest.mark.asyncio
    async def test_empty_knowledge_base(self, settings, embedder):
        engine = RAGEngine(settings, embedder)

        assert await engine.search("what is Atlan?") == []
        assert embedder.calls == 0

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self, engine, embedder):
        embedder.fail = True

        with pytest.raises(EmbeddingError):
            await engine.search("which tokens expire first?")

    @pytest.mark.asyncio
    async def test_broken_external_backend_degrades_to_memory(self, settings, embedder, documents):
        external = AsyncMock()
        external.name = "qdrant"
        external.initialize.side_effect = ConnectionError("connection refused")
        engine = RAGEngine(settings, embedder, external=external)

        await engine.add_documents(documents)
        results = await engine.search("what is Atlan?")

        assert results
        _assert_ranked(results)
        stats = await engine.get_stats()
        assert stats["backend_in_use"] == "memory"
        assert stats["backend_error"] == "connection refused"
        external.search_vectors.assert_not_called()

    @pytest.mark.asyncio
    async def test_clear_knowledge_base(self, engine):
        await engine.clear_knowledge_base()

        assert await engine.search("what is Atlan?") == []
        assert (await engine.get_stats())["total_chunks"] == 0


class TestPresentation:
    def test_build_context_respects_budget(self, make_result):
        results = [make_result("a", "a" * 100, 0.9), make_result("b", "b" * 100, 0.8)]

        context = RAGEngine.build_context(results, max_tokens=40)

        assert context == "Source: Guide (https://docs.atlan.com/guide)\n" + "a" * 100
        assert RAGEngine.build_context(results, max_tokens=74).count("Source:") == 2
        assert RAGEngine.build_context([], max_tokens=100) == ""

    def test_source_citations_group_by_url(self, make_result):
        results = [
            make_result("a1", "first chunk", 0.7, url="https://docs.atlan.com/a"),
            make_result("a2", "second chunk", 0.9, url="https://docs.atlan.com/a"),
            make_result("s", "snowflake chunk", 0.8, url="https://docs.snowflake.com/s"),
        ]

        sources = RAGEngine.generate_source_citations(results)

        assert [(s["url"], s["similarity"], s["chunks"]) for s in sources] == [
            ("https://docs.atlan.com/a", 0.9, 2),
            ("https://docs.snowflake.com/s", 0.8, 1),
        ]

    @pytest.mark.asyncio
    async def test_generate_citations(self, engine):
        results = await engine.search("what is Atlan?")

        report = engine.generate_citations(results, "what is Atlan?")

        assert report.summary.total_sources == len(results)
        assert engine.generate_citations([], "anything").citations == []

    @pytest.mark.asyncio
    async def test_available_sources_grouped_by_brand(self, engine):
        sources = await engine.get_available_sources()

        assert [source.title for source in sources] == ["Atlan", "Databricks", "Snowflake"]
        assert sources[0].pages == ["What is Atlan"]
        assert sources[0].domain == "docs.atlan.com"
        assert all(source.chunk_count == 1 for source in sources)

    @pytest.mark.asyncio
    async def test_clear_configured_sources_keeps_uploads(self, engine):
        upload = Document(
            url="file:///tmp/runbook.md",
            title="runbook",
            content="Rotate the service account key every ninety days.",
            is_manually_added=True,
        )
        await engine.add_document(upload)

        removed = await engine.clear_configured_sources()

        assert removed == 3
        remaining = engine.backends.fallback.iter_chunks()
        assert [chunk.metadata.source_url for chunk in remaining] == ["file:///tmp/runbook.md"]

    @pytest.mark.asyncio
    async def test_stats(self, engine):
        stats = await engine.get_stats()

        assert stats["total_chunks"] == 3
        assert stats["total_sources"] == 3
        assert stats["chunk_size"] == 500
        assert stats["backend_in_use"] == "memory"
        assert stats["embedding_stats"]["model"] == "hashing-test"

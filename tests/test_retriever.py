"""Tests for strategy selection, thresholds and the individual strategies."""

from unittest.mock import AsyncMock

import numpy as np
import pytest

from helpdesk_rag.config import RAGSettings
from helpdesk_rag.errors import EmbeddingError
from helpdesk_rag.models import QueryAnalysis, QueryType, SearchStrategy
from helpdesk_rag.retrieval.analyzer import QueryAnalyzer
from helpdesk_rag.retrieval.lexical import bm25_scores, keyword_score, term_variations
from helpdesk_rag.retrieval.retriever import MultiStrategyRetriever
from helpdesk_rag.storage.backend import VectorBackendSelector
from helpdesk_rag.storage.cache import EmbeddingCache
from helpdesk_rag.storage.vector_store import InMemoryVectorIndex


EXACT = "If you see an error connecting to database clusters, check the credentials."
SCATTERED = "The database stores rows. Connecting users is easy. An error page appears. Go to settings."
UNRELATED = "Dashboards summarize warehouse credit usage for each team."


class FixedEmbedder:
    """Embeds every text to the same unit vector."""

    model_name = "fixed"

    def __init__(self, vector):
        self.vector = np.asarray(vector, dtype=np.float32)

    async def embed(self, texts):
        return np.vstack([self.vector for _ in texts])


def _retriever(embedder, settings=None, external=None):
    settings = settings or RAGSettings()
    backends = VectorBackendSelector(InMemoryVectorIndex(), external)
    return MultiStrategyRetriever(backends, EmbeddingCache(embedder), settings)


@pytest.fixture
def analyzer():
    return QueryAnalyzer()


@pytest.fixture
async def populated(embedder, make_chunk):
    retriever = _retriever(embedder)
    await retriever.backends.initialize()
    texts = [EXACT, SCATTERED, UNRELATED]
    vectors = await embedder.embed(texts)
    await retriever.backends.fallback.upsert(
        [
            make_chunk("exact", EXACT, vector=vectors[0], url="https://docs.databricks.com/errors"),
            make_chunk("scattered", SCATTERED, vector=vectors[1], url="https://docs.snowflake.com/db"),
            make_chunk("unrelated", UNRELATED, vector=vectors[2], url="https://docs.atlan.com/usage"),
        ]
    )
    return retriever


class TestThresholds:
    def test_ceiling_caps_adjusted_threshold(self, embedder, analyzer):
        retriever = _retriever(embedder)

        assert retriever.adjust_threshold(analyzer.analyze("What is Snowflake?")) == pytest.approx(0.3)

    def test_adjustments_without_ceiling(self, embedder, analyzer):
        retriever = _retriever(embedder, RAGSettings(threshold_ceiling=1.0))

        short_definition = analyzer.analyze("What is Snowflake?")
        assert retriever.adjust_threshold(short_definition) == pytest.approx(0.45)

        comparison = analyzer.analyze("compare snowflake warehouses with databricks clusters for batch jobs")
        # 0.7 base, +0.05 comparison, +0.05 for more than three keywords
        assert retriever.adjust_threshold(comparison) == pytest.approx(0.8)

    def test_threshold_is_clamped(self, embedder):
        retriever = _retriever(embedder, RAGSettings(similarity_threshold=1.0, threshold_ceiling=1.0))
        analysis = QueryAnalysis(
            original="x " * 12,
            type=QueryType.COMPARISON,
            keywords=["a", "b", "c", "d"],
            word_count=12,
        )

        assert retriever.adjust_threshold(analysis) == pytest.approx(0.95)

    @pytest.mark.parametrize("threshold, expected", [(0.3, 0.2), (0.15, 0.15), (0.7, 0.5)])
    def test_fallback_threshold(self, threshold, expected):
        assert MultiStrategyRetriever.fallback_threshold(threshold) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "query, expected",
        [
            ("What is Snowflake?", SearchStrategy.SEMANTIC),
            ("How to configure SSO", SearchStrategy.HYBRID),
            ("error connecting to database", SearchStrategy.KEYWORD),
            ("warehouse credits", SearchStrategy.SEMANTIC),
            ("which warehouse size should our analytics team pick for nightly loads", SearchStrategy.HYBRID),
        ],
    )
    def test_auto_strategy(self, analyzer, query, expected):
        assert MultiStrategyRetriever.resolve_strategy("auto", analyzer.analyze(query)) is expected

    def test_explicit_strategy_is_kept(self, analyzer):
        analysis = analyzer.analyze("What is Snowflake?")

        assert MultiStrategyRetriever.resolve_strategy("keyword", analysis) is SearchStrategy.KEYWORD


class TestLexicalScoring:
    def test_term_variations(self):
        assert term_variations("auto loader") == ["auto loader", "auto-loader", "auto_loader", "autoLoader", "AutoLoader"]

    def test_exact_phrase_beats_scattered_words(self):
        query = "error connecting to database"

        assert keyword_score(query, EXACT) > keyword_score(query, SCATTERED) > 0
        assert keyword_score(query, UNRELATED) == 0.0

    def test_bm25_separates_strong_and_weak_matches(self):
        filler = [f"Team {i} reviews quarterly dashboards for finance reporting" for i in range(48)]
        weak = "Snowflake pricing depends on the edition chosen for the account."
        strong = (
            "Configure the Snowflake warehouse connection timeout. The warehouse connection "
            "timeout setting in Snowflake lets you configure retries."
        )

        scores = bm25_scores("configure snowflake warehouse connection timeout", filler + [weak, strong])

        assert scores[-1] == 1.0
        assert 0.0 < scores[-2] < scores[-1]
        assert set(scores[:-2]) == {0.0}

    def test_bm25_edge_cases(self):
        assert bm25_scores("database", []) == []
        assert bm25_scores("", [EXACT, SCATTERED]) == [0.0, 0.0]
        assert all(score >= 0.0 for score in bm25_scores("database", [EXACT]))


class TestStrategies:
    @pytest.mark.asyncio
    async def test_keyword_search_ranks_exact_phrase_first(self, populated, analyzer):
        query = "error connecting to database"
        analysis = analyzer.analyze(query)
        assert analysis.type is QueryType.TROUBLESHOOTING

        results = populated.keyword_search(query, analysis, top_k=5)

        assert [result.id for result in results] == ["exact", "scattered"]
        assert all(0.0 <= result.similarity <= 1.0 for result in results)

    @pytest.mark.asyncio
    async def test_hybrid_blends_scores(self, populated, analyzer):
        query = "error connecting to database"

        results = await populated.hybrid_search(query, analyzer.analyze(query), top_k=5)

        assert results
        assert results[0].id == "exact"
        for result in results:
            assert result.bm25_score is not None
            assert 0.0 <= result.similarity <= 1.0
        scores = [result.similarity for result in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_semantic_search_uses_vectors(self, populated, analyzer):
        results = await populated.semantic_search(
            "dashboards summarize warehouse credit usage", analyzer.analyze("dashboards"), top_k=3, threshold=0.5
        )

        assert results[0].id == "unrelated"

    @pytest.mark.asyncio
    async def test_contextual_query_includes_history(self, populated):
        history = [{"role": "user", "content": "Our Databricks clusters keep failing"}]

        assert populated.enhance_query_with_context("why?", history) == "why? Databricks clusters keep failing"
        assert populated.enhance_query_with_context("why?", []) == "why?"

    @pytest.mark.asyncio
    async def test_empty_primary_retries_with_fallback(self, make_chunk, analyzer):
        retriever = _retriever(FixedEmbedder([0, 1, 0]))
        await retriever.backends.initialize()
        await retriever.backends.fallback.upsert(
            [make_chunk("exact", EXACT, vector=[1, 0, 0]), make_chunk("other", UNRELATED, vector=[1, 0, 0])]
        )
        query = "error connecting to database"

        assert await retriever.execute(query, SearchStrategy.SEMANTIC, analyzer.analyze(query), top_k=5) == []
        results = await retriever.retrieve(query, SearchStrategy.SEMANTIC, analyzer.analyze(query), top_k=5)

        assert [result.id for result in results] == ["exact"]
        assert retriever.fallback_strategy() is SearchStrategy.KEYWORD

    @pytest.mark.asyncio
    async def test_rerank_records_diagnostics(self, populated, analyzer):
        query = "error connecting to database"
        analysis = analyzer.analyze(query)
        results = await populated.hybrid_search(query, analysis, top_k=5)

        reranked = await populated.rerank(results, query, "error connecting database issue problem fix", analysis)

        assert {result.id for result in reranked} == {result.id for result in results}
        for result in reranked:
            assert result.original_similarity is not None
            assert result.position_boost == 1.0
            assert 0.0 <= result.similarity <= 1.0


class TestExternalBackend:
    @pytest.mark.asyncio
    async def test_keyword_search_is_unavailable(self, embedder, analyzer):
        external = AsyncMock()
        external.name = "qdrant"
        retriever = _retriever(embedder, external=external)
        await retriever.backends.initialize()

        assert retriever.keyword_search("error", analyzer.analyze("error"), top_k=5) == []
        assert retriever.fallback_strategy() is SearchStrategy.SEMANTIC

    @pytest.mark.asyncio
    async def test_failing_external_search_degrades_to_empty(self, embedder, analyzer):
        external = AsyncMock()
        external.name = "qdrant"
        external.search_vectors.side_effect = RuntimeError("collection missing")
        retriever = _retriever(embedder, external=external)
        await retriever.backends.initialize()

        results = await retriever.semantic_search("warehouses", analyzer.analyze("warehouses"), top_k=5)

        assert results == []


@pytest.mark.asyncio
async def test_unexpected_embedding_errors_are_wrapped(analyzer):
    class BrokenEmbedder:
        model_name = "broken"

        async def embed(self, texts):
            raise RuntimeError("socket closed")

    retriever = _retriever(BrokenEmbedder())

    with pytest.raises(EmbeddingError):
        await retriever.embed("anything")

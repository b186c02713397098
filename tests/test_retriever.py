"""
Unit tests for longmem.retrieval.retriever module

Tests candidate fusion, scoring stages, reranking fallbacks and configuration
handling of MemoryRetriever.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from longmem.config import RerankConfig, RerankMode, RetrievalConfig, RetrievalMode
from longmem.core import MemoryEntry, MemorySearchResult, VendorError
from longmem.persistence import MemoryStore
from longmem.retrieval import CrossEncoderReranker, MemoryRetriever, create_retriever

from conftest import make_draft, unit_vector

SCENARIO = [
    "The project uses PostgreSQL as its primary database",
    "User prefers vim keybindings in the editor",
    "The team is planning a GraphQL API migration",
]


def search_result(memory_id: str, score: float, text: str = "A substantive memory entry", vector=None):
    entry = MemoryEntry(id=memory_id, text=text, vector=vector or unit_vector(0))
    return MemorySearchResult(entry=entry, score=score)


def mock_store(vector_hits=None, bm25_hits=None, has_fts=True):
    store = MagicMock(spec=MemoryStore)
    store.has_fts_support = has_fts
    store.vector_search = AsyncMock(return_value=vector_hits or [])
    store.bm25_search = AsyncMock(return_value=bm25_hits or [])
    return store


def rerank_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def seed_scenario(store):
    entries = []
    for text in SCENARIO:
        entries.append(await store.store(make_draft(text)))
    return entries


class TestRetrieverScenario:
    """End-to-end retrieval against a real store"""

    @pytest.mark.asyncio
    async def test_database_query_ranks_postgresql_first(self, memory_store, keyword_embedder):
        """Test the PostgreSQL memory answers a database question"""
        await seed_scenario(memory_store)
        retriever = MemoryRetriever(memory_store, keyword_embedder)

        results = await retriever.retrieve("What database is used?", 3, ["global"])

        assert results
        assert "PostgreSQL" in results[0].entry.text
        assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)
        assert results[0].sources.vector is not None
        assert results[0].sources.bm25 is not None
        assert results[0].sources.fused is not None

    @pytest.mark.asyncio
    async def test_vector_mode_skips_keyword_search(self, memory_store, keyword_embedder):
        """Test vector mode never reports keyword sources"""
        await seed_scenario(memory_store)
        retriever = MemoryRetriever(memory_store, keyword_embedder, RetrievalConfig(mode="vector"))

        results = await retriever.retrieve("What database is used?", 3)

        assert "PostgreSQL" in results[0].entry.text
        assert all(r.sources.bm25 is None for r in results)

    @pytest.mark.asyncio
    async def test_scope_filter_hides_other_scopes(self, memory_store, keyword_embedder):
        """Test retrieval only sees accessible scopes"""
        await memory_store.store(make_draft("Agent b uses PostgreSQL database", scope="agent:b"))
        retriever = MemoryRetriever(memory_store, keyword_embedder)

        assert await retriever.retrieve("What database is used?", 3, ["global", "agent:a"]) == []

    @pytest.mark.asyncio
    async def test_category_filter(self, memory_store, keyword_embedder):
        """Test category filter drops other categories"""
        await memory_store.store(make_draft("The project uses PostgreSQL database", category="fact"))
        await memory_store.store(make_draft("We decided on PostgreSQL database", category="decision"))
        retriever = MemoryRetriever(memory_store, keyword_embedder)

        results = await retriever.retrieve("What database is used?", 5, category="decision")

        assert [r.entry.category.value for r in results] == ["decision"]

    @pytest.mark.asyncio
    async def test_noise_entries_filtered(self, memory_store, keyword_embedder):
        """Test denial text never comes back"""
        await memory_store.store(make_draft("I don't have any information about the database"))
        retriever = MemoryRetriever(memory_store, keyword_embedder)

        assert await retriever.retrieve("What database is used?", 3) == []

        retriever.update_config(filter_noise=False)
        assert len(await retriever.retrieve("What database is used?", 3)) == 1


class TestRetrieverPipeline:
    """Pipeline behavior with a mocked store"""

    @pytest.mark.asyncio
    async def test_limit_clamped_and_pool_size(self, keyword_embedder):
        """Test limit is clamped and the candidate pool covers twice the limit"""
        store = mock_store()
        retriever = MemoryRetriever(store, keyword_embedder, RetrievalConfig(candidate_pool_size=20))

        await retriever.retrieve("What database is used?", limit=500)

        args = store.vector_search.call_args.args
        assert args[1] == 40
        assert store.bm25_search.call_args.args[1] == 40

    @pytest.mark.asyncio
    async def test_no_fts_support_uses_vector_only(self, keyword_embedder):
        """Test keyword search is skipped when the store lacks it"""
        store = mock_store(has_fts=False)
        retriever = MemoryRetriever(store, keyword_embedder)

        await retriever.retrieve("What database is used?")

        store.bm25_search.assert_not_called()

    @pytest.mark.asyncio
    async def test_keyword_failure_is_absorbed(self, keyword_embedder):
        """Test a keyword search error falls back to vector results"""
        store = mock_store(vector_hits=[search_result("a", 0.9)])
        store.bm25_search = AsyncMock(side_effect=RuntimeError("fts broken"))
        retriever = MemoryRetriever(store, keyword_embedder, RetrievalConfig(rerank="none"))

        results = await retriever.retrieve("What database is used?")

        assert [r.entry.id for r in results] == ["a"]

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self):
        """Test query embedding errors abort retrieval"""
        embedder = MagicMock()
        embedder.embed_query = AsyncMock(side_effect=VendorError("embedding down", status=503))
        store = mock_store()
        retriever = MemoryRetriever(store, embedder)

        with pytest.raises(VendorError):
            await retriever.retrieve("What database is used?")
        store.vector_search.assert_not_called()

    @pytest.mark.asyncio
    async def test_hard_min_score_gate(self, keyword_embedder):
        """Test weak candidates are dropped after scoring"""
        store = mock_store(vector_hits=[search_result("weak", 0.31)])
        config = RetrievalConfig(rerank="none", recency_weight=0.0, hard_min_score=0.35)
        retriever = MemoryRetriever(store, keyword_embedder, config)

        assert await retriever.retrieve("What database is used?") == []

    def test_dual_hit_fuses_above_single_hit(self):
        """Test an entry found by both searches outranks a single-source hit"""
        config = RetrievalConfig()
        vector_hits = [search_result("both", 0.6), search_result("vector-only", 0.6)]
        bm25_hits = [search_result("both", 0.55)]

        fused = MemoryRetriever._fuse(vector_hits, bm25_hits, config)

        assert fused[0].entry.id == "both"
        assert fused[0].score == pytest.approx(0.7)
        assert fused[0].sources.fused.score == pytest.approx(0.7)
        assert fused[1].entry.id == "vector-only"
        assert fused[1].score == pytest.approx(0.6)
        assert fused[1].sources.fused is None

    def test_bm25_only_hit_keeps_its_score(self):
        """Test keyword-only hits keep their normalized score"""
        fused = MemoryRetriever._fuse([], [search_result("kw", 0.62)], RetrievalConfig())

        assert fused[0].score == pytest.approx(0.62)
        assert fused[0].sources.vector is None
        assert fused[0].sources.bm25.rank == 1

    @pytest.mark.asyncio
    async def test_near_duplicate_demoted(self, keyword_embedder):
        """Test a distinct entry outranks a near-duplicate of the top hit"""
        hits = [
            search_result("top", 0.95, vector=unit_vector(0)),
            search_result("dup", 0.90, vector=[0.999, 0.04, 0, 0, 0, 0, 0, 0]),
            search_result("distinct", 0.88, vector=unit_vector(1)),
        ]
        store = mock_store(vector_hits=hits, has_fts=False)
        config = RetrievalConfig(rerank="none", recency_weight=0.0, time_decay_half_life_days=0)
        retriever = MemoryRetriever(store, keyword_embedder, config)

        results = await retriever.retrieve("What database is used?", 3)

        assert [r.entry.id for r in results] == ["top", "distinct", "dup"]
        assert all(r.score > 0 for r in results)


class TestRetrieverRerank:
    """Test lightweight and cross-encoder reranking"""

    @pytest.mark.asyncio
    async def test_lightweight_rerank_sets_source(self, memory_store, keyword_embedder):
        """Test cosine rerank records its similarity"""
        await seed_scenario(memory_store)
        retriever = MemoryRetriever(memory_store, keyword_embedder, RetrievalConfig(rerank="lightweight"))

        results = await retriever.retrieve("What database is used?", 3)

        assert results[0].sources.reranked is not None
        assert results[0].sources.reranked.score > 0.9

    @pytest.mark.asyncio
    async def test_cross_encoder_blends_scores(self, memory_store, keyword_embedder):
        """Test vendor relevance is blended and omitted candidates demoted"""
        await seed_scenario(memory_store)
        requests = []

        def handler(request):
            body = json.loads(request.content)
            requests.append(body)
            return httpx.Response(200, json={"data": [{"index": 0, "relevance_score": 0.95}]})

        reranker = CrossEncoderReranker(RerankConfig(api_key="test-key"), client=rerank_client(handler))
        retriever = MemoryRetriever(memory_store, keyword_embedder, reranker=reranker)

        results = await retriever.retrieve("What database is used?", 3)

        assert requests[0]["model"] == "rerank-2"
        assert requests[0]["query"] == "What database is used?"
        assert requests[0]["top_k"] == len(requests[0]["documents"])
        assert "PostgreSQL" in results[0].entry.text
        assert results[0].sources.reranked.score == pytest.approx(0.95)
        assert all(r.sources.reranked is None for r in results[1:])

    @pytest.mark.asyncio
    async def test_cross_encoder_accepts_results_key(self, memory_store, keyword_embedder):
        """Test the alternate "results" response shape"""
        await seed_scenario(memory_store)

        def handler(request):
            return httpx.Response(200, json={"results": [{"index": 0, "relevance_score": 0.8}]})

        reranker = CrossEncoderReranker(RerankConfig(api_key="test-key"), client=rerank_client(handler))
        retriever = MemoryRetriever(memory_store, keyword_embedder, reranker=reranker)

        results = await retriever.retrieve("What database is used?", 3)

        assert results[0].sources.reranked.score == pytest.approx(0.8)

    @pytest.mark.parametrize("handler", [
        lambda request: httpx.Response(500, json={"error": "boom"}),
        lambda request: httpx.Response(200, json={"unexpected": []}),
        lambda request: httpx.Response(200, text="not json"),
    ])
    @pytest.mark.asyncio
    async def test_cross_encoder_failure_falls_back(self, memory_store, keyword_embedder, handler):
        """Test vendor failures still return positively scored results"""
        await seed_scenario(memory_store)
        reranker = CrossEncoderReranker(RerankConfig(api_key="test-key"), client=rerank_client(handler))
        retriever = MemoryRetriever(memory_store, keyword_embedder, reranker=reranker)

        results = await retriever.retrieve("What database is used?", 3)

        assert results
        assert all(r.score > 0 for r in results)
        assert "PostgreSQL" in results[0].entry.text
        assert results[0].sources.reranked is not None

    @pytest.mark.asyncio
    async def test_cross_encoder_transport_error_falls_back(self, memory_store, keyword_embedder):
        """Test connection errors fall back to cosine rerank"""
        await seed_scenario(memory_store)

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        reranker = CrossEncoderReranker(RerankConfig(api_key="test-key"), client=rerank_client(handler))
        retriever = MemoryRetriever(memory_store, keyword_embedder, reranker=reranker)

        results = await retriever.retrieve("What database is used?", 3)

        assert results and all(r.score > 0 for r in results)

    @pytest.mark.asyncio
    async def test_cross_encoder_without_key_falls_back(self, memory_store, keyword_embedder):
        """Test a reranker without credentials is never called"""
        await seed_scenario(memory_store)
        handler = MagicMock(return_value=httpx.Response(200, json={"data": []}))
        reranker = CrossEncoderReranker(RerankConfig(api_key=""), client=rerank_client(handler))
        retriever = MemoryRetriever(memory_store, keyword_embedder, reranker=reranker)

        results = await retriever.retrieve("What database is used?", 3)

        assert results
        handler.assert_not_called()


class TestRetrieverConfig:
    """Test configuration access, validation and diagnostics"""

    def test_get_config_returns_copy(self, keyword_embedder):
        """Test mutating the returned config has no effect"""
        retriever = MemoryRetriever(mock_store(), keyword_embedder)

        config = retriever.get_config()
        config.min_score = 0.99

        assert retriever.get_config().min_score == 0.3

    def test_update_config(self, keyword_embedder):
        """Test valid updates are applied"""
        retriever = MemoryRetriever(mock_store(), keyword_embedder)

        updated = retriever.update_config(mode="vector", rerank="none", min_score=0.5)

        assert updated.mode == RetrievalMode.VECTOR
        assert updated.rerank == RerankMode.NONE
        assert retriever.get_config().min_score == 0.5

    def test_update_config_rejects_unknown_key(self, keyword_embedder):
        """Test unknown fields raise ValueError"""
        retriever = MemoryRetriever(mock_store(), keyword_embedder)

        with pytest.raises(ValueError):
            retriever.update_config(not_a_field=1)

    def test_update_config_rejects_invalid_value(self, keyword_embedder):
        """Test invalid values leave the config untouched"""
        retriever = MemoryRetriever(mock_store(), keyword_embedder)

        with pytest.raises(ValueError):
            retriever.update_config(vector_weight=1.5)
        with pytest.raises(ValueError):
            retriever.update_config(mode="semantic")

        assert retriever.get_config().vector_weight == 0.7
        assert retriever.get_config().mode == RetrievalMode.HYBRID

    def test_invalid_initial_config(self, keyword_embedder):
        """Test construction validates the config"""
        with pytest.raises(ValueError):
            MemoryRetriever(mock_store(), keyword_embedder, RetrievalConfig(candidate_pool_size=0))

    @pytest.mark.asyncio
    async def test_self_test_success(self, keyword_embedder):
        """Test diagnostics report success"""
        retriever = MemoryRetriever(mock_store(has_fts=True), keyword_embedder)

        result = await retriever.test()

        assert result == {"success": True, "mode": "hybrid", "has_fts_support": True}
        assert keyword_embedder.queries == ["test query"]

    @pytest.mark.asyncio
    async def test_self_test_failure(self):
        """Test diagnostics report the error instead of raising"""
        embedder = MagicMock()
        embedder.embed_query = AsyncMock(side_effect=VendorError("embedding down"))
        retriever = MemoryRetriever(mock_store(has_fts=False), embedder)

        result = await retriever.test()

        assert result["success"] is False
        assert result["has_fts_support"] is False
        assert "embedding down" in result["error"]

    def test_create_retriever_builds_reranker(self, keyword_embedder):
        """Test the factory wires a cross-encoder when a key is configured"""
        retriever = create_retriever(
            mock_store(), keyword_embedder,
            RetrievalConfig(rerank_model="rerank-lite-1"),
            rerank_config=RerankConfig(api_key="key")
        )

        assert isinstance(retriever.reranker, CrossEncoderReranker)
        assert retriever.reranker.model == "rerank-lite-1"

    def test_create_retriever_without_key(self, keyword_embedder):
        """Test the factory leaves reranking to the cosine path without a key"""
        retriever = create_retriever(mock_store(), keyword_embedder, rerank_config=RerankConfig())

        assert retriever.reranker is None
        assert isinstance(retriever.get_config(), RetrievalConfig)

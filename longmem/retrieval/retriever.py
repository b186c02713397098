"""
Hybrid memory retrieval

Combines vector and BM25 candidates, re-scores them with temporal and value
signals, filters noise, reranks and diversifies before returning the top
entries.
"""

import asyncio
import dataclasses
import time
from typing import Any, Dict, List, Optional

from ..config import RerankConfig, RerankMode, RetrievalConfig, RetrievalMode, validate_retrieval_config
from ..core.errors import VendorError
from ..core.models import MemorySearchResult, ResultSources, RetrievalResult, SourceScore, StageScore
from ..embedding import EmbeddingProvider
from ..logging import correlation_scope, get_logger
from ..persistence import MemoryStore, clamp_int
from .noise_filter import filter_noise
from .rerank import CrossEncoderReranker
from .scoring import (
    apply_importance_weight,
    apply_length_normalization,
    apply_mmr_diversity,
    apply_recency_boost,
    apply_time_decay,
    clamp01,
    cosine_similarity,
)

MAX_RESULTS = 20

LIGHTWEIGHT_SCORE_WEIGHT = 0.7
LIGHTWEIGHT_COSINE_WEIGHT = 0.3
CROSS_ENCODER_RELEVANCE_WEIGHT = 0.6
CROSS_ENCODER_SCORE_WEIGHT = 0.4
UNRANKED_PENALTY = 0.8


def _sort_by_score(results: List[RetrievalResult]) -> List[RetrievalResult]:
    return sorted(results, key=lambda r: (-r.score, r.entry.id))


class MemoryRetriever:
    """
    Ranked recall over a MemoryStore.

    The retriever owns no storage; it asks the embedder for a query vector and
    the store for candidates, then scores them in-process.
    """

    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingProvider,
        config: Optional[RetrievalConfig] = None,
        reranker: Optional[CrossEncoderReranker] = None
    ):
        config = config or RetrievalConfig()
        self._check(config)

        self.store = store
        self.embedder = embedder
        self.reranker = reranker
        self._config = config
        self.logger = get_logger(__name__)

    @staticmethod
    def _check(config: RetrievalConfig):
        errors = validate_retrieval_config(config)
        if errors:
            raise ValueError("Invalid retrieval configuration:\n" + "\n".join(f"  - {e}" for e in errors))

    # Configuration

    def get_config(self) -> RetrievalConfig:
        """Copy of the active configuration"""
        return dataclasses.replace(self._config)

    def update_config(self, **changes: Any) -> RetrievalConfig:
        """
        Apply a partial configuration change.

        The new configuration is built and validated before it replaces the
        active one, so a retrieve in flight sees either the old or the new
        settings in full.

        Raises:
            ValueError: Unknown field or invalid value
        """
        known = {f.name for f in dataclasses.fields(RetrievalConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown retrieval config fields: {', '.join(unknown)}")

        updated = dataclasses.replace(self._config, **changes)
        self._check(updated)

        self._config = updated
        self.logger.info(f"Retrieval config updated: {sorted(changes)}")
        return self.get_config()

    # Retrieval

    async def retrieve(
        self,
        query: str,
        limit: int = 5,
        scope_filter: Optional[List[str]] = None,
        category: Optional[str] = None
    ) -> List[RetrievalResult]:
        """
        Return up to limit memories relevant to query, best first.

        Raises:
            EmptyInputError, VendorError: Query embedding failed
        """
        with correlation_scope():
            config = self._config
            start_time = time.time()

            safe_limit = clamp_int(limit, 1, MAX_RESULTS)
            query_vector = await self.embedder.embed_query(query)

            pool_size = max(config.candidate_pool_size, safe_limit * 2)
            use_bm25 = config.mode == RetrievalMode.HYBRID and self.store.has_fts_support

            if use_bm25:
                vector_hits, bm25_hits = await asyncio.gather(
                    self.store.vector_search(query_vector, pool_size, config.min_score, scope_filter),
                    self._bm25_candidates(query, pool_size, scope_filter)
                )
            else:
                vector_hits = await self.store.vector_search(query_vector, pool_size, config.min_score, scope_filter)
                bm25_hits = []

            results = self._fuse(vector_hits, bm25_hits, config)

            if category:
                results = [r for r in results if r.entry.category.value == category]

            results = apply_recency_boost(results, config.recency_half_life_days, config.recency_weight)
            results = apply_importance_weight(results, config.importance_base_weight)
            results = apply_length_normalization(results, config.length_norm_anchor)
            results = apply_time_decay(results, config.time_decay_half_life_days)

            if config.filter_noise:
                results = filter_noise(results, lambda r: r.entry.text)

            results = [r for r in results if r.score >= config.hard_min_score]

            if config.rerank != RerankMode.NONE and results:
                results = await self._rerank(query, query_vector, _sort_by_score(results), config)

            results = apply_mmr_diversity(_sort_by_score(results), config.diversity_penalty)
            results = _sort_by_score(results)[:safe_limit]

            elapsed = (time.time() - start_time) * 1000
            self.logger.debug(
                f"Retrieved {len(results)} memories "
                f"(vector={len(vector_hits)}, bm25={len(bm25_hits)}) in {elapsed:.2f}ms"
            )
            return results

    async def _bm25_candidates(
        self,
        query: str,
        limit: int,
        scope_filter: Optional[List[str]]
    ) -> List[MemorySearchResult]:
        try:
            return await self.store.bm25_search(query, limit, scope_filter)
        except Exception as e:
            self.logger.warning(f"Keyword search failed, continuing with vector results only: {e}")
            return []

    @staticmethod
    def _fuse(
        vector_hits: List[MemorySearchResult],
        bm25_hits: List[MemorySearchResult],
        config: RetrievalConfig
    ) -> List[RetrievalResult]:
        """Merge candidates by id; entries found by both searches get a fused score"""
        vector_by_id = {hit.entry.id: (rank, hit) for rank, hit in enumerate(vector_hits, start=1)}
        bm25_by_id = {hit.entry.id: (rank, hit) for rank, hit in enumerate(bm25_hits, start=1)}

        fused: List[RetrievalResult] = []
        for memory_id in list(vector_by_id) + [i for i in bm25_by_id if i not in vector_by_id]:
            vector = vector_by_id.get(memory_id)
            bm25 = bm25_by_id.get(memory_id)

            sources = ResultSources(
                vector=SourceScore(score=vector[1].score, rank=vector[0]) if vector else None,
                bm25=SourceScore(score=bm25[1].score, rank=bm25[0]) if bm25 else None
            )

            if vector and bm25:
                v, b = vector[1].score, bm25[1].score
                weighted = config.vector_weight * v + config.bm25_weight * b
                score = clamp01(max(weighted, v, b) + config.dual_hit_bonus)
                sources.fused = StageScore(score=score)
            else:
                score = clamp01((vector or bm25)[1].score)

            entry = (vector or bm25)[1].entry
            fused.append(RetrievalResult(entry=entry, score=score, sources=sources))

        return _sort_by_score(fused)

    async def _rerank(
        self,
        query: str,
        query_vector: List[float],
        results: List[RetrievalResult],
        config: RetrievalConfig
    ) -> List[RetrievalResult]:
        candidates = results[:config.candidate_pool_size]
        remainder = results[config.candidate_pool_size:]

        if config.rerank == RerankMode.CROSS_ENCODER:
            if self.reranker is not None and self.reranker.available:
                try:
                    return await self._cross_encoder_rerank(query, candidates, config) + remainder
                except VendorError as e:
                    self.logger.warning(f"Cross-encoder rerank failed, falling back to cosine rerank: {e}")
            else:
                self.logger.debug("No cross-encoder configured, using cosine rerank")

        return self._lightweight_rerank(query_vector, candidates) + remainder

    @staticmethod
    def _lightweight_rerank(query_vector: List[float], results: List[RetrievalResult]) -> List[RetrievalResult]:
        reranked = []
        for result in results:
            cosine = cosine_similarity(query_vector, result.entry.vector)
            score = clamp01(LIGHTWEIGHT_SCORE_WEIGHT * result.score + LIGHTWEIGHT_COSINE_WEIGHT * cosine)
            reranked.append(result.with_score(score, reranked=StageScore(score=cosine)))
        return _sort_by_score(reranked)

    async def _cross_encoder_rerank(
        self,
        query: str,
        results: List[RetrievalResult],
        config: RetrievalConfig
    ) -> List[RetrievalResult]:
        scored = await self.reranker.rerank(query, [r.entry.text for r in results], model=config.rerank_model)

        reranked = []
        returned = set()
        for index, relevance in scored:
            if index in returned:
                continue
            returned.add(index)
            original = results[index]
            score = clamp01(CROSS_ENCODER_RELEVANCE_WEIGHT * relevance + CROSS_ENCODER_SCORE_WEIGHT * original.score)
            reranked.append(original.with_score(score, reranked=StageScore(score=relevance)))

        # Candidates the vendor left out are demoted, not dropped
        for index, original in enumerate(results):
            if index not in returned:
                reranked.append(original.with_score(clamp01(original.score * UNRANKED_PENALTY)))

        return _sort_by_score(reranked)

    # Diagnostics

    async def test(self, sample_query: str = "test query") -> Dict[str, Any]:
        """Run one retrieval end to end and report whether it worked"""
        mode = self._config.mode.value
        try:
            await self.retrieve(sample_query, limit=1)
            return {
                "success": True,
                "mode": mode,
                "has_fts_support": self.store.has_fts_support
            }
        except Exception as e:
            self.logger.error(f"Retriever self-test failed: {e}")
            return {
                "success": False,
                "mode": mode,
                "has_fts_support": self.store.has_fts_support,
                "error": str(e)
            }


def create_retriever(
    store: MemoryStore,
    embedder: EmbeddingProvider,
    config: Optional[RetrievalConfig] = None,
    reranker: Optional[CrossEncoderReranker] = None,
    rerank_config: Optional[RerankConfig] = None
) -> MemoryRetriever:
    """
    Build a retriever, creating a cross-encoder client from rerank_config
    when none is passed and a credential is available.
    """
    config = config or RetrievalConfig()
    if reranker is None and rerank_config is not None and rerank_config.api_key:
        reranker = CrossEncoderReranker(rerank_config, model=config.rerank_model)
    return MemoryRetriever(store, embedder, config, reranker)

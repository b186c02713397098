"""
Retrieval pipeline for longmem

Components:
- retriever: hybrid vector + keyword retrieval with rerank and diversity
- rerank: cross-encoder rerank API client
- scoring: similarity, temporal weighting and MMR helpers
- noise_filter: drops denials, meta-questions and boilerplate
- adaptive: decides whether a query needs retrieval at all
"""

from .adaptive import should_skip_retrieval
from .noise_filter import NoiseFilterOptions, filter_noise, is_noise
from .rerank import CrossEncoderReranker
from .retriever import MemoryRetriever, create_retriever
from .scoring import apply_mmr_diversity, clamp01, cosine_similarity

__all__ = [
    "MemoryRetriever",
    "create_retriever",
    "CrossEncoderReranker",
    "NoiseFilterOptions",
    "is_noise",
    "filter_noise",
    "should_skip_retrieval",
    "apply_mmr_diversity",
    "clamp01",
    "cosine_similarity"
]

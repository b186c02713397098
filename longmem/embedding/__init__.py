"""
Embedding provider management
"""

from .cache import EmbeddingCache
from .providers import (
    EmbeddingProvider,
    VoyageEmbeddingProvider,
    OpenAIEmbeddingProvider,
    JinaEmbeddingProvider,
    create_embedding_provider,
    normalize_base_url
)

__all__ = [
    "EmbeddingCache",
    "EmbeddingProvider",
    "VoyageEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "JinaEmbeddingProvider",
    "create_embedding_provider",
    "normalize_base_url"
]

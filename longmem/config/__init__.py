"""
Configuration management package for longmem

Provides centralized configuration management with:
- Environment variable loading from .env files
- Runtime configuration validation
- Type-safe configuration classes
- Global configuration access patterns

Usage:
    from longmem.config import get_config

    config = get_config()
    print(f"Embedding with {config.embedding.provider.value}:{config.embedding.model}")
    print(f"Storing memories under {config.store.db_path}")
"""

from .manager import (
    ConfigManager,
    EmbeddingConfig,
    StoreConfig,
    RetrievalConfig,
    RerankConfig,
    ScopeConfig,
    LoggingConfig,
    EmbeddingVendor,
    RetrievalMode,
    RerankMode,
    EMBEDDING_DIMENSIONS,
    vector_dims_for_model,
    validate_retrieval_config,
    load_logging_config,
    get_config,
    init_config
)

__all__ = [
    "ConfigManager",
    "EmbeddingConfig",
    "StoreConfig",
    "RetrievalConfig",
    "RerankConfig",
    "ScopeConfig",
    "LoggingConfig",
    "EmbeddingVendor",
    "RetrievalMode",
    "RerankMode",
    "EMBEDDING_DIMENSIONS",
    "vector_dims_for_model",
    "validate_retrieval_config",
    "load_logging_config",
    "get_config",
    "init_config"
]

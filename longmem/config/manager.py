"""
Configuration Manager for longmem
=================================

Centralized configuration management with environment variable loading,
validation, and type safety for the embedding, storage, retrieval, rerank,
scope and logging settings.
"""

import os
import re
import logging
from dataclasses import dataclass, field, fields
from typing import Dict, Any, Optional, List
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class EmbeddingVendor(str, Enum):
    """Supported embedding vendors"""
    VOYAGE = "voyage"
    OPENAI = "openai"
    JINA = "jina"


class RetrievalMode(str, Enum):
    """Candidate fetch strategy"""
    HYBRID = "hybrid"
    VECTOR = "vector"


class RerankMode(str, Enum):
    """Reranking strategy applied after fusion"""
    CROSS_ENCODER = "cross-encoder"
    LIGHTWEIGHT = "lightweight"
    NONE = "none"


# Embedding model dimensions by vendor
EMBEDDING_DIMENSIONS: Dict[str, int] = {
    # Voyage AI
    "voyage-3-large": 1024,
    "voyage-3": 1024,
    "voyage-3-lite": 512,
    "voyage-code-3": 1024,
    "voyage-finance-2": 1024,
    "voyage-law-2": 1024,
    "voyage-multilingual-2": 1024,
    # OpenAI
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    # Jina
    "jina-embeddings-v3": 1024,
    "jina-embeddings-v2-base-en": 768,
}

VENDOR_ENV_VARS: Dict[EmbeddingVendor, str] = {
    EmbeddingVendor.VOYAGE: "VOYAGE_API_KEY",
    EmbeddingVendor.OPENAI: "OPENAI_API_KEY",
    EmbeddingVendor.JINA: "JINA_API_KEY",
}

VENDOR_DEFAULT_MODELS: Dict[EmbeddingVendor, str] = {
    EmbeddingVendor.VOYAGE: "voyage-3-large",
    EmbeddingVendor.OPENAI: "text-embedding-3-small",
    EmbeddingVendor.JINA: "jina-embeddings-v3",
}

DEFAULT_RERANK_ENDPOINT = "https://api.voyageai.com/v1/rerank"

_ENV_REF_RE = re.compile(r"\$\{([^}]+)\}")


def vector_dims_for_model(model: str, override_dims: Optional[int] = None) -> int:
    """
    Resolve the vector dimension for an embedding model.

    Args:
        model: Vendor model name
        override_dims: Explicit dimension, wins over the known-model table

    Returns:
        Vector dimension

    Raises:
        ValueError: Model is unknown and no override was given
    """
    if override_dims and override_dims > 0:
        return override_dims
    dims = EMBEDDING_DIMENSIONS.get(model)
    if not dims:
        known = ", ".join(EMBEDDING_DIMENSIONS)
        raise ValueError(
            f"Unknown embedding model: {model}. Set LONGMEM_EMBEDDING_DIMENSIONS. Known models: {known}"
        )
    return dims


def resolve_env_vars(value: str) -> str:
    """Expand ${VAR} references, failing loudly on unset variables"""
    def _replace(match: "re.Match[str]") -> str:
        env_value = os.getenv(match.group(1))
        if not env_value:
            raise ValueError(f"Environment variable {match.group(1)} is not set")
        return env_value

    return _ENV_REF_RE.sub(_replace, value)


@dataclass
class EmbeddingConfig:
    """Embedding vendor configuration"""
    provider: EmbeddingVendor = EmbeddingVendor.VOYAGE
    api_key: str = ""
    model: str = "voyage-3-large"
    dimensions: Optional[int] = None
    base_url: Optional[str] = None
    timeout_seconds: float = 10.0
    cache_max_size: int = 256
    cache_ttl_minutes: float = 30.0

    @property
    def vector_dim(self) -> int:
        return vector_dims_for_model(self.model, self.dimensions)


@dataclass
class StoreConfig:
    """Persistent store configuration"""
    db_path: str = str(Path.home() / ".longmem" / "memory")
    vector_dim: int = 1024
    collection_name: str = "memories"


@dataclass
class RetrievalConfig:
    """Retrieval pipeline configuration"""
    mode: RetrievalMode = RetrievalMode.HYBRID
    vector_weight: float = 0.7
    bm25_weight: float = 0.3
    min_score: float = 0.3
    hard_min_score: float = 0.35
    rerank: RerankMode = RerankMode.CROSS_ENCODER
    rerank_model: str = "rerank-2"
    candidate_pool_size: int = 20
    recency_half_life_days: float = 14.0
    recency_weight: float = 0.10
    filter_noise: bool = True
    time_decay_half_life_days: float = 60.0

    # Scoring knobs
    dual_hit_bonus: float = 0.1
    diversity_penalty: float = 0.2
    length_norm_anchor: int = 500
    importance_base_weight: float = 0.7

    def __post_init__(self):
        # Accept plain strings from callers and env loading
        self.mode = RetrievalMode(self.mode)
        self.rerank = RerankMode(self.rerank)


@dataclass
class RerankConfig:
    """Cross-encoder rerank vendor configuration"""
    api_key: str = ""
    endpoint: str = DEFAULT_RERANK_ENDPOINT
    timeout_seconds: float = 10.0


@dataclass
class ScopeConfig:
    """Scope defaults and per-agent access lists"""
    default_scope: str = "global"
    definitions: Dict[str, str] = field(default_factory=lambda: {
        "global": "Shared knowledge across all agents"
    })
    agent_access: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration"""
    log_level: str = "INFO"
    debug_mode: bool = False
    log_file: Optional[str] = None


def load_logging_config() -> LoggingConfig:
    """Read only the logging settings from the environment, without loading .env or validating other sections"""
    return LoggingConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        debug_mode=os.getenv("DEBUG_MODE", "False").lower() in ('true', '1', 'yes', 'on'),
        log_file=os.getenv("LOG_FILE") or None
    )


def validate_retrieval_config(config: RetrievalConfig) -> List[str]:
    """Return every problem found in a retrieval configuration"""
    errors = []

    for name in ("vector_weight", "bm25_weight", "min_score", "hard_min_score",
                 "recency_weight", "dual_hit_bonus", "diversity_penalty",
                 "importance_base_weight"):
        value = getattr(config, name)
        if not (0.0 <= value <= 1.0):
            errors.append(f"Retrieval {name} must be between 0.0 and 1.0 (got {value})")

    for name in ("recency_half_life_days", "time_decay_half_life_days", "length_norm_anchor"):
        if getattr(config, name) < 0:
            errors.append(f"Retrieval {name} must not be negative")

    if config.candidate_pool_size < 1:
        errors.append("Retrieval candidate_pool_size must be at least 1")

    return errors


class ConfigManager:
    """
    Centralized configuration manager with environment variable loading
    and runtime validation for all system settings.
    """

    def __init__(self, env_file_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file for loading environment variables
        """
        self._load_env_file(env_file_path)

        self.embedding = self._load_embedding_config()
        self.store = self._load_store_config()
        self.retrieval = self._load_retrieval_config()
        self.rerank = self._load_rerank_config()
        self.scopes = self._load_scope_config()
        self.logging = self._load_logging_config()

        self._validate_configuration()

        logger.info("Configuration loaded and validated successfully")

    def _load_env_file(self, env_file_path: Optional[str]) -> None:
        """Load environment variables from .env file if it exists"""
        env_path = Path(env_file_path) if env_file_path else Path(".env")

        if env_path.exists():
            load_dotenv(env_path, override=True)
            logger.info(f"Loaded environment variables from {env_path}")

    def _get_env_bool(self, key: str, default: bool) -> bool:
        """Get boolean environment variable with proper conversion"""
        value = os.getenv(key, str(default)).lower()
        return value in ('true', '1', 'yes', 'on')

    def _get_env_int(self, key: str, default: int) -> int:
        """Get integer environment variable with validation"""
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            logger.warning(f"Invalid integer value for {key}, using default: {default}")
            return default

    def _get_env_float(self, key: str, default: float) -> float:
        """Get float environment variable with validation"""
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            logger.warning(f"Invalid float value for {key}, using default: {default}")
            return default

    def _load_embedding_config(self) -> EmbeddingConfig:
        """Load embedding vendor configuration from environment variables"""
        provider_str = os.getenv("LONGMEM_EMBEDDING_PROVIDER", "voyage").lower()
        try:
            provider = EmbeddingVendor(provider_str)
        except ValueError:
            supported = ", ".join(v.value for v in EmbeddingVendor)
            raise ValueError(f"Unknown embedding provider: {provider_str}. Supported providers: {supported}")

        api_key = (
            os.getenv("LONGMEM_EMBEDDING_API_KEY")
            or os.getenv(VENDOR_ENV_VARS[provider])
            or os.getenv("VOYAGE_API_KEY", "")
        )

        dimensions = self._get_env_int("LONGMEM_EMBEDDING_DIMENSIONS", 0) or None

        return EmbeddingConfig(
            provider=provider,
            api_key=resolve_env_vars(api_key),
            model=os.getenv("LONGMEM_EMBEDDING_MODEL", VENDOR_DEFAULT_MODELS[provider]),
            dimensions=dimensions,
            base_url=os.getenv("LONGMEM_EMBEDDING_BASE_URL") or None,
            timeout_seconds=self._get_env_float("LONGMEM_EMBEDDING_TIMEOUT", 10.0),
            cache_max_size=self._get_env_int("LONGMEM_EMBEDDING_CACHE_SIZE", 256),
            cache_ttl_minutes=self._get_env_float("LONGMEM_EMBEDDING_CACHE_TTL_MINUTES", 30.0)
        )

    def _load_store_config(self) -> StoreConfig:
        """Load store configuration; vector_dim follows the embedding model"""
        return StoreConfig(
            db_path=os.getenv("LONGMEM_DB_PATH", str(Path.home() / ".longmem" / "memory")),
            vector_dim=self.embedding.vector_dim,
            collection_name=os.getenv("LONGMEM_COLLECTION", "memories")
        )

    def _load_retrieval_config(self) -> RetrievalConfig:
        """Load retrieval configuration from environment variables"""
        mode_str = os.getenv("LONGMEM_RETRIEVAL_MODE", "hybrid").lower()
        mode = RetrievalMode.VECTOR if mode_str == "vector" else RetrievalMode.HYBRID

        rerank_str = os.getenv("LONGMEM_RETRIEVAL_RERANK", "cross-encoder").lower()
        try:
            rerank = RerankMode(rerank_str)
        except ValueError:
            logger.warning(f"Invalid rerank mode '{rerank_str}', using cross-encoder")
            rerank = RerankMode.CROSS_ENCODER

        return RetrievalConfig(
            mode=mode,
            vector_weight=self._get_env_float("LONGMEM_RETRIEVAL_VECTOR_WEIGHT", 0.7),
            bm25_weight=self._get_env_float("LONGMEM_RETRIEVAL_BM25_WEIGHT", 0.3),
            min_score=self._get_env_float("LONGMEM_RETRIEVAL_MIN_SCORE", 0.3),
            hard_min_score=self._get_env_float("LONGMEM_RETRIEVAL_HARD_MIN_SCORE", 0.35),
            rerank=rerank,
            rerank_model=os.getenv("LONGMEM_RETRIEVAL_RERANK_MODEL", "rerank-2"),
            candidate_pool_size=self._get_env_int("LONGMEM_RETRIEVAL_CANDIDATE_POOL_SIZE", 20),
            recency_half_life_days=self._get_env_float("LONGMEM_RETRIEVAL_RECENCY_HALF_LIFE_DAYS", 14.0),
            recency_weight=self._get_env_float("LONGMEM_RETRIEVAL_RECENCY_WEIGHT", 0.10),
            filter_noise=self._get_env_bool("LONGMEM_RETRIEVAL_FILTER_NOISE", True),
            time_decay_half_life_days=self._get_env_float("LONGMEM_RETRIEVAL_TIME_DECAY_HALF_LIFE_DAYS", 60.0),
            dual_hit_bonus=self._get_env_float("LONGMEM_RETRIEVAL_DUAL_HIT_BONUS", 0.1),
            diversity_penalty=self._get_env_float("LONGMEM_RETRIEVAL_DIVERSITY_PENALTY", 0.2),
            length_norm_anchor=self._get_env_int("LONGMEM_RETRIEVAL_LENGTH_NORM_ANCHOR", 500),
            importance_base_weight=self._get_env_float("LONGMEM_RETRIEVAL_IMPORTANCE_BASE_WEIGHT", 0.7)
        )

    def _load_rerank_config(self) -> RerankConfig:
        """Load rerank vendor configuration; shares the Voyage key by default"""
        return RerankConfig(
            api_key=os.getenv("LONGMEM_RERANK_API_KEY") or os.getenv("VOYAGE_API_KEY", ""),
            endpoint=os.getenv("LONGMEM_RERANK_ENDPOINT", DEFAULT_RERANK_ENDPOINT),
            timeout_seconds=self._get_env_float("LONGMEM_RERANK_TIMEOUT", 10.0)
        )

    def _load_scope_config(self) -> ScopeConfig:
        """Load scope configuration from environment variables"""
        agent_access: Dict[str, List[str]] = {}
        access_str = os.getenv("LONGMEM_AGENT_ACCESS", "")
        # Format: agent1=scope1|scope2;agent2=scope3
        for chunk in access_str.split(";"):
            agent_id, sep, scopes = chunk.partition("=")
            if not sep or not agent_id.strip():
                continue
            agent_access[agent_id.strip()] = [s.strip() for s in scopes.split("|") if s.strip()]

        return ScopeConfig(
            default_scope=os.getenv("LONGMEM_DEFAULT_SCOPE", "global"),
            agent_access=agent_access
        )

    def _load_logging_config(self) -> LoggingConfig:
        """Load logging configuration from environment variables"""
        return load_logging_config()

    def _validate_configuration(self) -> None:
        """Validate configuration values for consistency and ranges"""
        errors = validate_retrieval_config(self.retrieval)

        if self.embedding.timeout_seconds <= 0:
            errors.append("Embedding timeout must be positive")

        if self.embedding.cache_max_size < 1:
            errors.append("Embedding cache size must be at least 1")

        if self.rerank.timeout_seconds <= 0:
            errors.append("Rerank timeout must be positive")

        if not self.scopes.default_scope:
            errors.append("Default scope must not be empty")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

    def get_summary(self) -> Dict[str, Any]:
        """Get configuration summary for logging and debugging"""
        return {
            "embedding": {
                "provider": self.embedding.provider.value,
                "model": self.embedding.model,
                "dimensions": self.store.vector_dim,
                "api_key_set": bool(self.embedding.api_key)
            },
            "store": {
                "db_path": self.store.db_path
            },
            "retrieval": {
                field_info.name: getattr(self.retrieval, field_info.name)
                for field_info in fields(self.retrieval)
            },
            "rerank": {
                "endpoint": self.rerank.endpoint,
                "api_key_set": bool(self.rerank.api_key)
            }
        }


# Global configuration instance (initialized on first use)
_config_instance: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        ConfigManager: The global configuration instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance


def init_config(env_file_path: Optional[str] = None) -> ConfigManager:
    """
    Initialize the global configuration instance with custom env file.

    Args:
        env_file_path: Optional path to .env file

    Returns:
        ConfigManager: The initialized configuration instance
    """
    global _config_instance
    _config_instance = ConfigManager(env_file_path)
    return _config_instance

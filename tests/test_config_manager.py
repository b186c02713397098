"""
Unit tests for longmem.config.manager module

Tests configuration loading, validation, and environment variable handling.
"""

import os

import pytest

from longmem.config.manager import (
    ConfigManager,
    EmbeddingConfig,
    EmbeddingVendor,
    LoggingConfig,
    RerankConfig,
    RerankMode,
    RetrievalConfig,
    RetrievalMode,
    ScopeConfig,
    StoreConfig,
    get_config,
    init_config,
    resolve_env_vars,
    validate_retrieval_config,
    vector_dims_for_model,
)

LONGMEM_ENV_PREFIXES = ("LONGMEM_", "VOYAGE_API_KEY", "OPENAI_API_KEY", "JINA_API_KEY", "LOG_LEVEL", "DEBUG_MODE",
                        "LOG_FILE")


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove longmem settings from the environment and run from an empty directory"""
    for key in list(os.environ):
        if key.startswith(LONGMEM_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestConfigDataClasses:
    """Test configuration dataclass creation"""

    def test_embedding_config_defaults(self):
        """Test EmbeddingConfig default values"""
        config = EmbeddingConfig()

        assert config.provider == EmbeddingVendor.VOYAGE
        assert config.model == "voyage-3-large"
        assert config.timeout_seconds == 10.0
        assert config.cache_max_size == 256
        assert config.cache_ttl_minutes == 30.0
        assert config.vector_dim == 1024

    def test_retrieval_config_defaults(self):
        """Test RetrievalConfig default values"""
        config = RetrievalConfig()

        assert config.mode == RetrievalMode.HYBRID
        assert config.vector_weight == 0.7
        assert config.bm25_weight == 0.3
        assert config.min_score == 0.3
        assert config.hard_min_score == 0.35
        assert config.rerank == RerankMode.CROSS_ENCODER
        assert config.rerank_model == "rerank-2"
        assert config.candidate_pool_size == 20
        assert config.recency_half_life_days == 14.0
        assert config.recency_weight == 0.10
        assert config.filter_noise is True
        assert config.time_decay_half_life_days == 60.0

    def test_retrieval_config_coerces_strings(self):
        """Test string modes are converted to enums"""
        config = RetrievalConfig(mode="vector", rerank="lightweight")

        assert config.mode == RetrievalMode.VECTOR
        assert config.rerank == RerankMode.LIGHTWEIGHT

    def test_retrieval_config_rejects_unknown_mode(self):
        """Test an unknown mode raises ValueError"""
        with pytest.raises(ValueError):
            RetrievalConfig(rerank="magic")

    def test_other_defaults(self):
        """Test store, rerank, scope and logging defaults"""
        assert StoreConfig().collection_name == "memories"
        assert RerankConfig().endpoint == "https://api.voyageai.com/v1/rerank"
        assert ScopeConfig().default_scope == "global"
        assert LoggingConfig().log_level == "INFO"


class TestConfigHelpers:
    """Test module-level helpers"""

    def test_vector_dims_known_model(self):
        """Test known model dimensions"""
        assert vector_dims_for_model("voyage-3-lite") == 512
        assert vector_dims_for_model("text-embedding-3-large") == 3072
        assert vector_dims_for_model("jina-embeddings-v2-base-en") == 768

    def test_vector_dims_override(self):
        """Test explicit dimensions win"""
        assert vector_dims_for_model("voyage-3", 256) == 256
        assert vector_dims_for_model("custom-model", 384) == 384

    def test_vector_dims_unknown_model(self):
        """Test unknown models without override fail"""
        with pytest.raises(ValueError):
            vector_dims_for_model("custom-model")

    def test_resolve_env_vars(self, monkeypatch):
        """Test ${VAR} references are expanded"""
        monkeypatch.setenv("LONGMEM_TEST_SECRET", "s3cret")

        assert resolve_env_vars("${LONGMEM_TEST_SECRET}") == "s3cret"
        assert resolve_env_vars("plain-key") == "plain-key"

    def test_resolve_env_vars_missing(self, monkeypatch):
        """Test unset references fail loudly"""
        monkeypatch.delenv("LONGMEM_UNSET_VAR", raising=False)

        with pytest.raises(ValueError):
            resolve_env_vars("${LONGMEM_UNSET_VAR}")

    def test_validate_retrieval_config(self):
        """Test every problem is reported"""
        config = RetrievalConfig(vector_weight=1.2, hard_min_score=-0.1, recency_half_life_days=-1,
                                 candidate_pool_size=0)

        errors = validate_retrieval_config(config)

        assert len(errors) == 4
        assert validate_retrieval_config(RetrievalConfig()) == []


class TestConfigManager:
    """Test environment loading"""

    def test_defaults_without_environment(self, clean_env):
        """Test ConfigManager loads with no environment set"""
        config = ConfigManager()

        assert config.embedding.provider == EmbeddingVendor.VOYAGE
        assert config.embedding.api_key == ""
        assert config.store.vector_dim == 1024
        assert config.retrieval.mode == RetrievalMode.HYBRID
        assert config.scopes.agent_access == {}

    def test_environment_overrides(self, clean_env):
        """Test environment variables override defaults"""
        clean_env.setenv("LONGMEM_EMBEDDING_PROVIDER", "openai")
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("LONGMEM_DB_PATH", "/tmp/longmem-test")
        clean_env.setenv("LONGMEM_RETRIEVAL_MODE", "vector")
        clean_env.setenv("LONGMEM_RETRIEVAL_RERANK", "none")
        clean_env.setenv("LONGMEM_RETRIEVAL_MIN_SCORE", "0.5")
        clean_env.setenv("LONGMEM_RETRIEVAL_FILTER_NOISE", "false")

        config = ConfigManager()

        assert config.embedding.provider == EmbeddingVendor.OPENAI
        assert config.embedding.api_key == "sk-test"
        assert config.embedding.model == "text-embedding-3-small"
        assert config.store.vector_dim == 1536
        assert config.store.db_path == "/tmp/longmem-test"
        assert config.retrieval.mode == RetrievalMode.VECTOR
        assert config.retrieval.rerank == RerankMode.NONE
        assert config.retrieval.min_score == 0.5
        assert config.retrieval.filter_noise is False

    def test_explicit_dimensions(self, clean_env):
        """Test explicit dimensions allow unknown models"""
        clean_env.setenv("LONGMEM_EMBEDDING_MODEL", "in-house-embedder")
        clean_env.setenv("LONGMEM_EMBEDDING_DIMENSIONS", "384")

        config = ConfigManager()

        assert config.store.vector_dim == 384

    def test_invalid_numbers_fall_back(self, clean_env):
        """Test malformed numeric values use defaults"""
        clean_env.setenv("LONGMEM_RETRIEVAL_CANDIDATE_POOL_SIZE", "lots")
        clean_env.setenv("LONGMEM_RETRIEVAL_VECTOR_WEIGHT", "heavy")

        config = ConfigManager()

        assert config.retrieval.candidate_pool_size == 20
        assert config.retrieval.vector_weight == 0.7

    def test_invalid_values_rejected(self, clean_env):
        """Test out-of-range values fail validation"""
        clean_env.setenv("LONGMEM_RETRIEVAL_BM25_WEIGHT", "1.5")

        with pytest.raises(ValueError, match="bm25_weight"):
            ConfigManager()

    def test_unknown_provider(self, clean_env):
        """Test an unknown embedding provider is rejected"""
        clean_env.setenv("LONGMEM_EMBEDDING_PROVIDER", "cohere")

        with pytest.raises(ValueError):
            ConfigManager()

    def test_agent_access_parsing(self, clean_env):
        """Test per-agent scope lists are parsed"""
        clean_env.setenv("LONGMEM_AGENT_ACCESS", "main=global|project:x; helper = project:y ;broken")

        config = ConfigManager()

        assert config.scopes.agent_access == {"main": ["global", "project:x"], "helper": ["project:y"]}

    def test_rerank_key_falls_back_to_voyage(self, clean_env):
        """Test the rerank key defaults to the Voyage key"""
        clean_env.setenv("VOYAGE_API_KEY", "pa-voyage")

        config = ConfigManager()

        assert config.rerank.api_key == "pa-voyage"
        assert config.embedding.api_key == "pa-voyage"

    def test_env_file_loading(self, clean_env, tmp_path):
        """Test settings are read from an env file"""
        env_file = tmp_path / "custom.env"
        env_file.write_text("LONGMEM_RETRIEVAL_CANDIDATE_POOL_SIZE=33\nLONGMEM_DEFAULT_SCOPE=project:demo\n")

        try:
            config = ConfigManager(str(env_file))
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop("LONGMEM_RETRIEVAL_CANDIDATE_POOL_SIZE", None)
            os.environ.pop("LONGMEM_DEFAULT_SCOPE", None)

        assert config.retrieval.candidate_pool_size == 33
        assert config.scopes.default_scope == "project:demo"

    def test_summary_hides_keys(self, clean_env):
        """Test the summary reports key presence only"""
        clean_env.setenv("VOYAGE_API_KEY", "pa-secret")

        summary = ConfigManager().get_summary()

        assert summary["embedding"]["api_key_set"] is True
        assert "pa-secret" not in str(summary)
        assert summary["retrieval"]["candidate_pool_size"] == 20


class TestGlobalConfig:
    """Test global configuration access"""

    def test_init_config_replaces_instance(self, clean_env):
        """Test init_config installs a new global instance"""
        config = init_config()

        assert get_config() is config

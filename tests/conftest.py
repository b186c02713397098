"""
Test configuration and utilities
"""

import logging
import math
import re
from typing import List, Optional

import pytest
import pytest_asyncio

from longmem.core import MemoryDraft
from longmem.persistence import MemoryStore

# Configure pytest for async tests
pytest_plugins = ('pytest_asyncio',)

TEST_DIM = 8

# Word -> vector dimension for the keyword embedder; the last dimension is a constant bias
KEYWORD_DIMENSIONS = {
    "database": 0, "postgresql": 0, "postgres": 0, "sql": 0,
    "vim": 1, "keybindings": 1, "editor": 1,
    "graphql": 2, "api": 2, "migration": 2,
    "python": 3, "language": 3,
    "coffee": 4, "tea": 4,
    "deploy": 5, "kubernetes": 5,
}
BIAS = 0.3


def keyword_vector(text: str) -> List[float]:
    """Deterministic unit vector counting known keywords in text"""
    vector = [0.0] * TEST_DIM
    for word in re.findall(r"\w+", text.lower()):
        index = KEYWORD_DIMENSIONS.get(word)
        if index is not None:
            vector[index] += 1.0
    vector[TEST_DIM - 1] = BIAS
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


def unit_vector(index: int, dim: int = TEST_DIM) -> List[float]:
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


class KeywordEmbedder:
    """Stand-in embedding provider backed by keyword_vector"""

    def __init__(self):
        self.dimensions = TEST_DIM
        self.model = "keyword-test"
        self.queries: List[str] = []

    async def embed_query(self, text: str) -> List[float]:
        self.queries.append(text)
        return keyword_vector(text)

    async def embed_passage(self, text: str) -> List[float]:
        return keyword_vector(text)


def make_draft(text: str, scope: str = "global", vector: Optional[List[float]] = None, **kwargs) -> MemoryDraft:
    return MemoryDraft(text=text, vector=vector or keyword_vector(text), scope=scope, **kwargs)


@pytest.fixture
def keyword_embedder():
    return KeywordEmbedder()


@pytest_asyncio.fixture
async def memory_store(tmp_path):
    """Real ChromaDB + SQLite store in a temporary directory"""
    store = MemoryStore(tmp_path / "memory", TEST_DIM)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Setup logging for tests"""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Suppress noisy loggers during tests
    logging.getLogger("chromadb").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

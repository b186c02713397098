"""
Persistence layer for longmem

Components:
- memory_store: ChromaDB collection with scoped CRUD and vector / keyword search
- lexical_index: SQLite FTS5 index backing keyword (BM25) search
"""

from .lexical_index import LexicalIndex, build_match_query
from .memory_store import MemoryStore, clamp_int, distance_to_score, normalize_bm25_score

__all__ = [
    "MemoryStore",
    "LexicalIndex",
    "build_match_query",
    "clamp_int",
    "distance_to_score",
    "normalize_bm25_score"
]

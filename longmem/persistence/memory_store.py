"""
ChromaDB-backed long-term memory store with scoped CRUD and hybrid search
"""

import asyncio
import math
import re
import sqlite3
import time
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import chromadb
from chromadb.config import Settings
from pydantic import ValidationError as PydanticValidationError

from ..config import StoreConfig
from ..core.errors import (
    AccessDeniedError,
    AmbiguousPrefixError,
    DimensionMismatchError,
    MissingIdError,
    ValidationError,
)
from ..core.models import (
    DEFAULT_IMPORTANCE,
    DEFAULT_SCOPE,
    MemoryCategory,
    MemoryDraft,
    MemoryEntry,
    MemorySearchResult,
    MemoryUpdate,
    now_ms,
)
from ..logging import get_logger
from .lexical_index import LexicalIndex

MAX_SEARCH_LIMIT = 20
MAX_FETCH_LIMIT = 200
MIN_PREFIX_LENGTH = 8

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
PREFIX_RE = re.compile(r"^[0-9a-f][0-9a-f-]{%d,}$" % (MIN_PREFIX_LENGTH - 1), re.IGNORECASE)


def clamp_int(value: Any, minimum: int, maximum: int) -> int:
    """Floor and clamp; non-finite input collapses to the minimum"""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return minimum
    if not math.isfinite(value):
        return minimum
    return min(maximum, max(minimum, int(math.floor(value))))


def distance_to_score(distance: float) -> float:
    """Map an L2 distance onto (0, 1], 1 meaning identical"""
    return 1.0 / (1.0 + max(float(distance), 0.0))


def normalize_bm25_score(raw_score: float) -> float:
    """Squash a raw BM25 score: 0 -> 0.5, growing scores approach 1"""
    if raw_score <= 0:
        return 0.5
    return 1.0 / (1.0 + math.exp(-raw_score / 5.0))


def _column(results: Dict[str, Any], key: str) -> list:
    # Chroma may hand back numpy arrays, whose truthiness is ambiguous
    value = results.get(key)
    return [] if value is None else value


class MemoryStore:
    """
    Durable memory storage.

    One ChromaDB collection holds every entry (text, caller-supplied vector and
    metadata) and a SQLite FTS5 table indexes the text for keyword search. The
    store never embeds text itself.
    """

    def __init__(
        self,
        persist_directory: Union[str, Path],
        vector_dim: int,
        collection_name: str = "memories"
    ):
        if vector_dim < 1:
            raise ValueError("vector_dim must be positive")

        self.persist_directory = Path(persist_directory).expanduser()
        self.vector_dim = vector_dim
        self.collection_name = collection_name

        self.client = None
        self.collection = None
        self.lexical = LexicalIndex(self.persist_directory / "lexical.sqlite3")
        self._fts_ready = False
        self._init_lock = asyncio.Lock()

        self.logger = get_logger(__name__)

    @classmethod
    def from_config(cls, config: StoreConfig) -> "MemoryStore":
        return cls(config.db_path, config.vector_dim, config.collection_name)

    @property
    def has_fts_support(self) -> bool:
        """Whether the lexical index was created and is usable"""
        return self._fts_ready

    # Initialization

    async def initialize(self):
        """Open or create the collection and lexical index (idempotent)"""
        if self.collection is not None:
            return

        async with self._init_lock:
            if self.collection is not None:
                return

            start_time = time.time()
            client, collection = await asyncio.to_thread(self._open_collection)

            try:
                await self.lexical.initialize()
                self._fts_ready = True
            except (sqlite3.Error, OSError) as e:
                self.logger.warning(f"Failed to create lexical index, falling back to vector-only search: {e}")
                self._fts_ready = False

            self.client = client
            self.collection = collection

            if self._fts_ready:
                await self._backfill_lexical_index()

            load_time = (time.time() - start_time) * 1000
            self.logger.info(
                f"Memory store ready at {self.persist_directory} "
                f"(dim={self.vector_dim}, fts={self._fts_ready}) in {load_time:.2f}ms"
            )

    def _open_collection(self):
        """Create or get the ChromaDB collection and check its dimension (sync)"""
        self.persist_directory.mkdir(parents=True, exist_ok=True)

        client = chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=Settings(
                anonymized_telemetry=False,
                allow_reset=True
            )
        )
        collection = client.get_or_create_collection(
            name=self.collection_name,
            metadata={"description": "Long-term agent memories"},
            embedding_function=None
        )

        sample = collection.get(limit=1, include=["embeddings"])
        embeddings = _column(sample, "embeddings")
        if len(embeddings) > 0:
            existing_dim = len(embeddings[0])
            if existing_dim != self.vector_dim:
                raise DimensionMismatchError(
                    self.vector_dim, existing_dim,
                    context=f"Stored collection '{self.collection_name}' vector"
                )

        return client, collection

    async def _backfill_lexical_index(self):
        """Index collection rows written while no lexical index existed"""
        indexed, total = await asyncio.gather(self.lexical.count(), asyncio.to_thread(self.collection.count))
        if indexed > 0 or total == 0:
            return

        rows = await asyncio.to_thread(self.collection.get, include=["documents", "metadatas"])
        ids = _column(rows, "ids")
        documents = _column(rows, "documents")
        metadatas = _column(rows, "metadatas")

        await self.lexical.add(
            (memory_id, documents[i] or "", (metadatas[i] or {}).get("scope") or DEFAULT_SCOPE)
            for i, memory_id in enumerate(ids)
        )
        self.logger.info(f"Populated lexical index with {len(ids)} existing memories")

    # Row conversion

    def _row_to_entry(self, memory_id: str, document: Optional[str], metadata: Optional[Dict[str, Any]],
                      embedding: Any = None) -> MemoryEntry:
        metadata = metadata or {}

        category = metadata.get("category", MemoryCategory.OTHER.value)
        if category not in MemoryCategory._value2member_map_:
            category = MemoryCategory.OTHER.value

        return MemoryEntry(
            id=memory_id,
            text=document or "",
            vector=[float(v) for v in embedding] if embedding is not None else [],
            category=category,
            scope=metadata.get("scope") or DEFAULT_SCOPE,
            importance=float(metadata.get("importance", DEFAULT_IMPORTANCE)),
            timestamp=int(metadata.get("timestamp") or 1),
            metadata=metadata.get("metadata") or "{}"
        )

    @staticmethod
    def _entry_metadata(entry: MemoryEntry) -> Dict[str, Any]:
        return {
            "category": entry.category.value,
            "scope": entry.scope,
            "importance": float(entry.importance),
            "timestamp": int(entry.timestamp),
            "metadata": entry.metadata,
        }

    @staticmethod
    def _scope_where(scope_filter: Optional[List[str]], category: Optional[str] = None) -> Optional[Dict[str, Any]]:
        conditions = []
        if scope_filter:
            conditions.append({"scope": {"$in": list(scope_filter)}})
        if category:
            conditions.append({"category": category})
        if not conditions:
            return None
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}

    @staticmethod
    def _in_scope(scope: Optional[str], scope_filter: Optional[List[str]]) -> bool:
        # Rows without a scope are visible to every filter
        return not scope_filter or scope is None or scope in scope_filter

    def _check_vector(self, vector: Optional[List[float]]) -> List[float]:
        if not isinstance(vector, (list, tuple)):
            raise DimensionMismatchError(self.vector_dim, "non-array")
        if len(vector) != self.vector_dim:
            raise DimensionMismatchError(self.vector_dim, len(vector))
        return [float(v) for v in vector]

    async def _insert(self, entry: MemoryEntry):
        await asyncio.to_thread(
            self.collection.add,
            ids=[entry.id],
            embeddings=[entry.vector],
            documents=[entry.text],
            metadatas=[self._entry_metadata(entry)]
        )
        if self._fts_ready:
            try:
                await self.lexical.add([(entry.id, entry.text, entry.scope)])
            except sqlite3.Error as e:
                self.logger.warning(f"Lexical index write failed for {entry.id}: {e}")

    async def _remove(self, ids: List[str]):
        if not ids:
            return
        await asyncio.to_thread(self.collection.delete, ids=ids)
        if self._fts_ready:
            try:
                await self.lexical.delete(ids)
            except sqlite3.Error as e:
                self.logger.warning(f"Lexical index delete failed for {len(ids)} ids: {e}")

    async def _get_entries(self, ids: List[str], with_vectors: bool = True) -> Dict[str, MemoryEntry]:
        if not ids:
            return {}
        include = ["documents", "metadatas"] + (["embeddings"] if with_vectors else [])
        rows = await asyncio.to_thread(self.collection.get, ids=list(ids), include=include)

        row_ids = _column(rows, "ids")
        documents = _column(rows, "documents")
        metadatas = _column(rows, "metadatas")
        embeddings = _column(rows, "embeddings") if with_vectors else []

        return {
            memory_id: self._row_to_entry(
                memory_id, documents[i], metadatas[i],
                embeddings[i] if with_vectors else None
            )
            for i, memory_id in enumerate(row_ids)
        }

    # Writes

    async def store(self, draft: Union[MemoryDraft, Dict[str, Any]]) -> MemoryEntry:
        """
        Persist a new memory.

        Assigns id and timestamp when the draft has none and defaults metadata
        to "{}". No duplicate-content detection happens here.

        Raises:
            DimensionMismatchError: Vector length differs from the configured dimension
            ValidationError: Draft fields are malformed or the id already exists
        """
        await self.initialize()

        try:
            if not isinstance(draft, MemoryDraft):
                draft = MemoryDraft(**draft)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid memory draft: {e}") from e

        vector = self._check_vector(draft.vector)

        entry = MemoryEntry(
            id=draft.id or str(uuid.uuid4()),
            text=draft.text,
            vector=vector,
            category=draft.category,
            scope=draft.scope,
            importance=draft.importance,
            timestamp=draft.timestamp or now_ms(),
            metadata=draft.metadata or "{}"
        )

        if draft.id and await self.has_id(entry.id):
            raise ValidationError(f"Memory id already exists: {entry.id}")

        await self._insert(entry)
        self.logger.debug(f"Stored memory '{entry.id}' in scope '{entry.scope}'")
        return entry

    async def import_entry(self, entry: Union[MemoryEntry, Dict[str, Any]]) -> MemoryEntry:
        """
        Insert an entry that already carries a stable id (migration, re-embed).

        Missing scope becomes "global", missing or invalid importance 0.7 and
        missing timestamp the current time.

        Raises:
            MissingIdError: No id supplied
            DimensionMismatchError: Vector length differs from the configured dimension
            ValidationError: Id already stored or other fields malformed
        """
        await self.initialize()

        data = entry.model_dump() if isinstance(entry, MemoryEntry) else dict(entry)

        memory_id = data.get("id")
        if not memory_id or not isinstance(memory_id, str):
            raise MissingIdError("import_entry requires a stable id")

        vector = self._check_vector(data.get("vector") or [])

        importance = data.get("importance")
        if (not isinstance(importance, (int, float)) or isinstance(importance, bool)
                or not math.isfinite(importance) or not 0.0 <= importance <= 1.0):
            importance = DEFAULT_IMPORTANCE

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp) or timestamp <= 0:
            timestamp = now_ms()

        try:
            full = MemoryEntry(
                id=memory_id,
                text=data.get("text") or "",
                vector=vector,
                category=data.get("category") or MemoryCategory.OTHER,
                scope=data.get("scope") or DEFAULT_SCOPE,
                importance=importance,
                timestamp=int(timestamp),
                metadata=data.get("metadata") or "{}"
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid memory entry {memory_id}: {e}") from e

        if await self.has_id(full.id):
            raise ValidationError(f"Memory id already exists: {full.id}")

        await self._insert(full)
        return full

    # Reads

    async def has_id(self, memory_id: str) -> bool:
        await self.initialize()
        result = await asyncio.to_thread(self.collection.get, ids=[memory_id], include=[])
        return len(_column(result, "ids")) > 0

    async def count(self) -> int:
        await self.initialize()
        return await asyncio.to_thread(self.collection.count)

    async def vector_search(
        self,
        query_vector: List[float],
        limit: int = 5,
        min_score: float = 0.3,
        scope_filter: Optional[List[str]] = None
    ) -> List[MemorySearchResult]:
        """
        Nearest-neighbour search over stored vectors.

        Scores are 1/(1+distance); hits below min_score are dropped and at most
        min(limit, 20) results come back.
        """
        await self.initialize()

        query_vector = self._check_vector(query_vector)
        safe_limit = clamp_int(limit, 1, MAX_SEARCH_LIMIT)
        fetch_limit = min(safe_limit * 10, MAX_FETCH_LIMIT)
        where = self._scope_where(scope_filter)

        def _query():
            total = self.collection.count()
            if total == 0:
                return None
            return self.collection.query(
                query_embeddings=[query_vector],
                n_results=min(fetch_limit, total),
                where=where,
                include=["documents", "metadatas", "embeddings", "distances"]
            )

        start_time = time.time()
        results = await asyncio.to_thread(_query)
        if results is None:
            return []

        ids = _column(results, "ids")
        ids = ids[0] if len(ids) else []
        documents = _column(results, "documents")[0]
        metadatas = _column(results, "metadatas")[0]
        embeddings = _column(results, "embeddings")[0]
        distances = _column(results, "distances")[0]

        mapped: List[MemorySearchResult] = []
        for i, memory_id in enumerate(ids):
            score = distance_to_score(distances[i])
            if score < min_score:
                continue

            metadata = metadatas[i] or {}
            if not self._in_scope(metadata.get("scope"), scope_filter):
                continue

            entry = self._row_to_entry(memory_id, documents[i], metadata, embeddings[i])
            mapped.append(MemorySearchResult(entry=entry, score=score))

            if len(mapped) >= safe_limit:
                break

        search_time = (time.time() - start_time) * 1000
        self.logger.debug(f"Vector search returned {len(mapped)} memories in {search_time:.2f}ms")
        return mapped

    async def bm25_search(
        self,
        query_text: str,
        limit: int = 5,
        scope_filter: Optional[List[str]] = None
    ) -> List[MemorySearchResult]:
        """
        Keyword search through the lexical index.

        Returns [] instead of raising when no lexical index exists or the
        backend fails.
        """
        await self.initialize()

        if not self._fts_ready:
            return []

        safe_limit = clamp_int(limit, 1, MAX_SEARCH_LIMIT)

        try:
            hits = await self.lexical.search(query_text, safe_limit, scope_filter)
            if not hits:
                return []

            entries = await self._get_entries([memory_id for memory_id, _ in hits])

            mapped: List[MemorySearchResult] = []
            for memory_id, raw_score in hits:
                entry = entries.get(memory_id)
                # Lexical rows can briefly outlive a delete that failed halfway
                if entry is None or not self._in_scope(entry.scope, scope_filter):
                    continue
                mapped.append(MemorySearchResult(entry=entry, score=normalize_bm25_score(raw_score)))
            return mapped

        except Exception as e:
            self.logger.warning(f"BM25 search failed, falling back to empty results: {e}")
            return []

    async def list(
        self,
        scope_filter: Optional[List[str]] = None,
        category: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[MemoryEntry]:
        """Entries without vectors, newest first, paginated"""
        await self.initialize()

        category_value = MemoryCategory(category).value if category else None
        rows = await asyncio.to_thread(
            self.collection.get,
            where=self._scope_where(scope_filter, category_value),
            include=["documents", "metadatas"]
        )

        ids = _column(rows, "ids")
        documents = _column(rows, "documents")
        metadatas = _column(rows, "metadatas")

        entries = [self._row_to_entry(memory_id, documents[i], metadatas[i]) for i, memory_id in enumerate(ids)]
        entries.sort(key=lambda e: e.timestamp or 0, reverse=True)

        offset = max(0, int(offset))
        return entries[offset:offset + max(0, int(limit))]

    async def stats(self, scope_filter: Optional[List[str]] = None) -> Dict[str, Any]:
        """Totals per scope and per category"""
        await self.initialize()

        rows = await asyncio.to_thread(
            self.collection.get,
            where=self._scope_where(scope_filter),
            include=["metadatas"]
        )
        metadatas = [m or {} for m in _column(rows, "metadatas")]

        scope_counts = Counter(m.get("scope") or DEFAULT_SCOPE for m in metadatas)
        category_counts = Counter(m.get("category") or MemoryCategory.OTHER.value for m in metadatas)

        return {
            "total_count": len(metadatas),
            "scope_counts": dict(scope_counts),
            "category_counts": dict(category_counts),
        }

    # Id resolution, update and delete

    async def _resolve(self, id_or_prefix: str) -> Optional[MemoryEntry]:
        """
        Resolve a full id or an 8+ character hex prefix to one entry.

        Returns None when nothing matches; raises AmbiguousPrefixError when a
        prefix matches several ids and ValidationError for anything that is
        neither a stored id nor a usable prefix.
        """
        if not id_or_prefix or not isinstance(id_or_prefix, str):
            raise ValidationError(f"Invalid memory ID format: {id_or_prefix!r}")

        exact = await self._get_entries([id_or_prefix])
        if id_or_prefix in exact:
            return exact[id_or_prefix]

        if UUID_RE.match(id_or_prefix):
            return None

        if not PREFIX_RE.match(id_or_prefix):
            raise ValidationError(f"Invalid memory ID format: {id_or_prefix}")

        all_rows = await asyncio.to_thread(self.collection.get, include=[])
        prefix = id_or_prefix.lower()
        matches = [memory_id for memory_id in _column(all_rows, "ids") if memory_id.lower().startswith(prefix)]

        if len(matches) > 1:
            raise AmbiguousPrefixError(id_or_prefix, sorted(matches))
        if not matches:
            return None

        return (await self._get_entries(matches)).get(matches[0])

    async def delete(self, id_or_prefix: str, scope_filter: Optional[List[str]] = None) -> bool:
        """
        Delete one memory by id or unique prefix.

        Returns:
            False when nothing matched

        Raises:
            AccessDeniedError: Entry lies outside scope_filter
            AmbiguousPrefixError: Prefix matched several memories
        """
        await self.initialize()

        entry = await self._resolve(id_or_prefix)
        if entry is None:
            return False

        if not self._in_scope(entry.scope, scope_filter):
            raise AccessDeniedError(entry.id, entry.scope)

        await self._remove([entry.id])
        self.logger.debug(f"Deleted memory '{entry.id}'")
        return True

    async def update(
        self,
        id_or_prefix: str,
        updates: Union[MemoryUpdate, Dict[str, Any]],
        scope_filter: Optional[List[str]] = None
    ) -> Optional[MemoryEntry]:
        """
        Merge partial fields onto a stored memory.

        The entry is re-persisted by delete then reinsert, which is not atomic:
        a crash between the two steps loses the entry. Id, scope and timestamp
        never change.

        Returns:
            The updated entry, or None when nothing matched
        """
        await self.initialize()

        try:
            if not isinstance(updates, MemoryUpdate):
                updates = MemoryUpdate(**updates)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid memory update: {e}") from e

        entry = await self._resolve(id_or_prefix)
        if entry is None:
            return None

        if not self._in_scope(entry.scope, scope_filter):
            raise AccessDeniedError(entry.id, entry.scope)

        changes = updates.model_dump(exclude_none=True)
        if "vector" in changes:
            changes["vector"] = self._check_vector(changes["vector"])

        updated = entry.model_copy(update=changes)
        # Re-validate merged fields
        updated = MemoryEntry(**updated.model_dump())

        await self._remove([entry.id])
        await self._insert(updated)

        self.logger.debug(f"Updated memory '{entry.id}' fields: {sorted(changes)}")
        return updated

    async def bulk_delete(self, scope_filter: List[str], before_timestamp: Optional[int] = None) -> int:
        """
        Delete every memory in the given scopes, optionally only older ones.

        Raises:
            ValidationError: Neither scopes nor a timestamp bound were given
        """
        await self.initialize()

        conditions = []
        if scope_filter:
            conditions.append({"scope": {"$in": list(scope_filter)}})
        if before_timestamp is not None:
            conditions.append({"timestamp": {"$lt": int(before_timestamp)}})

        if not conditions:
            raise ValidationError("Bulk delete requires at least scope or timestamp filter for safety")

        where = conditions[0] if len(conditions) == 1 else {"$and": conditions}
        rows = await asyncio.to_thread(self.collection.get, where=where, include=[])
        ids = list(_column(rows, "ids"))

        await self._remove(ids)

        self.logger.info(f"Bulk deleted {len(ids)} memories (scopes={scope_filter}, before={before_timestamp})")
        return len(ids)

    async def close(self):
        """Release the collection handle"""
        self.collection = None
        self.client = None
        self._fts_ready = False
        self.logger.debug("MemoryStore closed")

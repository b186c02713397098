"""
Shared data models for longmem.

These models are passed between the store, the embedding layer and the
retriever, so every component sees the same validated shapes.
"""

import json
import re
import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

MAX_TEXT_LENGTH = 10_000
DEFAULT_IMPORTANCE = 0.7
DEFAULT_SCOPE = "global"

SCOPE_PATTERN = re.compile(r"^(global|[A-Za-z][\w.-]*:\S+)$")


class MemoryCategory(str, Enum):
    """Kinds of facts a memory can hold"""
    PREFERENCE = "preference"
    FACT = "fact"
    DECISION = "decision"
    ENTITY = "entity"
    OTHER = "other"


def now_ms() -> int:
    """Current time as milliseconds since the epoch"""
    return int(time.time() * 1000)


def is_valid_scope(scope: Optional[str]) -> bool:
    """Check for "global" or a "<type>:<id>" namespace"""
    return bool(scope) and SCOPE_PATTERN.match(scope) is not None


def _check_scope(value: str) -> str:
    if not is_valid_scope(value):
        raise ValueError(f"Invalid scope '{value}': expected 'global' or '<type>:<id>'")
    return value


def _check_metadata(value: Optional[str]) -> str:
    if not value:
        return "{}"
    try:
        json.loads(value)
    except (TypeError, ValueError):
        raise ValueError("metadata must be a JSON string")
    return value


class MemoryDraft(BaseModel):
    """A memory before it is persisted; id and timestamp are optional"""
    text: str = Field(min_length=1, max_length=MAX_TEXT_LENGTH)
    vector: List[float]
    category: MemoryCategory = MemoryCategory.OTHER
    scope: str = DEFAULT_SCOPE
    importance: float = Field(default=DEFAULT_IMPORTANCE, ge=0.0, le=1.0)
    metadata: str = "{}"
    id: Optional[str] = None
    timestamp: Optional[int] = Field(default=None, gt=0)

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, value: str) -> str:
        return _check_scope(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, value: Optional[str]) -> str:
        return _check_metadata(value)


class MemoryEntry(BaseModel):
    """Persisted memory record"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), min_length=1)
    text: str = Field(max_length=MAX_TEXT_LENGTH)
    vector: List[float] = Field(default_factory=list)
    category: MemoryCategory = MemoryCategory.OTHER
    scope: str = DEFAULT_SCOPE
    importance: float = Field(default=DEFAULT_IMPORTANCE, ge=0.0, le=1.0)
    timestamp: int = Field(default_factory=now_ms, gt=0)
    metadata: str = "{}"

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, value: str) -> str:
        return _check_scope(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, value: Optional[str]) -> str:
        return _check_metadata(value)

    def without_vector(self) -> "MemoryEntry":
        """Copy with the vector stripped, for listings"""
        return self.model_copy(update={"vector": []})


class MemoryUpdate(BaseModel):
    """Partial update; fields left as None keep their stored value"""
    text: Optional[str] = Field(default=None, min_length=1, max_length=MAX_TEXT_LENGTH)
    vector: Optional[List[float]] = None
    category: Optional[MemoryCategory] = None
    importance: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[str] = None

    @field_validator("metadata")
    @classmethod
    def validate_metadata(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _check_metadata(value)


class MemorySearchResult(BaseModel):
    """A store hit: entry plus a [0, 1] relevance score"""
    entry: MemoryEntry
    score: float


class SourceScore(BaseModel):
    """Score and rank an entry received from one candidate source"""
    score: float
    rank: int


class StageScore(BaseModel):
    """Score an entry received at a pipeline stage"""
    score: float


class ResultSources(BaseModel):
    """Which pipeline stages contributed to a result"""
    vector: Optional[SourceScore] = None
    bm25: Optional[SourceScore] = None
    fused: Optional[StageScore] = None
    reranked: Optional[StageScore] = None

    def labels(self) -> List[str]:
        """Short source names, e.g. ["vector", "bm25", "reranked"]"""
        return [name for name in ("vector", "bm25", "fused", "reranked") if getattr(self, name) is not None]


class RetrievalResult(MemorySearchResult):
    """Retriever output with per-source observability"""
    sources: ResultSources = Field(default_factory=ResultSources)

    def with_score(self, score: float, **source_updates) -> "RetrievalResult":
        """Copy with a new score and optionally updated source entries"""
        sources = self.sources.model_copy(update=source_updates) if source_updates else self.sources
        return self.model_copy(update={"score": score, "sources": sources})

    def source_labels(self) -> List[str]:
        return self.sources.labels()

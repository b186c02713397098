"""
Shared core foundation for longmem.

Components:
- models: Shared data models (MemoryEntry, MemoryDraft, RetrievalResult, ...)
- errors: Error taxonomy raised by the store, embedding layer and retriever
- scopes: Per-agent scope access control
"""

from .models import (
    MemoryCategory,
    MemoryDraft,
    MemoryEntry,
    MemoryUpdate,
    MemorySearchResult,
    RetrievalResult,
    ResultSources,
    SourceScore,
    StageScore,
    DEFAULT_IMPORTANCE,
    DEFAULT_SCOPE,
    MAX_TEXT_LENGTH,
    is_valid_scope,
    now_ms
)

from .errors import (
    MemoryLayerError,
    ValidationError,
    MissingIdError,
    DimensionMismatchError,
    EmptyInputError,
    AccessDeniedError,
    ScopeDenied,
    AmbiguousPrefixError,
    VendorError
)

from .scopes import ScopeManager

__all__ = [
    # Data models
    "MemoryCategory",
    "MemoryDraft",
    "MemoryEntry",
    "MemoryUpdate",
    "MemorySearchResult",
    "RetrievalResult",
    "ResultSources",
    "SourceScore",
    "StageScore",
    "DEFAULT_IMPORTANCE",
    "DEFAULT_SCOPE",
    "MAX_TEXT_LENGTH",
    "is_valid_scope",
    "now_ms",

    # Errors
    "MemoryLayerError",
    "ValidationError",
    "MissingIdError",
    "DimensionMismatchError",
    "EmptyInputError",
    "AccessDeniedError",
    "ScopeDenied",
    "AmbiguousPrefixError",
    "VendorError",

    # Access control
    "ScopeManager"
]

"""
Error taxonomy for the memory layer.

Caller-correctable input problems and access violations raise; "nothing to do"
outcomes (unknown id, empty result) are returned as False/None/[] instead.
"""

from typing import List, Optional


class MemoryLayerError(Exception):
    """Base class for every error raised by longmem"""


class ValidationError(MemoryLayerError, ValueError):
    """Bad id format, bad vector dimension, missing required filter"""


class MissingIdError(ValidationError):
    """An import was attempted without a stable id"""


class DimensionMismatchError(ValidationError):
    """A vector does not match the configured dimension"""

    def __init__(self, expected: int, actual, context: str = "Vector"):
        self.expected = expected
        self.actual = actual
        super().__init__(f"{context} dimension mismatch: expected {expected}, got {actual}")


class EmptyInputError(ValidationError):
    """Empty or whitespace-only text passed to an embedding call"""


class AccessDeniedError(MemoryLayerError):
    """The resolved entry lives outside the caller's accessible scopes"""

    def __init__(self, memory_id: str, scope: str):
        self.memory_id = memory_id
        self.scope = scope
        super().__init__(f"Memory {memory_id} is outside accessible scopes (scope: {scope})")


ScopeDenied = AccessDeniedError


class AmbiguousPrefixError(MemoryLayerError):
    """A short id prefix matched more than one memory"""

    def __init__(self, prefix: str, matches: List[str]):
        self.prefix = prefix
        self.matches = matches
        shown = ", ".join(matches[:5])
        more = f" (+{len(matches) - 5} more)" if len(matches) > 5 else ""
        super().__init__(
            f'Ambiguous prefix "{prefix}" matches {len(matches)} memories: {shown}{more}. '
            "Use a longer prefix or full ID."
        )


class VendorError(MemoryLayerError):
    """An embedding, rerank or lexical backend call failed"""

    def __init__(self, message: str, status: Optional[int] = None, vendor: Optional[str] = None):
        self.status = status
        self.vendor = vendor
        super().__init__(message)

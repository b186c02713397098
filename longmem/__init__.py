"""
longmem: long-term memory for conversational agents

Scoped memory storage with hybrid vector + keyword retrieval.
"""

__version__ = "0.1.0"

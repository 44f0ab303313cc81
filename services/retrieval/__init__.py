"""Hybrid retrieval service layer.

Everything is kept in memory: a BM25 index and a numpy vector store built
from one immutable :class:`IndexSnapshot`, queried through
:class:`HybridRetriever`.
"""

from .hybrid import HybridRetriever, RetrievalResult, RetrievalState
from .collection import CollectionManager, IndexBuilder, IndexSnapshot, build_snapshot

__all__ = [
    "HybridRetriever",
    "RetrievalResult",
    "RetrievalState",
    "CollectionManager",
    "IndexBuilder",
    "IndexSnapshot",
    "build_snapshot",
]

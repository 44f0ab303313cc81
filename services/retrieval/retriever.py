"""Retrieval interfaces.

The core never talks to a concrete model or store directly: embeddings
come through :class:`Embedder` and downstream consumers only see
:class:`Retriever`.  Both are protocols so tests can drop in plain objects.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Protocol, Sequence, TypedDict

import numpy as np

from core.chunking import Chunk


class ScoreBreakdown(TypedDict):
    """Per-hit scores kept for observability and testing."""

    dense_score: float
    lexical_score: float
    fused_score: float
    rerank_score: float | None
    final_score: float
    lexical_weight: float
    dense_weight: float


class Hit(TypedDict, total=False):
    """Standardised return structure for search results."""

    chunk: Chunk
    score: float
    score_breakdown: ScoreBreakdown
    source_hits: int


class Embedder(Protocol):
    """Text embedding collaborator.

    Must be deterministic for identical input.  Vectors need not be
    normalised; cosine similarity is computed by the caller.
    """

    def embed(self, text: str) -> Sequence[float]:
        ...

    def embed_batch(self, texts: List[str]) -> List[Sequence[float]]:
        ...


class Retriever(Protocol):
    """Protocol implemented by query-time retrievers."""

    def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        options: Dict[str, Any] | None = None,
    ) -> Any:
        """Return a ranked result for ``query``.

        Parameters
        ----------
        query:
            Natural-language query, any script.
        top_k:
            Maximum number of hits; the configured default when omitted.
        options:
            Per-query overrides (``where``, ``dedupe_sources``,
            ``timeout``...).
        """

        ...


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine of two vectors; 0.0 for missing, empty or zero-length input."""
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0 or math.isnan(denom):
        return 0.0
    return float(np.dot(va, vb) / denom)

"""Dense vector store kept in a single numpy matrix.

Cosine similarity is computed against row-normalised copies of the stored
embeddings; the originals are kept untouched for persistence.  Chunks
without an embedding are simply absent from the store.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import numpy as np

from core.chunking import Chunk
from .filters import build_where, filter_fields

logger = logging.getLogger(__name__)


class VectorLocal:
    def __init__(self) -> None:
        self._ids: List[str] = []
        self._fields: List[Dict[str, Any]] = []
        self._raw: Dict[str, np.ndarray] = {}
        self._matrix: np.ndarray | None = None

    # ------------------------------------------------------------------ build
    def build(self, items: Iterable[Tuple[Chunk, Sequence[float] | None]]) -> "VectorLocal":
        """Load ``(chunk, embedding)`` pairs, replacing previous content."""
        ids: List[str] = []
        fields: List[Dict[str, Any]] = []
        rows: List[np.ndarray] = []
        dim = None
        for chunk, emb in items:
            if emb is None:
                continue
            vec = np.asarray(emb, dtype=np.float32)
            if vec.size == 0:
                logger.warning("empty embedding for chunk %s, skipped", chunk.id)
                continue
            if dim is None:
                dim = vec.shape[0]
            elif vec.shape[0] != dim:
                raise ValueError(f"embedding dimension mismatch for {chunk.id}: {vec.shape[0]} != {dim}")
            ids.append(chunk.id)
            fields.append(filter_fields(chunk))
            rows.append(vec)

        self._ids = ids
        self._fields = fields
        self._raw = dict(zip(ids, rows))
        if rows:
            matrix = np.vstack(rows)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._matrix = matrix / norms
        else:
            self._matrix = None
        logger.info("vector store: %d embeddings, dim=%s", len(ids), dim)
        return self

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def dimension(self) -> int | None:
        return None if self._matrix is None else int(self._matrix.shape[1])

    def get(self, chunk_id: str) -> np.ndarray | None:
        return self._raw.get(chunk_id)

    # ------------------------------------------------------------------ query
    def search(
        self,
        embedding: Sequence[float],
        top_k: int = 10,
        where: Dict[str, Any] | None = None,
    ) -> List[Tuple[str, float]]:
        """Top ``top_k`` ``(chunk_id, cosine)`` pairs, best first."""
        if self._matrix is None or top_k <= 0:
            return []
        q = np.asarray(embedding, dtype=np.float32)
        if q.shape != (self._matrix.shape[1],):
            raise ValueError(f"query embedding has shape {q.shape}, store dim is {self._matrix.shape[1]}")
        norm = float(np.linalg.norm(q))
        if norm == 0.0:
            logger.warning("zero-length query embedding")
            return []
        sims = self._matrix @ (q / norm)
        # 稳定排序：分数相同按入库顺序
        order = np.argsort(-sims, kind="stable")
        pred = build_where(where)
        out: List[Tuple[str, float]] = []
        for idx in order:
            if where is not None and not pred(self._fields[idx]):
                continue
            out.append((self._ids[idx], float(sims[idx])))
            if len(out) >= top_k:
                break
        return out

    def stats(self) -> Dict[str, Any]:
        return {"vectors": len(self._ids), "dimension": self.dimension}

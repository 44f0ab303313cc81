# -*- coding: utf-8 -*-
"""Embedding collaborators and batched embedding of the corpus."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple

from core.config import RETRIEVAL
from core.errors import EmbeddingError

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """Embedder backed by a sentence-transformers model.

    The model is loaded on first use, so constructing the embedder is cheap
    and does not require ``sentence_transformers`` to be importable until a
    text is actually embedded.
    """

    def __init__(self, model_name: str | None = None, device: str | None = None) -> None:
        self.model_name = model_name or RETRIEVAL.embedding_model
        self.device = device
        self._model = None

    @property
    def model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise EmbeddingError("sentence-transformers is not installed") from e
            logger.info("loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name, device=self.device)
        return self._model

    @property
    def dimension(self) -> int:
        return int(self.model.get_sentence_embedding_dimension())

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        vectors = self.model.encode(list(texts), convert_to_numpy=True, show_progress_bar=False)
        return [v.tolist() for v in vectors]


def iter_embedding_batches(
    embedder: Any,
    texts: Sequence[str],
    batch_size: int = 32,
) -> Iterator[Tuple[int, List[Sequence[float]], Dict[str, Any]]]:
    """Embed ``texts`` in fixed-size rounds.

    Yields ``(start, vectors, progress)`` after every batch so the caller
    can observe partial progress (and stop early) without waiting for the
    whole corpus.  A failing batch raises :class:`EmbeddingError`.
    """
    total = len(texts)
    batches = (total + batch_size - 1) // batch_size
    for n, start in enumerate(range(0, total, batch_size), 1):
        batch = list(texts[start:start + batch_size])
        try:
            vectors = list(embedder.embed_batch(batch))
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"embedding batch {n}/{batches} failed: {e}") from e
        if len(vectors) != len(batch):
            raise EmbeddingError(f"embedding batch {n}/{batches} returned {len(vectors)} vectors for {len(batch)} texts")
        done = start + len(batch)
        progress = {
            "stage": "embedding",
            "batch": n,
            "batches": batches,
            "current": done,
            "total": total,
            "percent": round(done * 100 / total, 1),
        }
        logger.debug("embedded batch %d/%d (%d texts)", n, batches, len(batch))
        yield start, vectors, progress


def embed_all(
    embedder: Any,
    texts: Sequence[str],
    batch_size: int = 32,
    on_progress: Callable[[Dict[str, Any]], None] | None = None,
) -> List[Sequence[float]]:
    """Collect :func:`iter_embedding_batches` into one list."""
    out: List[Sequence[float]] = []
    for _, vectors, progress in iter_embedding_batches(embedder, texts, batch_size):
        out.extend(vectors)
        if on_progress:
            on_progress(progress)
    return out

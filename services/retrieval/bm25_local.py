"""In-memory BM25 index over chunk text.

Postings map every token to ``{chunk_id: term_frequency}``.  The index is
built once from the deduplicated corpus and never mutated afterwards; a new
corpus version means a new index.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from core.chunking import Chunk
from core.config import RetrievalConfig
from core.tokenize import tokenize_stream, unique
from .filters import build_where, filter_fields

logger = logging.getLogger(__name__)


class LexicalIndex:
    """Inverted index with BM25 scoring.

    ``k1`` controls term-frequency saturation and ``b`` document length
    normalisation.  IDF uses the non-negative ``log(1 + (N-df+0.5)/(df+0.5))``
    form so very common tokens never push a score below zero.
    """

    def __init__(self, k1: float = 1.2, b: float = 0.75) -> None:
        self.k1 = k1
        self.b = b
        self.postings: Dict[str, Dict[str, int]] = {}
        self.doc_lengths: Dict[str, int] = {}
        self.avg_doc_length = 0.0
        self._order: Dict[str, int] = {}
        self._fields: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def from_config(cls, config: RetrievalConfig | None = None) -> "LexicalIndex":
        cfg = config or RetrievalConfig()
        return cls(k1=cfg.bm25_k1, b=cfg.bm25_b)

    # ------------------------------------------------------------------ build
    def build(self, docs: Iterable[Chunk | Mapping[str, Any]]) -> "LexicalIndex":
        """Index ``docs`` (chunks or ``{id, text, metadata}`` mappings).

        Replaces whatever the index held before.
        """
        self.postings = {}
        self.doc_lengths = {}
        self._order = {}
        self._fields = {}
        for doc in docs:
            if isinstance(doc, Chunk):
                doc_id, text, fields = doc.id, doc.search_text(), filter_fields(doc)
            else:
                doc_id = str(doc["id"])
                text = str(doc.get("text") or "")
                fields = dict(doc.get("metadata") or {})
            if doc_id in self._order:
                logger.warning("duplicate document id %s, keeping the first", doc_id)
                continue
            stream = tokenize_stream(text)
            self._order[doc_id] = len(self._order)
            self._fields[doc_id] = fields
            self.doc_lengths[doc_id] = len(stream)
            for token, tf in Counter(stream).items():
                self.postings.setdefault(token, {})[doc_id] = tf
        total = sum(self.doc_lengths.values())
        self.avg_doc_length = total / len(self.doc_lengths) if self.doc_lengths else 0.0
        logger.info(
            "lexical index: %d documents, %d tokens, avg length %.1f",
            len(self.doc_lengths), len(self.postings), self.avg_doc_length,
        )
        return self

    def __len__(self) -> int:
        return len(self.doc_lengths)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self.doc_lengths

    # ------------------------------------------------------------------ scoring
    def idf(self, token: str) -> float:
        n = len(self.doc_lengths)
        df = len(self.postings.get(token, ()))
        if not n or not df:
            return 0.0
        return math.log(1 + (n - df + 0.5) / (df + 0.5))

    def _term_score(self, tf: int, doc_len: int, idf: float) -> float:
        avg = self.avg_doc_length or 1.0
        norm = self.k1 * (1 - self.b + self.b * doc_len / avg)
        return idf * tf * (self.k1 + 1) / (tf + norm)

    def search(
        self,
        tokens: Sequence[str],
        top_k: int = 10,
        where: Dict[str, Any] | None = None,
        normalize: bool = False,
    ) -> List[Tuple[str, float]]:
        """Rank documents by summed BM25 over ``tokens``.

        Only documents sharing at least one token are returned.  Ties keep
        index order.  With ``normalize`` scores are divided by the top
        score so they fall in ``[0, 1]``.
        """
        pred = build_where(where)
        scores: Dict[str, float] = {}
        for token in unique(tokens):
            posting = self.postings.get(token)
            if not posting:
                continue
            idf = self.idf(token)
            for doc_id, tf in posting.items():
                scores[doc_id] = scores.get(doc_id, 0.0) + self._term_score(tf, self.doc_lengths[doc_id], idf)
        ranked = [
            (doc_id, score) for doc_id, score in scores.items()
            if score > 0 and (where is None or pred(self._fields.get(doc_id, {})))
        ]
        ranked.sort(key=lambda x: (-x[1], self._order[x[0]]))
        ranked = ranked[:top_k]
        if normalize and ranked:
            top = ranked[0][1]
            ranked = [(doc_id, score / top) for doc_id, score in ranked]
        return ranked

    def explain(self, tokens: Sequence[str]) -> Dict[str, Any]:
        """Token coverage of a query: which tokens the corpus knows."""
        toks = unique(tokens)
        matched = {t: len(self.postings[t]) for t in toks if t in self.postings}
        missing = [t for t in toks if t not in self.postings]
        return {
            "tokens": toks,
            "matched": matched,
            "missing": missing,
            "coverage": len(matched) / len(toks) if toks else 0.0,
            "idf": {t: round(self.idf(t), 4) for t in matched},
        }

    def stats(self) -> Dict[str, Any]:
        return {
            "documents": len(self.doc_lengths),
            "vocabulary": len(self.postings),
            "postings": sum(len(p) for p in self.postings.values()),
            "avg_doc_length": round(self.avg_doc_length, 2),
            "k1": self.k1,
            "b": self.b,
        }

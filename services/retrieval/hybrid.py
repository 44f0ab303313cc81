# -*- coding: utf-8 -*-
"""Hybrid retrieval: dense + lexical search, dynamic fusion and rerank.

Query flow::

    IDLE -> QUERY_PROCESSING -> PARALLEL_SEARCH -> FUSION -> RERANK -> DONE

The two searches are independent reads of an immutable index and run on a
thread pool.  A failed (or timed out) dense search degrades the query to
lexical-only scoring and the result says so; a failed lexical search
degrades to dense-only.  Nothing is retried here.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from core.chunking import Chunk
from core.config import RetrievalConfig
from core.errors import EmbeddingError, IndexUnavailableError, RetrievalError
from core.tokenize import tokenize
from services.dedup import dedupe_by_source
from .bm25_local import LexicalIndex
from .intents import FusionWeights, IntentDetector, QueryAnalysis
from .query_expander import QueryExpander, QueryExpansion
from .retriever import Embedder, Hit, ScoreBreakdown, cosine_similarity
from .vector_local import VectorLocal

logger = logging.getLogger(__name__)

DEGRADED_LEXICAL_ONLY = "lexical_only"
DEGRADED_DENSE_ONLY = "dense_only"


class RetrievalState(str, Enum):
    IDLE = "idle"
    QUERY_PROCESSING = "query_processing"
    PARALLEL_SEARCH = "parallel_search"
    FUSION = "fusion"
    RERANK = "rerank"
    DONE = "done"


@dataclass
class RetrievalResult:
    """Ranked hits plus everything needed to explain them."""

    query: str
    hits: List[Hit] = field(default_factory=list)
    expansion: QueryExpansion | None = None
    analysis: QueryAnalysis | None = None
    weights: FusionWeights | None = None
    states: List[str] = field(default_factory=list)
    degraded: str | None = None
    errors: Dict[str, str] = field(default_factory=dict)
    timings: Dict[str, float] = field(default_factory=dict)
    candidates: Dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.hits)

    def __iter__(self):
        return iter(self.hits)

    @property
    def chunk_ids(self) -> List[str]:
        return [h["chunk"].id for h in self.hits]

    def to_dict(self) -> Dict[str, Any]:
        hits = []
        for h in self.hits:
            item = {
                "id": h["chunk"].id,
                "chunk": h["chunk"].to_dict(),
                "score": round(h["score"], 6),
                "score_breakdown": dict(h["score_breakdown"]),
            }
            if "source_hits" in h:
                item["source_hits"] = h["source_hits"]
            hits.append(item)
        return {
            "query": self.query,
            "hits": hits,
            "expansion": self.expansion.to_dict() if self.expansion else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "weights": self.weights.to_dict() if self.weights else None,
            "states": list(self.states),
            "degraded": self.degraded,
            "errors": dict(self.errors),
            "timings": {k: round(v, 2) for k, v in self.timings.items()},
            "candidates": dict(self.candidates),
        }


class HybridRetriever:
    """Query-time orchestrator over a lexical index and a vector store.

    Every collaborator is passed in; several retrievers over different
    indexes can live side by side.
    """

    def __init__(
        self,
        chunks: Mapping[str, Chunk] | Sequence[Chunk],
        lexical: LexicalIndex | None,
        vectors: VectorLocal | None,
        embedder: Embedder | None = None,
        config: RetrievalConfig | None = None,
        expander: QueryExpander | None = None,
        detector: IntentDetector | None = None,
    ) -> None:
        self.config = config or RetrievalConfig()
        if isinstance(chunks, Mapping):
            self.chunks: Dict[str, Chunk] = dict(chunks)
        else:
            self.chunks = {c.id: c for c in chunks}
        self.lexical = lexical
        self.vectors = vectors
        self.embedder = embedder
        self.expander = expander or QueryExpander(max_expansions=self.config.max_expansions)
        self.detector = detector or IntentDetector(self.config)

    @classmethod
    def from_snapshot(cls, snapshot: Any, embedder: Embedder | None = None, **kwargs: Any) -> "HybridRetriever":
        kwargs.setdefault("config", snapshot.config)
        return cls(snapshot.chunks, snapshot.lexical, snapshot.vectors, embedder=embedder, **kwargs)

    # ------------------------------------------------------------------ search paths
    def _dense_search(
        self, text: str, top_k: int, where: Dict[str, Any] | None,
    ) -> Tuple[List[float], List[Tuple[str, float]]]:
        if self.embedder is None:
            raise EmbeddingError("no embedder configured")
        try:
            embedding = list(self.embedder.embed(text))
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"query embedding failed: {e}") from e
        if not embedding:
            raise EmbeddingError("query embedding is empty")
        return embedding, self.vectors.search(embedding, top_k, where=where)

    def _lexical_search(
        self, expansion: QueryExpansion, top_k: int, where: Dict[str, Any] | None,
    ) -> List[Tuple[str, float]]:
        tokens = tokenize(expansion.original)
        if expansion.expanded_text != expansion.original:
            tokens += [t for t in tokenize(expansion.expanded_text) if t not in tokens]
        return self.lexical.search(tokens, top_k, where=where, normalize=True)

    def _parallel_search(
        self,
        expansion: QueryExpansion,
        dense_k: int,
        lexical_k: int,
        where: Dict[str, Any] | None,
        timeout: float | None,
        result: RetrievalResult,
    ) -> Tuple[List[float] | None, List[Tuple[str, float]] | None, List[Tuple[str, float]] | None]:
        query_embedding = None
        dense: List[Tuple[str, float]] | None = None
        lexical: List[Tuple[str, float]] | None = None

        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="hybrid")
        submit_times = {}
        future_to_source = {}
        submit_times["dense"] = time.perf_counter()
        future_to_source[executor.submit(self._dense_search, expansion.expanded_text, dense_k, where)] = "dense"
        submit_times["lexical"] = time.perf_counter()
        future_to_source[executor.submit(self._lexical_search, expansion, lexical_k, where)] = "lexical"
        try:
            for future in as_completed(future_to_source, timeout=timeout):
                source = future_to_source[future]
                result.timings[f"{source}_ms"] = (time.perf_counter() - submit_times[source]) * 1000
                try:
                    value = future.result()
                except Exception as exc:
                    logger.warning("%s search failed: %s", source, exc)
                    result.errors[source] = str(exc)
                    continue
                if source == "dense":
                    query_embedding, dense = value
                else:
                    lexical = value
        except FuturesTimeoutError:
            logger.warning("search timeout after %.2fs: some paths did not respond in time", timeout)
            for future, source in future_to_source.items():
                if not future.done():
                    future.cancel()
                    result.errors.setdefault(source, "timeout")
        finally:
            executor.shutdown(wait=False)
        return query_embedding, dense, lexical

    # ------------------------------------------------------------------ fusion / rerank
    @staticmethod
    def fuse(
        dense: Sequence[Tuple[str, float]],
        lexical: Sequence[Tuple[str, float]],
        weights: FusionWeights,
    ) -> List[Tuple[str, ScoreBreakdown]]:
        """Merge both result lists by chunk id and blend their scores.

        Candidates appear in dense order first, then lexical-only ones in
        lexical order; the stable sort keeps that order for equal scores.
        """
        dense_scores: Dict[str, float] = {}
        lexical_scores: Dict[str, float] = {}
        order: List[str] = []
        for cid, score in dense:
            if cid not in dense_scores:
                dense_scores[cid] = max(0.0, float(score))
                order.append(cid)
        for cid, score in lexical:
            if cid not in lexical_scores:
                lexical_scores[cid] = float(score)
                if cid not in dense_scores:
                    order.append(cid)

        fused: List[Tuple[str, ScoreBreakdown]] = []
        for cid in order:
            d = dense_scores.get(cid, 0.0)
            lx = lexical_scores.get(cid, 0.0)
            score = weights.dense * d + weights.lexical * lx
            fused.append((cid, ScoreBreakdown(
                dense_score=d,
                lexical_score=lx,
                fused_score=score,
                rerank_score=None,
                final_score=score,
                lexical_weight=weights.lexical,
                dense_weight=weights.dense,
            )))
        fused.sort(key=lambda item: item[1]["fused_score"], reverse=True)
        return fused

    def rerank(
        self,
        fused: Sequence[Tuple[str, ScoreBreakdown]],
        query_embedding: Sequence[float] | None,
        min_score: float,
    ) -> List[Tuple[str, ScoreBreakdown]]:
        """Blend fusion score with query/candidate cosine and drop weak hits.

        Candidates without an embedding (or when the query has none) keep
        their fused score.
        """
        cfg = self.config
        out: List[Tuple[str, ScoreBreakdown]] = []
        for cid, breakdown in fused:
            breakdown = ScoreBreakdown(**breakdown)
            cand = self.vectors.get(cid) if (self.vectors is not None and query_embedding is not None) else None
            if cand is not None:
                cos = cosine_similarity(query_embedding, cand)
                breakdown["rerank_score"] = (
                    cfg.rerank_fusion_weight * breakdown["fused_score"]
                    + cfg.rerank_similarity_weight * cos
                )
                breakdown["final_score"] = breakdown["rerank_score"]
            if breakdown["final_score"] < min_score:
                continue
            out.append((cid, breakdown))
        out.sort(key=lambda item: item[1]["final_score"], reverse=True)
        return out

    # ------------------------------------------------------------------ entry point
    def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        options: Dict[str, Any] | None = None,
    ) -> RetrievalResult:
        """Run the full query flow for ``query``.

        ``options`` may carry ``where`` (metadata filter), ``dedupe_sources``,
        ``timeout`` (seconds), ``dense_top_k``, ``lexical_top_k`` and
        ``min_score``.

        Raises :class:`IndexUnavailableError` when the lexical index or the
        vector store is missing.
        """
        if self.lexical is None or self.vectors is None:
            missing = "lexical index" if self.lexical is None else "vector store"
            raise IndexUnavailableError(f"{missing} is not loaded")

        cfg = self.config
        opts = dict(options or {})
        top_k = top_k or cfg.rerank_top_k
        where = opts.get("where")
        timeout = opts.get("timeout", cfg.query_timeout_sec)
        min_score = float(opts.get("min_score", cfg.min_score))
        started = time.perf_counter()

        result = RetrievalResult(query=query, states=[RetrievalState.IDLE.value])

        # -- query processing
        result.states.append(RetrievalState.QUERY_PROCESSING.value)
        result.expansion = self.expander.expand(query)
        result.analysis = self.detector.analyze(query)
        weights = result.analysis.weights

        # -- parallel search
        result.states.append(RetrievalState.PARALLEL_SEARCH.value)
        query_embedding, dense, lexical = self._parallel_search(
            result.expansion,
            int(opts.get("dense_top_k", cfg.dense_top_k)),
            int(opts.get("lexical_top_k", cfg.lexical_top_k)),
            where,
            timeout,
            result,
        )
        if dense is None and lexical is None:
            raise RetrievalError(f"both search paths failed: {result.errors}")
        if dense is None:
            result.degraded = DEGRADED_LEXICAL_ONLY
            weights = FusionWeights(lexical=1.0, dense=0.0, reason=DEGRADED_LEXICAL_ONLY)
            dense = []
            logger.warning("query %r degraded to lexical-only: %s", query, result.errors.get("dense"))
        elif lexical is None:
            result.degraded = DEGRADED_DENSE_ONLY
            weights = FusionWeights(lexical=0.0, dense=1.0, reason=DEGRADED_DENSE_ONLY)
            lexical = []
            logger.warning("query %r degraded to dense-only: %s", query, result.errors.get("lexical"))
        result.weights = weights
        result.candidates = {"dense": len(dense), "lexical": len(lexical)}

        # -- fusion
        result.states.append(RetrievalState.FUSION.value)
        fused = self.fuse(dense, lexical, weights)
        result.candidates["fused"] = len(fused)

        # -- rerank
        result.states.append(RetrievalState.RERANK.value)
        ranked = self.rerank(fused, query_embedding, min_score)
        hits: List[Hit] = []
        for cid, breakdown in ranked:
            chunk = self.chunks.get(cid)
            if chunk is None:
                logger.warning("hit %s has no chunk record, dropped", cid)
                continue
            hits.append(Hit(chunk=chunk, score=breakdown["final_score"], score_breakdown=breakdown))
        if opts.get("dedupe_sources", cfg.dedupe_sources):
            hits = dedupe_by_source(hits)
        result.hits = hits[:top_k]

        result.states.append(RetrievalState.DONE.value)
        result.timings["total_ms"] = (time.perf_counter() - started) * 1000
        logger.debug(
            "query %r: %d dense, %d lexical, %d fused -> %d hits (weights %s)",
            query, len(dense), len(lexical), len(fused), len(result.hits), weights.to_dict(),
        )
        return result

    def stats(self) -> Dict[str, Any]:
        return {
            "chunks": len(self.chunks),
            "lexical": self.lexical.stats() if self.lexical is not None else None,
            "vectors": self.vectors.stats() if self.vectors is not None else None,
            "embedder": type(self.embedder).__name__ if self.embedder is not None else None,
            "expander_cache": self.expander.cache_info()._asdict(),
        }

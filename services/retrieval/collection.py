# -*- coding: utf-8 -*-
"""Index build pipeline, immutable snapshots and named collections.

A build runs once over the whole corpus::

    raw chunks -> hygiene -> dedup -> lexical index + batched embedding

and produces an :class:`IndexSnapshot`.  Snapshots are never mutated; a
new corpus version means a new build.  On disk a collection lives under::

    data/collections/<name>/
        index.jsonl        (or index.parquet)
        snapshots/
"""
from __future__ import annotations

import datetime as _dt
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Sequence

from core.chunking import Chunk, load_records, persist_records
from core.config import CFG, ROOT_DIR, RetrievalConfig
from core.errors import IndexUnavailableError
from core.hygiene import ChunkHygiene, HygieneBatchResult
from services.dedup import DedupResult, DeduplicationEngine
from services.embedding import iter_embedding_batches
from .bm25_local import LexicalIndex
from .glossary import load_glossary
from .hybrid import HybridRetriever, RetrievalResult
from .intents import IntentDetector
from .query_expander import QueryExpander
from .retriever import Embedder
from .vector_local import VectorLocal

logger = logging.getLogger(__name__)

ProgressFn = Callable[[Dict[str, Any]], None]


@dataclass
class IndexSnapshot:
    """Everything a query needs, built in one pass and then read-only."""

    chunks: Dict[str, Chunk]
    lexical: LexicalIndex
    vectors: VectorLocal
    embeddings: Dict[str, List[float]] = field(default_factory=dict)
    config: RetrievalConfig = field(default_factory=RetrievalConfig)
    hygiene: HygieneBatchResult | None = None
    dedup: DedupResult | None = None
    built_at: str = field(default_factory=lambda: _dt.datetime.now().isoformat(timespec="seconds"))

    def __len__(self) -> int:
        return len(self.chunks)

    def records(self) -> List[Dict[str, Any]]:
        """Rows of the persisted artifact, in corpus order."""
        return [c.to_record(self.embeddings.get(cid)) for cid, c in self.chunks.items()]

    def save(self, path: str | Path) -> Path:
        out = persist_records(self.records(), path)
        logger.info("saved %d records to %s", len(self.chunks), out)
        return out

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        config: RetrievalConfig | None = None,
    ) -> "IndexSnapshot":
        """Rebuild the in-memory indexes from persisted rows, no re-embedding."""
        cfg = config or RetrievalConfig()
        chunks: Dict[str, Chunk] = {}
        embeddings: Dict[str, List[float]] = {}
        for rec in records:
            chunk = Chunk.from_record(rec)
            chunks[chunk.id] = chunk
            if rec.get("embedding") is not None:
                embeddings[chunk.id] = list(rec["embedding"])
        lexical = LexicalIndex.from_config(cfg).build(chunks.values())
        vectors = VectorLocal().build((c, embeddings.get(cid)) for cid, c in chunks.items())
        return cls(chunks=chunks, lexical=lexical, vectors=vectors, embeddings=embeddings, config=cfg)

    @classmethod
    def load(cls, path: str | Path, config: RetrievalConfig | None = None) -> "IndexSnapshot":
        try:
            records = load_records(path)
        except FileNotFoundError as e:
            raise IndexUnavailableError(str(e)) from e
        return cls.from_records(records, config)

    def stats(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "chunks": len(self.chunks),
            "sources": len({c.source_id for c in self.chunks.values()}),
            "embedded": len(self.embeddings),
            "built_at": self.built_at,
            "lexical": self.lexical.stats(),
            "vectors": self.vectors.stats(),
        }
        if self.hygiene is not None:
            out["hygiene"] = self.hygiene.stats()
        if self.dedup is not None:
            out["dedup"] = self.dedup.stats()
        return out


class IndexBuilder:
    """Run the build pipeline.

    Without an embedder the snapshot is lexical-only: the vector store is
    loaded but empty and every query runs degraded.
    """

    def __init__(
        self,
        config: RetrievalConfig | None = None,
        embedder: Embedder | None = None,
        hygiene: ChunkHygiene | None = None,
        dedup: DeduplicationEngine | None = None,
    ) -> None:
        self.config = config or RetrievalConfig()
        self.embedder = embedder
        self.hygiene = hygiene or ChunkHygiene(self.config)
        self.dedup = dedup or DeduplicationEngine(self.config)

    def iter_build(self, raws: Iterable[Mapping[str, Any]]) -> Iterator[Dict[str, Any]]:
        """Generator form of :meth:`build`.

        Yields progress dicts; the last one has ``stage == "done"`` and
        carries the finished snapshot under ``"snapshot"``.
        """
        events: List[Dict[str, Any]] = []
        checked = self.hygiene.process_batch(raws, on_progress=events.append)
        yield from events
        events.clear()

        deduped = self.dedup.deduplicate(checked.chunks, on_progress=events.append)
        yield from events
        events.clear()

        kept = deduped.kept
        lexical = LexicalIndex.from_config(self.config).build(kept)
        yield {"stage": "lexical", "current": len(kept), "total": len(kept)}

        embeddings: Dict[str, List[float]] = {}
        if self.embedder is None:
            logger.warning("no embedder given, building a lexical-only index")
        else:
            texts = [c.search_text() for c in kept]
            for start, vectors, progress in iter_embedding_batches(
                self.embedder, texts, self.config.embed_batch_size,
            ):
                for offset, vec in enumerate(vectors):
                    embeddings[kept[start + offset].id] = [float(x) for x in vec]
                yield progress

        vectors = VectorLocal().build((c, embeddings.get(c.id)) for c in kept)
        snapshot = IndexSnapshot(
            chunks={c.id: c for c in kept},
            lexical=lexical,
            vectors=vectors,
            embeddings=embeddings,
            config=self.config,
            hygiene=checked,
            dedup=deduped,
        )
        logger.info(
            "index built: %d raw -> %d accepted -> %d kept, %d embedded",
            len(checked.chunks) + len(checked.rejected) + len(checked.hash_duplicates),
            len(checked.chunks), len(kept), len(embeddings),
        )
        yield {"stage": "done", "current": len(kept), "total": len(kept), "snapshot": snapshot}

    def build(self, raws: Iterable[Mapping[str, Any]], on_progress: ProgressFn | None = None) -> IndexSnapshot:
        snapshot = None
        for event in self.iter_build(raws):
            if event["stage"] == "done":
                snapshot = event["snapshot"]
            elif on_progress:
                on_progress(event)
        return snapshot


class CollectionManager:
    """Named collections, each one snapshot plus its retriever.

    Paths come from the ``[collections]`` table of ``config.toml``
    (``name = "path/to/dir"``); unknown names live under
    ``data/collections/<name>``.
    """

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        retrieval: RetrievalConfig | None = None,
        embedder: Embedder | None = None,
        index_format: str = "jsonl",
    ) -> None:
        cfg = CFG if config is None else config
        self.retrieval = retrieval or RetrievalConfig.from_mapping(cfg.get("retrieval"))
        self.embedder = embedder
        # 所有集合共用同一套词表与意图规则
        self.expander = QueryExpander(
            load_glossary(str(cfg.get("glossary_path") or "")),
            max_expansions=self.retrieval.max_expansions,
        )
        self.detector = IntentDetector(self.retrieval)
        self.index_format = index_format
        self.paths: Dict[str, Path] = {
            name: self._resolve(path) for name, path in (cfg.get("collections") or {}).items()
        }
        self._snapshots: Dict[str, IndexSnapshot] = {}
        self._retrievers: Dict[str, HybridRetriever] = {}

    @staticmethod
    def _resolve(path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else ROOT_DIR / p

    def path_for(self, name: str) -> Path:
        return self.paths.setdefault(name, ROOT_DIR / "data" / "collections" / name)

    def index_file(self, name: str) -> Path:
        base = self.path_for(name)
        parquet = base / "index.parquet"
        if self.index_format == "parquet" or (parquet.exists() and not (base / "index.jsonl").exists()):
            return parquet
        return base / "index.jsonl"

    # ------------------------------------------------------------------
    def names(self) -> List[str]:
        return sorted(set(self.paths) | set(self._snapshots))

    def _install(self, name: str, snapshot: IndexSnapshot) -> HybridRetriever:
        self._snapshots[name] = snapshot
        retriever = HybridRetriever.from_snapshot(
            snapshot, embedder=self.embedder, expander=self.expander, detector=self.detector,
        )
        self._retrievers[name] = retriever
        return retriever

    def build(
        self,
        name: str,
        raws: Iterable[Mapping[str, Any]],
        on_progress: ProgressFn | None = None,
        persist: bool = True,
    ) -> IndexSnapshot:
        """Build ``name`` from raw chunks and swap it in."""
        builder = IndexBuilder(self.retrieval, embedder=self.embedder)
        snapshot = builder.build(raws, on_progress=on_progress)
        if persist:
            snapshot.save(self.index_file(name))
        self._install(name, snapshot)
        return snapshot

    def load(self, name: str) -> IndexSnapshot:
        """Load ``name`` from disk; :class:`IndexUnavailableError` if absent."""
        snapshot = IndexSnapshot.load(self.index_file(name), self.retrieval)
        self._install(name, snapshot)
        logger.info("collection %s loaded (%d chunks)", name, len(snapshot))
        return snapshot

    def snapshot(self, name: str) -> IndexSnapshot:
        if name not in self._snapshots:
            self.load(name)
        return self._snapshots[name]

    def retriever(self, name: str) -> HybridRetriever:
        if name not in self._retrievers:
            self.load(name)
        return self._retrievers[name]

    def retrieve(
        self,
        name: str,
        query: str,
        top_k: int | None = None,
        options: Dict[str, Any] | None = None,
    ) -> RetrievalResult:
        return self.retriever(name).retrieve(query, top_k, options)

    # Snapshot helpers -------------------------------------------------
    def export_snapshot(self, name: str, archive: str | None = None) -> Path:
        """Zip the collection's index file into ``<dir>/snapshots``."""
        base = self.path_for(name)
        src = self.index_file(name)
        if not src.exists():
            raise IndexUnavailableError(f"no index file for collection {name}: {src}")
        snap_dir = base / "snapshots"
        snap_dir.mkdir(parents=True, exist_ok=True)
        if not archive:
            archive = _dt.datetime.now().strftime("%Y%m%d%H%M%S") + ".zip"
        out = snap_dir / archive
        with zipfile.ZipFile(out, "w") as zf:
            zf.write(src, arcname=src.name)
        return out

    def rollback_snapshot(self, name: str, snapshot_file: str | Path) -> IndexSnapshot:
        """Restore the index file from a snapshot zip and reload it."""
        base = self.path_for(name)
        with zipfile.ZipFile(snapshot_file, "r") as zf:
            zf.extractall(base)
        return self.load(name)

    def stats(self) -> Dict[str, Any]:
        return {name: snap.stats() for name, snap in self._snapshots.items()}


def build_snapshot(
    raws: Sequence[Mapping[str, Any]],
    embedder: Embedder | None = None,
    config: RetrievalConfig | None = None,
    on_progress: ProgressFn | None = None,
) -> IndexSnapshot:
    """Shortcut for ``IndexBuilder(config, embedder).build(raws)``."""
    return IndexBuilder(config, embedder=embedder).build(raws, on_progress=on_progress)

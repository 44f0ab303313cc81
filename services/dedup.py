# -*- coding: utf-8 -*-
"""Near-duplicate detection over the chunk corpus.

Each chunk gets a shingle set, a MinHash signature and a weighted SimHash
fingerprint.  Chunks are bucketed by a short fingerprint taken from the
MinHash signature, compared pairwise inside each bucket, and the leftovers
are compared once more across buckets with a stricter SimHash-first check.
Every cluster keeps one representative; the others are suppressed and
point back at it.

A second, unrelated pass (:func:`dedupe_by_source`) works on query results
and keeps the best hit per ``source_id``.
"""
from __future__ import annotations

import logging
import math
import re
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Set, Tuple

import numpy as np

from core.chunking import Chunk
from core.config import RetrievalConfig
from core.hygiene import fnv1a_64
from core.tokenize import CJK_CLASS, STOP_WORDS

logger = logging.getLogger(__name__)

MERSENNE_PRIME = 2147483647  # 2**31 - 1
FNV32_OFFSET = 2166136261
FNV32_PRIME = 16777619

# 同桶内：0.6*Jaccard + 0.4*SimHash；跨桶复核：0.4*Jaccard + 0.6*SimHash
BUCKET_JACCARD_WEIGHT = 0.6
BUCKET_SIMHASH_WEIGHT = 0.4
CROSS_JACCARD_WEIGHT = 0.4
CROSS_SIMHASH_WEIGHT = 0.6
CROSS_THRESHOLD_FACTOR = 0.9

_PUNCT_RE = re.compile(r"[^\w\s]+")
_SPACE_RE = re.compile(r"\s+")
_CJK_RE = re.compile(f"[{CJK_CLASS}]")


def fnv1a_32(text: str) -> int:
    h = FNV32_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * FNV32_PRIME) & 0xFFFFFFFF
    return h


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    text = _PUNCT_RE.sub(" ", (text or "").lower()).replace("_", " ")
    return _SPACE_RE.sub(" ", text).strip()


def hamming_distance(a: int, b: int) -> int:
    return (a ^ b).bit_count()


@dataclass
class ChunkSignature:
    chunk_id: str
    shingle_count: int
    minhash: np.ndarray
    simhash: int
    fingerprint: int
    text_length: int


@dataclass
class DuplicateCluster:
    """A group of near-identical chunks with one kept representative."""

    representative: Chunk
    suppressed: List[Chunk] = field(default_factory=list)
    scores: Dict[str, float] = field(default_factory=dict)

    @property
    def member_ids(self) -> List[str]:
        return [self.representative.id] + [c.id for c in self.suppressed]

    def back_references(self) -> Dict[str, str]:
        return {c.id: self.representative.id for c in self.suppressed}


@dataclass
class DedupResult:
    kept: List[Chunk]
    clusters: List[DuplicateCluster]
    suppressed: Dict[str, str]
    skipped: List[str]
    total: int
    bucket_count: int

    @property
    def removed(self) -> int:
        return len(self.suppressed)

    def stats(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "unique": len(self.kept),
            "removed": self.removed,
            "clusters": len(self.clusters),
            "skipped": len(self.skipped),
            "buckets": self.bucket_count,
        }


class DeduplicationEngine:
    """Shingle / MinHash / SimHash duplicate detector.

    MinHash coefficients come from a seeded :mod:`numpy` generator so the
    same configuration always yields the same signatures.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()
        rng = np.random.default_rng(self.config.minhash_seed)
        n = self.config.minhash_permutations
        self._coef_a = rng.integers(1, MERSENNE_PRIME, size=n, dtype=np.uint64)
        self._coef_b = rng.integers(0, MERSENNE_PRIME, size=n, dtype=np.uint64)
        self._bit_mask = (1 << self.config.simhash_bits) - 1
        self._cache: Dict[Tuple[str, str], ChunkSignature | None] = {}
        logger.debug(
            "dedup engine: shingle=%d permutations=%d simhash_bits=%d",
            self.config.shingle_size, n, self.config.simhash_bits,
        )

    # ------------------------------------------------------------------ features
    def shingles(self, text: str, size: int | None = None) -> Set[str]:
        """Word n-grams, plus character n-grams for short texts."""
        size = size or self.config.shingle_size
        normalized = normalize_text(text)
        if not normalized:
            return set()
        words = normalized.split(" ")
        out = {" ".join(words[i:i + size]) for i in range(len(words) - size + 1)}
        if len(words) < size * 2:
            chars = normalized.replace(" ", "")
            out.update(chars[i:i + size] for i in range(len(chars) - size + 1))
        return out

    def minhash(self, shingles: Iterable[str]) -> np.ndarray:
        """Per-permutation minimum of ``(a*h + b) mod p`` over the shingles."""
        base = np.fromiter((fnv1a_32(s) for s in shingles), dtype=np.uint64)
        if base.size == 0:
            return np.full(self.config.minhash_permutations, MERSENNE_PRIME, dtype=np.uint64)
        hashed = (self._coef_a[:, None] * base[None, :] + self._coef_b[:, None]) % np.uint64(MERSENNE_PRIME)
        return hashed.min(axis=1)

    def simhash(self, text: str) -> int:
        """Fixed-width SimHash with ``log(1 + tf)`` term weights.

        Stop-words are left out of the feature set unless the text has
        nothing else.
        """
        normalized = normalize_text(text)
        words = normalized.split()
        terms = [w for w in words if w not in STOP_WORDS] or words
        terms.extend(_CJK_RE.findall(normalized))
        if not terms:
            return 0
        bits = self.config.simhash_bits
        vector = np.zeros(bits, dtype=np.float64)
        positions = np.arange(bits, dtype=np.uint64)
        for term, freq in Counter(terms).items():
            h = np.uint64(fnv1a_64(term))
            signs = ((h >> positions) & np.uint64(1)).astype(np.float64) * 2.0 - 1.0
            vector += signs * math.log(1 + freq)
        value = 0
        for i in np.flatnonzero(vector > 0):
            value |= 1 << int(i)
        return value & self._bit_mask

    def fingerprint(self, signature: np.ndarray) -> int:
        """Bucket id: bit *i* set when signature slot *i* is even."""
        width = min(self.config.fingerprint_bits, len(signature))
        low = signature[:width]
        value = 0
        for i in np.flatnonzero(low % np.uint64(2) == 0):
            value |= 1 << int(i)
        return value

    # ------------------------------------------------------------------ similarity
    @staticmethod
    def jaccard(sig_a: np.ndarray, sig_b: np.ndarray) -> float:
        """Estimated Jaccard similarity: share of equal signature slots."""
        if len(sig_a) != len(sig_b) or len(sig_a) == 0:
            return 0.0
        return float(np.count_nonzero(sig_a == sig_b)) / len(sig_a)

    def simhash_similarity(self, a: int, b: int) -> float:
        return 1.0 - hamming_distance(a, b) / self.config.simhash_bits

    def combined_similarity(self, a: ChunkSignature, b: ChunkSignature) -> float:
        return (
            BUCKET_JACCARD_WEIGHT * self.jaccard(a.minhash, b.minhash)
            + BUCKET_SIMHASH_WEIGHT * self.simhash_similarity(a.simhash, b.simhash)
        )

    def similarity(self, a: Chunk, b: Chunk) -> float:
        """Combined similarity of two chunks, 0 if either is degenerate."""
        sa, sb = self.signature(a), self.signature(b)
        if sa is None or sb is None:
            return 0.0
        return self.combined_similarity(sa, sb)

    # ------------------------------------------------------------------ signatures
    def signature(self, chunk: Chunk) -> ChunkSignature | None:
        """Signature for ``chunk``; ``None`` when the text has no shingles."""
        key = (chunk.id, chunk.hash)
        if key in self._cache:
            return self._cache[key]
        text = chunk.search_text()
        shingles = self.shingles(text)
        if not shingles:
            logger.warning("no shingles for chunk %s, skipping dedup", chunk.id)
            sig = None
        else:
            mh = self.minhash(shingles)
            sig = ChunkSignature(
                chunk_id=chunk.id,
                shingle_count=len(shingles),
                minhash=mh,
                simhash=self.simhash(text),
                fingerprint=self.fingerprint(mh),
                text_length=len(text),
            )
        self._cache[key] = sig
        return sig

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------ clustering
    def _cluster_bucket(self, group: Sequence[Tuple[Chunk, ChunkSignature]]) -> List[List[int]]:
        """Greedy clustering of one bucket; returns index lists into ``group``."""
        threshold = self.config.similarity_threshold
        used: Set[int] = set()
        clusters: List[List[int]] = []
        for i, (_, sig_i) in enumerate(group):
            if i in used:
                continue
            members = [i]
            used.add(i)
            for j in range(i + 1, len(group)):
                if j in used:
                    continue
                if self.combined_similarity(sig_i, group[j][1]) >= threshold:
                    members.append(j)
                    used.add(j)
            if len(members) > 1:
                clusters.append(members)
        return clusters

    def _cluster_across(self, items: Sequence[Tuple[Chunk, ChunkSignature]]) -> List[List[int]]:
        """SimHash-first comparison of chunks left over from the bucket pass."""
        threshold = self.config.similarity_threshold * CROSS_THRESHOLD_FACTOR
        used: Set[int] = set()
        clusters: List[List[int]] = []
        for i, (_, sig_i) in enumerate(items):
            if i in used:
                continue
            members = [i]
            used.add(i)
            for j in range(i + 1, len(items)):
                if j in used:
                    continue
                sig_j = items[j][1]
                sim = self.simhash_similarity(sig_i.simhash, sig_j.simhash)
                if sim < threshold:
                    continue
                combined = CROSS_JACCARD_WEIGHT * self.jaccard(sig_i.minhash, sig_j.minhash) + CROSS_SIMHASH_WEIGHT * sim
                if combined >= threshold:
                    members.append(j)
                    used.add(j)
            if len(members) > 1:
                clusters.append(members)
        return clusters

    def find_clusters(
        self,
        chunks: Sequence[Chunk],
        on_progress: Callable[[Dict[str, Any]], None] | None = None,
    ) -> Tuple[List[List[Tuple[Chunk, ChunkSignature]]], List[str], int]:
        """Group near-duplicates.

        Returns ``(clusters, skipped_ids, bucket_count)`` where every cluster
        lists ``(chunk, signature)`` pairs in corpus order.
        """
        processed: List[Tuple[Chunk, ChunkSignature]] = []
        skipped: List[str] = []
        buckets: Dict[int, List[Tuple[Chunk, ChunkSignature]]] = {}
        for i, chunk in enumerate(chunks, 1):
            sig = self.signature(chunk)
            if sig is None:
                skipped.append(chunk.id)
            else:
                processed.append((chunk, sig))
                buckets.setdefault(sig.fingerprint, []).append((chunk, sig))
            if on_progress and (i % 50 == 0 or i == len(chunks)):
                on_progress({"stage": "hashing", "current": i, "total": len(chunks)})

        groups = [g for g in buckets.values() if len(g) > 1]
        workers = max(1, min(self.config.dedup_workers, len(groups) or 1))
        clusters: List[List[Tuple[Chunk, ChunkSignature]]] = []
        clustered: Set[str] = set()
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for group, found in zip(groups, pool.map(self._cluster_bucket, groups)):
                for members in found:
                    cluster = [group[k] for k in members]
                    clusters.append(cluster)
                    clustered.update(c.id for c, _ in cluster)

        remaining = [p for p in processed if p[0].id not in clustered]
        if len(remaining) > 1:
            for members in self._cluster_across(remaining):
                clusters.append([remaining[k] for k in members])

        if on_progress:
            on_progress({"stage": "clustering", "current": len(chunks), "total": len(chunks)})
        return clusters, skipped, len(buckets)

    # ------------------------------------------------------------------ representatives
    @staticmethod
    def representative_score(chunk: Chunk, sig: ChunkSignature) -> float:
        score = 0.3 * math.log(1 + sig.text_length)
        score += 0.2 * chunk.metadata_field_count
        upstream = chunk.upstream_score
        if upstream is not None:
            score += 0.4 * upstream
        score += 0.1 * math.log(1 + sig.shingle_count)
        return score

    def select_representative(self, members: Sequence[Tuple[Chunk, ChunkSignature]]) -> DuplicateCluster:
        scores = {c.id: self.representative_score(c, s) for c, s in members}
        best = members[0][0]
        for chunk, _ in members[1:]:
            if scores[chunk.id] > scores[best.id]:
                best = chunk
        suppressed = [c for c, _ in members if c.id != best.id]
        return DuplicateCluster(representative=best, suppressed=suppressed, scores=scores)

    def deduplicate(
        self,
        chunks: Sequence[Chunk],
        on_progress: Callable[[Dict[str, Any]], None] | None = None,
    ) -> DedupResult:
        """Cluster ``chunks`` and keep one representative per cluster.

        Kept chunks stay in corpus order; degenerate chunks are kept too.
        """
        chunks = list(chunks)
        found, skipped, bucket_count = self.find_clusters(chunks, on_progress)
        clusters = [self.select_representative(members) for members in found]
        suppressed: Dict[str, str] = {}
        for cluster in clusters:
            suppressed.update(cluster.back_references())
        kept = [c for c in chunks if c.id not in suppressed]
        logger.info(
            "dedup: %d -> %d chunks (%d clusters, %d skipped, %d buckets)",
            len(chunks), len(kept), len(clusters), len(skipped), bucket_count,
        )
        return DedupResult(
            kept=kept,
            clusters=clusters,
            suppressed=suppressed,
            skipped=skipped,
            total=len(chunks),
            bucket_count=bucket_count,
        )


def dedupe_by_source(
    hits: Sequence[Mapping[str, Any]],
    source_of: Callable[[Mapping[str, Any]], str] | None = None,
) -> List[Dict[str, Any]]:
    """Keep the highest-scoring hit per ``source_id``.

    Survivors keep their relative order and carry ``source_hits``, the
    number of hits their source contributed.
    """
    source_of = source_of or (lambda h: h["chunk"].source_id)
    best: Dict[str, int] = {}
    counts: Dict[str, int] = {}
    for i, hit in enumerate(hits):
        src = source_of(hit) or "unknown"
        counts[src] = counts.get(src, 0) + 1
        if src not in best or hit["score"] > hits[best[src]]["score"]:
            best[src] = i
    keep = sorted(best.items(), key=lambda kv: kv[1])
    out = []
    for src, i in keep:
        hit = dict(hits[i])
        hit["source_hits"] = counts[src]
        out.append(hit)
    if len(out) != len(hits):
        logger.debug("post-retrieval dedup: %d -> %d hits", len(hits), len(out))
    return out


__all__ = [
    "DeduplicationEngine", "DedupResult", "DuplicateCluster", "ChunkSignature",
    "dedupe_by_source", "normalize_text", "fnv1a_32", "hamming_distance",
]

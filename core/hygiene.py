# -*- coding: utf-8 -*-
"""Chunk hygiene: schema validation, size measurement and content hashing.

Validation reports problems and never rewrites the chunk; the caller
decides whether to reject or warn.  :class:`ChunkHygiene` applies the usual
build-time policy: invalid chunks are rejected one by one, size issues are
only logged, exact content-hash repeats are reported.
"""
from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping

from core.chunking import Chunk
from core.config import RetrievalConfig
from core.errors import ChunkValidationError
from core.models import (
    ChunkType, HASH_FIELDS, Lang, REQUIRED_FIELDS, SizeReport, Stability, ValidationResult,
)

logger = logging.getLogger(__name__)

_CHUNK_TYPES = {t.value for t in ChunkType}
_LANGS = {l.value for l in Lang}
_STABILITIES = {s.value for s in Stability}

FNV64_OFFSET = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
_MASK64 = (1 << 64) - 1


# ---------------------------------------------------------------- validate
def validate(raw: Mapping[str, Any]) -> ValidationResult:
    """Check a raw chunk mapping against the schema.

    Returns every violation found; an empty list means the mapping can be
    turned into a :class:`~core.chunking.Chunk`.
    """
    chunk_id = str(raw.get("id") or "")
    result = ValidationResult(chunk_id=chunk_id)
    for name in REQUIRED_FIELDS:
        value = raw.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            # an empty tag set is still a tag set
            if name == "tags" and value is not None:
                continue
            result.violations.append(f"missing required field: {name}")

    tags = raw.get("tags")
    if tags is not None:
        if isinstance(tags, (str, bytes)) or not isinstance(tags, (list, tuple, set, frozenset)):
            result.violations.append("tags must be a set of strings")
        elif not all(isinstance(t, str) for t in tags):
            result.violations.append("tags must contain only strings")

    _check_enum(result, raw, "type", _CHUNK_TYPES)
    _check_enum(result, raw, "lang", _LANGS)
    _check_enum(result, raw, "stability", _STABILITIES)

    meta_card = raw.get("meta_card")
    if meta_card is not None and not isinstance(meta_card, Mapping):
        result.violations.append("meta_card must be a mapping")
    return result


def _check_enum(result: ValidationResult, raw: Mapping[str, Any], name: str, allowed: set) -> None:
    value = raw.get(name)
    if value is None or value == "":
        return
    value = getattr(value, "value", value)
    if value not in allowed:
        result.violations.append(f"{name} must be one of: {', '.join(sorted(allowed))} (got {value!r})")


# ---------------------------------------------------------------- size
def estimate_tokens(text: str) -> int:
    """Roughly one token per four characters of English text."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def count_chars(text: str) -> int:
    """Character count by code point (``len`` on ``str``), not bytes."""
    return len(text or "")


def measure_size(chunk: Chunk | Mapping[str, Any], config: RetrievalConfig | None = None) -> SizeReport:
    """Measure the body and flag violations of the per-language bounds."""
    cfg = config or RetrievalConfig()
    if isinstance(chunk, Chunk):
        chunk_id, lang, body = chunk.id, chunk.lang.value, chunk.body
    else:
        chunk_id = str(chunk.get("id") or "")
        lang = getattr(chunk.get("lang"), "value", chunk.get("lang")) or Lang.EN.value
        body = str(chunk.get("body") or "")

    report = SizeReport(chunk_id=chunk_id, lang=lang, char_count=count_chars(body))
    if not body:
        report.issues.append("empty body")
        return report

    if lang in (Lang.EN.value, Lang.BILINGUAL.value):
        tokens = estimate_tokens(body)
        report.token_count = tokens
        if tokens < cfg.en_min_tokens:
            report.issues.append(f"too few tokens: {tokens} < {cfg.en_min_tokens}")
        if tokens > cfg.en_max_tokens:
            report.issues.append(f"too many tokens: {tokens} > {cfg.en_max_tokens}")

    if lang in (Lang.ZH.value, Lang.BILINGUAL.value):
        chars = report.char_count
        if chars < cfg.zh_min_chars:
            report.issues.append(f"too few characters: {chars} < {cfg.zh_min_chars}")
        if chars > cfg.zh_max_chars:
            report.issues.append(f"too many characters: {chars} > {cfg.zh_max_chars}")
    return report


# ---------------------------------------------------------------- hash
def canonical_string(chunk: Chunk | Mapping[str, Any]) -> str:
    """Ordered ``|``-joined concatenation of the hash-input fields."""
    if isinstance(chunk, Chunk):
        data: Mapping[str, Any] = chunk.to_dict()
    else:
        data = chunk
    parts = []
    for name in HASH_FIELDS:
        value = data.get(name)
        if name == "tags":
            parts.append(",".join(sorted(str(t) for t in (value or ()))))
        else:
            parts.append(str(getattr(value, "value", value) if value is not None else ""))
    return "|".join(parts)


def fnv1a_64(text: str) -> int:
    h = FNV64_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * FNV64_PRIME) & _MASK64
    return h


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_hash(chunk: Chunk | Mapping[str, Any], digest: Callable[[bytes], str] | None = None) -> str:
    """Content hash of a chunk.

    SHA-256 over the canonical string; if the digest cannot be computed
    (e.g. a restricted ``hashlib`` build) a 64-bit FNV-1a hex digest is
    returned instead.  Both are deterministic.
    """
    canonical = canonical_string(chunk)
    digest = digest or _sha256_hex
    try:
        return digest(canonical.encode("utf-8"))
    except (ValueError, AttributeError) as e:
        logger.warning("sha256 unavailable (%s), using FNV-1a content hash", e)
        return f"{fnv1a_64(canonical):016x}"


# ---------------------------------------------------------------- batch policy
@dataclass
class HygieneReport:
    chunk: Chunk | None
    validation: ValidationResult
    size: SizeReport | None = None


@dataclass
class HygieneBatchResult:
    chunks: List[Chunk] = field(default_factory=list)
    rejected: List[ValidationResult] = field(default_factory=list)
    size_warnings: List[SizeReport] = field(default_factory=list)
    hash_duplicates: List[Dict[str, str]] = field(default_factory=list)

    def stats(self) -> Dict[str, Any]:
        tokens = [r.token_count for r in self.size_warnings if r.token_count is not None]
        return {
            "accepted": len(self.chunks),
            "rejected": len(self.rejected),
            "size_warnings": len(self.size_warnings),
            "hash_duplicates": len(self.hash_duplicates),
            "sources": len({c.source_id for c in self.chunks}),
            "max_flagged_tokens": max(tokens) if tokens else None,
        }


class ChunkHygiene:
    """Build-time policy wrapper around :func:`validate`, :func:`measure_size`
    and :func:`compute_hash`."""

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def process(self, raw: Mapping[str, Any]) -> HygieneReport:
        validation = validate(raw)
        if not validation.ok:
            logger.warning("chunk %s rejected: %s", validation.chunk_id or "<no id>", validation.violations)
            return HygieneReport(chunk=None, validation=validation)
        content_hash = compute_hash(raw)
        chunk = Chunk.from_dict(raw, content_hash=content_hash)
        size = measure_size(chunk, self.config)
        if not size.within_bounds:
            logger.warning("chunk %s size out of bounds: %s", chunk.id, size.issues)
        return HygieneReport(chunk=chunk, validation=validation, size=size)

    def require(self, raw: Mapping[str, Any]) -> Chunk:
        """Like :meth:`process` but raise :class:`ChunkValidationError`."""
        report = self.process(raw)
        if report.chunk is None:
            raise ChunkValidationError(report.validation.chunk_id, report.validation.violations)
        return report.chunk

    def process_batch(
        self,
        raws: Iterable[Mapping[str, Any]],
        on_progress: Callable[[Dict[str, Any]], None] | None = None,
    ) -> HygieneBatchResult:
        items = list(raws)
        result = HygieneBatchResult()
        seen: Dict[str, str] = {}
        for i, raw in enumerate(items, 1):
            report = self.process(raw)
            if report.chunk is None:
                result.rejected.append(report.validation)
            else:
                chunk = report.chunk
                if report.size is not None and not report.size.within_bounds:
                    result.size_warnings.append(report.size)
                if chunk.hash in seen:
                    result.hash_duplicates.append({"id": chunk.id, "existing": seen[chunk.hash]})
                else:
                    seen[chunk.hash] = chunk.id
                    result.chunks.append(chunk)
            if on_progress:
                on_progress({"stage": "hygiene", "current": i, "total": len(items)})
        logger.info(
            "hygiene: %d accepted, %d rejected, %d size warnings, %d hash duplicates",
            len(result.chunks), len(result.rejected), len(result.size_warnings), len(result.hash_duplicates),
        )
        return result


__all__ = [
    "validate", "measure_size", "compute_hash", "canonical_string", "estimate_tokens",
    "count_chars", "fnv1a_64", "ChunkHygiene", "HygieneReport", "HygieneBatchResult",
]

# -*- coding: utf-8 -*-
"""Chunk record and the persisted index artifact.

A :class:`Chunk` is only ever built from a raw mapping that passed
:func:`core.hygiene.validate`; downstream code reads its fields directly.
The persisted artifact is one row per chunk::

    {"id", "text", "embedding", "metadata", "hash"}

where ``metadata`` carries every chunk field needed at query time.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

import pandas as pd

from core.models import ChunkType, Lang, Stability

META_CARD_LABELS: Tuple[Tuple[str, str], ...] = (
    ("contract_address", "Contract Address"),
    ("ticker_symbol", "Ticker Symbol"),
    ("blockchain", "Blockchain"),
)


@dataclass(frozen=True)
class Chunk:
    """Validated knowledge chunk.

    Parameters
    ----------
    id, source_id: str
        Chunk identity; ``source_id`` groups chunks split from one document.
    type, lang, stability:
        Enum classification.
    tags: frozenset[str]
        Unordered tag set.
    title, body, summary_en, summary_zh: str
        Content; both summaries are present whatever ``lang`` is.
    meta_card: Dict[str, Any]
        Structured facts (contract address, ticker, chain...).
    hash: str
        Content digest, see :func:`core.hygiene.compute_hash`.
    metadata: Dict[str, Any]
        Remaining authored fields (section, source_url, as_of, score...).
    """

    id: str
    source_id: str
    type: ChunkType
    lang: Lang
    tags: frozenset
    stability: Stability
    title: str
    body: str
    summary_en: str
    summary_zh: str
    meta_card: Dict[str, Any] = field(default_factory=dict)
    hash: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], content_hash: str = "") -> "Chunk":
        """Build a chunk from an already validated mapping."""
        known = {
            "id", "source_id", "type", "lang", "tags", "stability", "title",
            "body", "summary_en", "summary_zh", "meta_card", "hash", "metadata",
        }
        extra = {k: v for k, v in raw.items() if k not in known}
        metadata = dict(raw.get("metadata") or {})
        metadata.update(extra)
        return cls(
            id=str(raw["id"]),
            source_id=str(raw["source_id"]),
            type=ChunkType(raw["type"]),
            lang=Lang(raw["lang"]),
            tags=frozenset(str(t) for t in raw["tags"]),
            stability=Stability(raw["stability"]),
            title=str(raw["title"]),
            body=str(raw["body"]),
            summary_en=str(raw["summary_en"]),
            summary_zh=str(raw["summary_zh"]),
            meta_card=dict(raw.get("meta_card") or {}),
            hash=content_hash or str(raw.get("hash") or ""),
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to plain JSON-compatible types."""
        return {
            "id": self.id,
            "source_id": self.source_id,
            "type": self.type.value,
            "lang": self.lang.value,
            "tags": sorted(self.tags),
            "stability": self.stability.value,
            "title": self.title,
            "body": self.body,
            "summary_en": self.summary_en,
            "summary_zh": self.summary_zh,
            "meta_card": dict(self.meta_card),
            "hash": self.hash,
            "metadata": dict(self.metadata),
        }

    # ------------------------------------------------------------------
    def render_meta_card(self) -> str:
        """Render the meta card as ``Label: value`` lines.

        Known keys come first in a fixed order; any other key is rendered
        with its name title-cased so no fact is dropped.
        """
        if not self.meta_card:
            return ""
        lines: List[str] = []
        seen = set()
        for key, label in META_CARD_LABELS:
            value = self.meta_card.get(key)
            if value:
                lines.append(f"{label}: {value}")
            seen.add(key)
        for key in sorted(self.meta_card):
            if key in seen:
                continue
            value = self.meta_card[key]
            if value in (None, "", [], {}):
                continue
            if isinstance(value, (list, tuple, set)):
                value = ", ".join(str(v) for v in value)
            lines.append(f"{key.replace('_', ' ').title()}: {value}")
        return "\n".join(lines)

    def search_text(self) -> str:
        """Text fed to the lexical index and the embedding model."""
        parts = [self.title, self.body, self.summary_en, self.summary_zh]
        if self.tags:
            parts.append(" ".join(sorted(self.tags)))
        card = self.render_meta_card()
        if card:
            parts.append(card)
        return "\n".join(p for p in parts if p)

    @property
    def metadata_field_count(self) -> int:
        """Number of populated metadata and meta card fields."""
        filled = [v for v in self.metadata.values() if v not in (None, "", [], {})]
        return len(filled) + len([v for v in self.meta_card.values() if v])

    @property
    def upstream_score(self) -> float | None:
        score = self.metadata.get("score")
        if isinstance(score, (int, float)) and not isinstance(score, bool):
            return float(score)
        return None

    def to_record(self, embedding: Sequence[float] | None = None) -> Dict[str, Any]:
        """Return one row of the persisted index artifact."""
        meta = self.to_dict()
        meta.pop("hash")
        meta.pop("id")
        return {
            "id": self.id,
            "text": self.search_text(),
            "embedding": [float(x) for x in embedding] if embedding is not None else None,
            "metadata": meta,
            "hash": self.hash,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Chunk":
        raw = dict(record.get("metadata") or {})
        raw["id"] = record["id"]
        return cls.from_dict(raw, content_hash=str(record.get("hash") or ""))


def persist_records(records: Iterable[Dict[str, Any]], path: str | Path) -> Path:
    """Write index records to ``path``.

    ``.parquet`` paths are written with pandas/pyarrow (metadata stored as a
    JSON string column), anything else as JSON lines.
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(list(records), columns=["id", "text", "embedding", "metadata", "hash"])
    if out.suffix == ".parquet":
        df["metadata"] = df["metadata"].map(lambda m: json.dumps(m, ensure_ascii=False))
        df.to_parquet(out, index=False)
    else:
        df.to_json(out, orient="records", lines=True, force_ascii=False)
    return out


def load_records(path: str | Path) -> List[Dict[str, Any]]:
    """Read records written by :func:`persist_records`."""
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"index artifact not found: {src}")
    if src.suffix == ".parquet":
        df = pd.read_parquet(src)
    else:
        df = pd.read_json(src, orient="records", lines=True, dtype=False)
    rows = []
    for row in df.to_dict(orient="records"):
        emb = row.get("embedding")
        if emb is None or (isinstance(emb, float) and math.isnan(emb)):
            row["embedding"] = None
        else:
            row["embedding"] = [float(x) for x in emb]
        meta = row.get("metadata")
        if isinstance(meta, str):
            meta = json.loads(meta)
        row["metadata"] = meta or {}
        row["id"] = str(row["id"])
        row["hash"] = str(row.get("hash") or "")
        rows.append(row)
    return rows


__all__ = ["Chunk", "persist_records", "load_records", "META_CARD_LABELS"]

# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

try:
    import tomllib  # py3.11+
except Exception:
    import tomli as tomllib

ROOT_DIR = Path(__file__).resolve().parents[1]


def load_config(path: str | Path | None = None) -> Dict[str, Any]:
    """Read ``config.toml`` (or ``config_example.toml``) from the project root."""
    cfg_path = Path(path) if path else ROOT_DIR / "config.toml"
    if not cfg_path.exists():
        cfg_path = ROOT_DIR / "config_example.toml"
    if not cfg_path.exists():
        return {}
    with open(cfg_path, "rb") as f:
        return tomllib.load(f)


# 各意图对应的词法权重（剩余部分归稠密检索）
DEFAULT_INTENT_WEIGHTS: Dict[str, float] = {
    "contract_address": 0.8,
    "ticker_symbol": 0.75,
    "official_channel": 0.65,
    "technical_specs": 0.45,
}


@dataclass(frozen=True)
class RetrievalConfig:
    """Every tunable of the index build and the query path.

    Values come from the ``[retrieval]`` table of ``config.toml``; anything
    missing keeps the default below.
    """

    # deduplication
    shingle_size: int = 3
    minhash_permutations: int = 128
    simhash_bits: int = 64
    similarity_threshold: float = 0.8
    fingerprint_bits: int = 16
    minhash_seed: int = 42
    dedup_workers: int = 4

    # hygiene
    en_min_tokens: int = 50
    en_max_tokens: int = 300
    zh_min_chars: int = 100
    zh_max_chars: int = 500

    # lexical index
    bm25_k1: float = 1.2
    bm25_b: float = 0.75

    # hybrid retriever
    dense_top_k: int = 40
    lexical_top_k: int = 40
    rerank_top_k: int = 10
    min_score: float = 0.1
    base_lexical_weight: float = 0.3
    exact_signal_boost: float = 0.1
    max_lexical_weight: float = 0.8
    min_dense_weight: float = 0.2
    rerank_fusion_weight: float = 0.3
    rerank_similarity_weight: float = 0.7
    intent_weights: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_INTENT_WEIGHTS)
    )
    query_timeout_sec: float | None = None
    dedupe_sources: bool = True
    max_expansions: int = 5

    # embedding
    embed_batch_size: int = 32
    embedding_model: str = "paraphrase-multilingual-MiniLM-L12-v2"

    def __post_init__(self) -> None:
        if self.shingle_size < 1:
            raise ValueError("shingle_size must be >= 1")
        if self.minhash_permutations < 1:
            raise ValueError("minhash_permutations must be >= 1")
        if not 1 <= self.simhash_bits <= 64:
            raise ValueError("simhash_bits must be within 1..64")
        if not 1 <= self.fingerprint_bits <= self.minhash_permutations:
            raise ValueError("fingerprint_bits must be within 1..minhash_permutations")
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within (0, 1]")
        if not 0.0 <= self.base_lexical_weight <= self.max_lexical_weight <= 1.0:
            raise ValueError("lexical weights must satisfy 0 <= base <= max <= 1")
        if self.embed_batch_size < 1:
            raise ValueError("embed_batch_size must be >= 1")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "RetrievalConfig":
        """Build a config from a plain mapping, ignoring unknown keys."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "intent_weights" in kwargs:
            merged = dict(DEFAULT_INTENT_WEIGHTS)
            merged.update(kwargs["intent_weights"] or {})
            kwargs["intent_weights"] = merged
        return cls(**kwargs)

    def override(self, **changes: Any) -> "RetrievalConfig":
        return replace(self, **changes)


CFG = load_config()
PORT = int(CFG.get("port", 5005))
LOG_LEVEL = str(CFG.get("log_level", "INFO")).upper()
GLOSSARY_PATH = CFG.get("glossary_path", "")
RETRIEVAL = RetrievalConfig.from_mapping(CFG.get("retrieval"))

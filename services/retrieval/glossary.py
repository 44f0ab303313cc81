# -*- coding: utf-8 -*-
"""Proper-noun glossary: cross-script aliases for projects, people and terms.

The glossary is only consulted on the query side.  Each term knows its
Chinese and English forms, casing variants, social handles and
abbreviations; any of them found in a query maps back to the term.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from core.config import ROOT_DIR

logger = logging.getLogger(__name__)

_NORMALIZE_RE = re.compile(r"[\s_\-]+")
_WORD_CHAR_RE = re.compile(r"[0-9A-Za-z]")


# 内置词表，可由 glossary.json 覆盖
DEFAULT_TERMS: List[Dict[str, Any]] = [
    {
        "key": "wangchai", "primary": "WangChai (旺柴)", "category": "project",
        "zh": ["旺柴"], "en": ["WangChai", "Wang-Chai", "Wang Chai", "WangChaidotbonk"],
        "variants": ["$旺柴", "WANGCHAI"], "social": ["@WangChaidotbonk"],
    },
    {
        "key": "nyla", "primary": "NYLA", "category": "project",
        "zh": ["奈拉"], "en": ["NYLA", "Agent NYLA", "AgentNyla"],
        "variants": ["$NYLA"], "social": ["@AgentNyla"],
    },
    {
        "key": "nylago", "primary": "NYLAGo", "category": "tool",
        "zh": ["奈拉Go"], "en": ["NYLAGo", "NYLA Go"],
    },
    {
        "key": "solana", "primary": "Solana", "category": "network",
        "zh": ["索拉纳"], "en": ["Solana"], "variants": ["$SOL"], "abbreviations": ["SOL"],
    },
    {
        "key": "ethereum", "primary": "Ethereum", "category": "network",
        "zh": ["以太坊"], "en": ["Ethereum"], "variants": ["$ETH"], "abbreviations": ["ETH"],
    },
    {
        "key": "algorand", "primary": "Algorand", "category": "network",
        "zh": ["阿尔戈兰德"], "en": ["Algorand"], "variants": ["$ALGO"], "abbreviations": ["ALGO"],
    },
    {
        "key": "shax", "primary": "@shax_btc", "category": "person",
        "en": ["shax", "shax_btc"], "social": ["@shax_btc"],
    },
    {
        "key": "btcberries", "primary": "@btcberries", "category": "person",
        "en": ["btcberries"], "social": ["@btcberries"],
    },
    {
        "key": "chiefz", "primary": "@ChiefZ_SOL", "category": "person",
        "en": ["ChiefZ", "Chief Z", "ChiefZ_SOL"], "social": ["@ChiefZ_SOL"],
    },
    {
        "key": "noir", "primary": "@Noir0883", "category": "person",
        "en": ["Noir", "Noir0883"], "social": ["@Noir0883"],
    },
    {
        "key": "bonk", "primary": "BONK", "category": "token",
        "zh": ["邦克"], "en": ["BONK"], "variants": ["$BONK"],
    },
    {
        "key": "ama", "primary": "AMA", "category": "event",
        "zh": ["问答", "问我任何事"], "en": ["Ask Me Anything"], "abbreviations": ["AMA"],
    },
    {
        "key": "dex", "primary": "DEX", "category": "protocol",
        "zh": ["去中心化交易所"], "en": ["Decentralized Exchange"], "abbreviations": ["DEX"],
    },
    {
        "key": "chinese", "primary": "Chinese", "category": "language",
        "zh": ["中文", "中国", "华人", "华语", "中文市场"], "en": ["Chinese", "China", "Mandarin"],
    },
]


def normalize_alias(text: str) -> str:
    """Lowercase and drop spaces, underscores and hyphens."""
    return _NORMALIZE_RE.sub("", (text or "").strip().lower())


@dataclass(frozen=True)
class GlossaryTerm:
    key: str
    primary: str
    category: str = ""
    zh: Tuple[str, ...] = ()
    en: Tuple[str, ...] = ()
    variants: Tuple[str, ...] = ()
    social: Tuple[str, ...] = ()
    abbreviations: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GlossaryTerm":
        def _t(name: str) -> Tuple[str, ...]:
            return tuple(str(v) for v in (data.get(name) or ()))

        key = str(data["key"])
        return cls(
            key=key,
            primary=str(data.get("primary") or key),
            category=str(data.get("category") or ""),
            zh=_t("zh"),
            en=_t("en"),
            variants=_t("variants"),
            social=_t("social"),
            abbreviations=_t("abbreviations"),
        )

    @property
    def aliases(self) -> Tuple[str, ...]:
        """Every surface form, key first, without duplicates."""
        seen = set()
        out = []
        for form in (self.key, self.primary) + self.zh + self.en + self.variants + self.social + self.abbreviations:
            if form and form not in seen:
                seen.add(form)
                out.append(form)
        return tuple(out)

    def expansion_forms(self) -> Tuple[str, ...]:
        """Forms added to an expanded query: primary, other scripts, abbreviations."""
        seen = set()
        out = []
        for form in (self.primary,) + self.zh + self.en + self.abbreviations + self.social:
            norm = normalize_alias(form)
            if norm and norm not in seen:
                seen.add(norm)
                out.append(form)
        return tuple(out)


@dataclass
class TermMatch:
    term: GlossaryTerm
    text: str
    start: int
    end: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.term.key,
            "original": self.text,
            "primary": self.term.primary,
            "category": self.term.category,
            "start": self.start,
            "end": self.end,
        }


class ProperNounGlossary:
    """Alias index over a set of :class:`GlossaryTerm`."""

    def __init__(self, terms: Iterable[GlossaryTerm] | None = None) -> None:
        if terms is None:
            terms = [GlossaryTerm.from_dict(t) for t in DEFAULT_TERMS]
        self.terms: Dict[str, GlossaryTerm] = {}
        self._index: Dict[str, str] = {}
        for term in terms:
            self.add(term)

    @classmethod
    def from_json(cls, path: str | Path) -> "ProperNounGlossary":
        """Load ``[{"key": ..., "primary": ..., "zh": [...], ...}, ...]``.

        A top-level ``{"terms": [...]}`` object is accepted as well.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, Mapping):
            data = data.get("terms") or []
        return cls(GlossaryTerm.from_dict(item) for item in data)

    def add(self, term: GlossaryTerm) -> None:
        self.terms[term.key] = term
        for alias in term.aliases:
            norm = normalize_alias(alias)
            self._index.setdefault(norm, term.key)
            if alias[:1] in ("@", "$"):
                self._index.setdefault(norm[1:], term.key)

    def __len__(self) -> int:
        return len(self.terms)

    def lookup(self, text: str) -> GlossaryTerm | None:
        key = self._index.get(normalize_alias(text))
        return self.terms.get(key) if key else None

    def aliases(self, text: str) -> Tuple[str, ...]:
        term = self.lookup(text)
        return term.aliases if term else ()

    # ------------------------------------------------------------------
    def _candidates(self) -> List[Tuple[str, GlossaryTerm]]:
        pairs = [(alias, term) for term in self.terms.values() for alias in term.aliases]
        # 长词优先，避免短别名截断长别名
        pairs.sort(key=lambda p: len(p[0]), reverse=True)
        return pairs

    @staticmethod
    def _on_word_boundary(text: str, start: int, end: int, alias: str) -> bool:
        # Latin aliases must not match inside a longer Latin word ("sol" in "solution")
        if _WORD_CHAR_RE.match(alias[:1]) and start > 0 and _WORD_CHAR_RE.match(text[start - 1]):
            return False
        if _WORD_CHAR_RE.match(alias[-1:]) and end < len(text) and _WORD_CHAR_RE.match(text[end]):
            return False
        return True

    def find(self, query: str) -> List[TermMatch]:
        """Non-overlapping alias occurrences, longest alias first, in query order."""
        if not query:
            return []
        # 在原串上匹配，lower() 可能改变长度（如 "İ"），偏移会错位
        used = [False] * len(query)
        found: List[TermMatch] = []
        for alias, term in self._candidates():
            pattern = re.compile(re.escape(alias), re.IGNORECASE)
            m = pattern.search(query)
            while m is not None:
                start, end = m.span()
                if not any(used[start:end]) and self._on_word_boundary(query, start, end, alias):
                    for i in range(start, end):
                        used[i] = True
                    found.append(TermMatch(term=term, text=query[start:end], start=start, end=end))
                m = pattern.search(query, start + 1)
        found.sort(key=lambda tm: tm.start)
        return found

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self.terms),
            "aliases": sum(len(t.aliases) for t in self.terms.values()),
            "categories": sorted({t.category for t in self.terms.values() if t.category}),
            "index_size": len(self._index),
        }


@lru_cache(maxsize=8)
def load_glossary(path: str = "") -> ProperNounGlossary:
    """Glossary from ``path`` (relative to the project root), or the built-in terms."""
    if not path:
        return ProperNounGlossary()
    p = Path(path)
    if not p.is_absolute():
        p = ROOT_DIR / p
    if not p.exists():
        logger.warning("glossary file %s not found, using built-in terms", p)
        return ProperNounGlossary()
    glossary = ProperNounGlossary.from_json(p)
    logger.info("loaded %d glossary terms from %s", len(glossary), p)
    return glossary

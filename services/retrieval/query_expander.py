# -*- coding: utf-8 -*-
"""Query expansion with proper-noun aliases.

The original query is never rewritten in place: the lexical path needs the
user's exact wording while the dense path gains from cross-lingual
synonyms, so the expanded forms go into a separate string.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List

from core.tokenize import has_cjk
from .glossary import ProperNounGlossary, TermMatch, normalize_alias

logger = logging.getLogger(__name__)

_LATIN_RE = re.compile(r"[A-Za-z]")

SCRIPT_LATIN = "latin"
SCRIPT_CJK = "cjk"
SCRIPT_MIXED = "mixed"
SCRIPT_NONE = "none"


def detect_script(text: str) -> str:
    """``latin``, ``cjk``, ``mixed`` or ``none`` (digits/punctuation only)."""
    latin = bool(_LATIN_RE.search(text or ""))
    cjk = has_cjk(text or "")
    if latin and cjk:
        return SCRIPT_MIXED
    if cjk:
        return SCRIPT_CJK
    if latin:
        return SCRIPT_LATIN
    return SCRIPT_NONE


@dataclass(frozen=True)
class QueryExpansion:
    original: str
    expanded_variants: List[str] = field(default_factory=list)
    matched_terms: List[Dict[str, Any]] = field(default_factory=list)
    script: str = SCRIPT_NONE
    expanded_text: str = ""

    @property
    def has_expansions(self) -> bool:
        return bool(self.matched_terms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "expanded_variants": list(self.expanded_variants),
            "matched_terms": list(self.matched_terms),
            "script": self.script,
            "expanded_text": self.expanded_text,
        }


class QueryExpander:
    """Expand queries through a :class:`ProperNounGlossary`.

    ``expanded_variants[0]`` is always the untouched query.  When a term
    matches, ``expanded_variants[1]`` is the original followed by every
    form of every matched term not already present; further variants swap
    one matched alias for another, up to ``max_expansions`` in total.
    """

    def __init__(
        self,
        glossary: ProperNounGlossary | None = None,
        max_expansions: int = 5,
        cache_size: int = 256,
    ) -> None:
        self.glossary = glossary or ProperNounGlossary()
        self.max_expansions = max(1, max_expansions)
        self._cached = lru_cache(maxsize=cache_size)(self._expand)

    def expand(self, query: str) -> QueryExpansion:
        return self._cached(query or "")

    def clear_cache(self) -> None:
        self._cached.cache_clear()

    def cache_info(self):
        return self._cached.cache_info()

    # ------------------------------------------------------------------
    def _expand(self, query: str) -> QueryExpansion:
        script = detect_script(query)
        matches = self.glossary.find(query)
        if not matches:
            return QueryExpansion(
                original=query, expanded_variants=[query], script=script, expanded_text=query,
            )

        expanded_text = self._append_forms(query, matches)
        variants = [query]
        if expanded_text != query:
            variants.append(expanded_text)
        for match in matches:
            for alias in match.term.zh + match.term.en + match.term.abbreviations:
                if len(variants) >= self.max_expansions:
                    break
                if normalize_alias(alias) == normalize_alias(match.text):
                    continue
                variant = query[:match.start] + alias + query[match.end:]
                if variant not in variants:
                    variants.append(variant)

        result = QueryExpansion(
            original=query,
            expanded_variants=variants[: self.max_expansions],
            matched_terms=[m.to_dict() for m in matches],
            script=script,
            expanded_text=expanded_text,
        )
        logger.debug("expanded %r -> %r (%d terms)", query, expanded_text, len(matches))
        return result

    @staticmethod
    def _append_forms(query: str, matches: List[TermMatch]) -> str:
        present = normalize_alias(query)
        extra: List[str] = []
        seen = set()
        for match in matches:
            for form in match.term.expansion_forms():
                norm = normalize_alias(form)
                if not norm or norm in seen or norm in present:
                    continue
                seen.add(norm)
                extra.append(form)
        if not extra:
            return query
        return f"{query} {' '.join(extra)}"

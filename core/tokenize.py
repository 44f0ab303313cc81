# -*- coding: utf-8 -*-
"""Mixed-script tokenizer for the lexical index.

Latin text is split into lowercase words (length >= 2, stop-words dropped).
Every CJK run is kept whole so exact entity names match exactly; runs of
four or more characters additionally emit character bigrams, except the
connective bigrams in :data:`NOISE_BIGRAMS` which only ever cause false
matches between unrelated documents.
"""
from __future__ import annotations

import re
from typing import Iterable, List

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "is", "are", "was", "were", "be", "been", "have", "has", "had", "do", "does", "did",
    "will", "would", "could", "should", "may", "might", "can", "this", "that", "these", "those",
    "it", "its", "as", "from", "how", "what", "which", "who", "where", "when", "why",
})

# 含"的"等虚词的二元组，会在不相关文档之间制造误匹配
NOISE_BIGRAMS = frozenset({
    # possessive particle
    "的合", "柴的", "个的", "们的", "它的", "他的", "她的", "我的", "你的", "其的",
    "是的", "了的", "在的", "有的", "也的", "都的", "很的", "就的", "要的", "会的",
    "可的", "能的", "说的", "做的", "来的", "去的", "对的", "向的", "从的", "与的",
    # grammatical connectives
    "的是", "的在", "的有", "的为", "的和", "的或", "的但", "的所", "的如", "的此",
    "和的", "或的", "但的", "所的", "如的", "此的", "等的", "及的", "以的", "用的",
    # temporal / spatial fragments
    "时的", "候的", "间的", "里的", "上的", "下的", "前的", "后的", "左的", "右的",
    "内的", "外的", "中的", "间中", "中间", "之间", "之中", "之内", "之外", "之上",
    # contract lookups
    "合的", "约的", "址的", "地的", "智的", "链的", "块的", "币的", "代的",
    "旺的", "项的", "目的", "技的", "术的", "规的", "格的",
})

CJK_CLASS = "\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
_CJK_RUN_RE = re.compile(f"[{CJK_CLASS}]+")
_CJK_CHAR_RE = re.compile(f"[{CJK_CLASS}]")
# split on whitespace / punctuation but keep $ and @ prefixes attached for now
_LATIN_SPLIT_RE = re.compile(r"[\s.,;:!?()\[\]{}\"'`~\-+=<>|\\/，。；：！？（）【】「」、《》·…]+")
_LATIN_TOKEN_RE = re.compile(r"[\w$@#]+")


def _latin_tokens(text: str) -> List[str]:
    out: List[str] = []
    lowered = _CJK_RUN_RE.sub(" ", text.lower())
    for piece in _LATIN_SPLIT_RE.split(lowered):
        for token in _LATIN_TOKEN_RE.findall(piece):
            token = token.lstrip("$@#")
            if len(token) < 2 or token in STOP_WORDS:
                continue
            out.append(token)
    return out


def _cjk_tokens(text: str) -> List[str]:
    out: List[str] = []
    for run in _CJK_RUN_RE.findall(text):
        out.append(run)
        if len(run) >= 4:
            for i in range(len(run) - 1):
                bigram = run[i:i + 2]
                if bigram not in NOISE_BIGRAMS:
                    out.append(bigram)
        elif len(run) == 2:
            out.extend(run)
    return out


def tokenize_stream(text: str) -> List[str]:
    """All tokens in order, repeats kept (used for term frequencies)."""
    if not text:
        return []
    return _latin_tokens(text) + _cjk_tokens(text)


def tokenize(text: str) -> List[str]:
    """Unique tokens in first-seen order (used for queries)."""
    return unique(tokenize_stream(text))


def unique(tokens: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for t in tokens:
        if t not in seen:
            seen.add(t)
            out.append(t)
    return out


def has_cjk(text: str) -> bool:
    return bool(_CJK_CHAR_RE.search(text or ""))


def cjk_chars(text: str) -> List[str]:
    return _CJK_CHAR_RE.findall(text or "")


__all__ = [
    "tokenize", "tokenize_stream", "unique", "has_cjk", "cjk_chars",
    "STOP_WORDS", "NOISE_BIGRAMS", "CJK_CLASS",
]

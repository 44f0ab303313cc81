# -*- coding: utf-8 -*-
"""Slot intents, exact signals and the fusion weights derived from them.

Fact lookups (a contract address, a ticker) are precision-sensitive and
keyword matching handles verbatim tokens better than embeddings, so such
queries shift the fusion weight towards the lexical side.  Conceptual
queries keep the dense-favoured base weight.

The keyword tables below are a starting point tuned by hand; pass custom
tables to :class:`IntentDetector` to recalibrate.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from core.config import RetrievalConfig

logger = logging.getLogger(__name__)


class IntentType(str, Enum):
    CONTRACT_ADDRESS = "contract_address"
    TICKER_SYMBOL = "ticker_symbol"
    OFFICIAL_CHANNEL = "official_channel"
    TECHNICAL_SPECS = "technical_specs"


class SignalType(str, Enum):
    ETH_ADDRESS = "eth_address"
    TX_HASH = "tx_hash"
    SOLANA_ADDRESS = "solana_address"
    HANDLE = "handle"
    TICKER = "ticker"
    NUMBER_UNIT = "number_unit"


CONTRACT_KEYWORDS = (
    "contract address", "smart contract", "contract", "ca",
    "合約", "合约", "合約地址", "合约地址", "合同地址", "智能合約地址", "智能合约地址",
)
TICKER_KEYWORDS = (
    "ticker", "symbol", "token symbol", "coin symbol",
    "代號", "代号", "符號", "符号", "代幣符號", "代币符号", "幣種符號",
)
PRICE_KEYWORDS = (
    "price", "cost", "value", "worth", "market cap", "mcap", "volume",
    "trading", "buy", "sell", "exchange", "rate", "usd", "dollar",
    "價格", "价格", "價錢", "成本", "市值", "交易", "買", "买", "賣", "卖", "匯率", "汇率",
)
OFFICIAL_KEYWORDS = (
    "official", "website", "twitter", "telegram", "discord",
    "官方", "官網", "官网", "推特", "电报",
)
TECHNICAL_KEYWORDS = (
    "technical", "specs", "specification", "tps", "throughput", "latency",
    "技術", "技术", "规格", "規格",
)
COMMON_TOKENS = ("sol", "btc", "eth", "nyla", "algo", "avax", "dot")

ETH_ADDRESS_RE = re.compile(r"\b0x[a-fA-F0-9]{40}(?![a-fA-F0-9])")
TX_HASH_RE = re.compile(r"\b0x[a-fA-F0-9]{64}(?![a-fA-F0-9])")
SOLANA_ADDRESS_RE = re.compile(r"(?<![A-Za-z0-9])[1-9A-HJ-NP-Za-km-z]{32,44}(?![A-Za-z0-9])")
HANDLE_RE = re.compile(r"(?<![\w@])@([A-Za-z0-9_]{1,15})\b")
TICKER_RE = re.compile(r"\$([A-Z0-9]{2,10})\b")
NUMBER_UNIT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(USD|SOL|ALGO|ETH|%|s|min|hrs?|days?)(?![A-Za-z])")
_DIGIT_RE = re.compile(r"\d")
_ALPHA_RE = re.compile(r"[A-Za-z]")


@dataclass(frozen=True)
class SlotIntent:
    type: IntentType
    confidence: float
    keywords: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "confidence": self.confidence, "keywords": list(self.keywords)}


@dataclass(frozen=True)
class ExactSignal:
    type: SignalType
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value}


@dataclass(frozen=True)
class FusionWeights:
    lexical: float
    dense: float
    reason: str = "base"

    def to_dict(self) -> Dict[str, Any]:
        return {"lexical": round(self.lexical, 4), "dense": round(self.dense, 4), "reason": self.reason}


@dataclass
class QueryAnalysis:
    intents: List[SlotIntent] = field(default_factory=list)
    signals: List[ExactSignal] = field(default_factory=list)
    weights: FusionWeights = field(default_factory=lambda: FusionWeights(0.3, 0.7))

    @property
    def intent_types(self) -> List[str]:
        return [i.type.value for i in self.intents]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intents": [i.to_dict() for i in self.intents],
            "signals": [s.to_dict() for s in self.signals],
            "weights": self.weights.to_dict(),
        }


def _keyword_pattern(keywords: Iterable[str]) -> re.Pattern:
    """One regex for a keyword table; Latin keywords only match whole words."""
    parts = []
    for kw in sorted(set(keywords), key=len, reverse=True):
        escaped = re.escape(kw.lower())
        if re.match(r"[a-z0-9]", kw.lower()):
            parts.append(rf"(?<![a-z0-9]){escaped}(?![a-z0-9])")
        else:
            parts.append(escaped)
    return re.compile("|".join(parts)) if parts else re.compile(r"(?!x)x")


class IntentDetector:
    """Keyword / regex classifier for slot intents and exact signals."""

    def __init__(
        self,
        config: RetrievalConfig | None = None,
        keywords: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self.config = config or RetrievalConfig()
        tables = {
            "contract": CONTRACT_KEYWORDS,
            "ticker": TICKER_KEYWORDS,
            "price": PRICE_KEYWORDS,
            "official": OFFICIAL_KEYWORDS,
            "technical": TECHNICAL_KEYWORDS,
            "tokens": COMMON_TOKENS,
        }
        tables.update(keywords or {})
        self._patterns = {name: _keyword_pattern(words) for name, words in tables.items()}

    def _hits(self, name: str, lowered: str) -> tuple:
        return tuple(dict.fromkeys(m.group(0) for m in self._patterns[name].finditer(lowered)))

    # ------------------------------------------------------------------ signals
    def detect_signals(self, query: str) -> List[ExactSignal]:
        """Literal addresses, hashes, handles, tickers and amounts in ``query``."""
        text = query or ""
        signals: List[ExactSignal] = []
        for m in TX_HASH_RE.finditer(text):
            signals.append(ExactSignal(SignalType.TX_HASH, m.group(0)))
        for m in ETH_ADDRESS_RE.finditer(text):
            signals.append(ExactSignal(SignalType.ETH_ADDRESS, m.group(0)))
        rest = TX_HASH_RE.sub(" ", ETH_ADDRESS_RE.sub(" ", text))
        for m in SOLANA_ADDRESS_RE.finditer(rest):
            value = m.group(0)
            # 纯字母的长单词不算地址
            if _DIGIT_RE.search(value) and _ALPHA_RE.search(value):
                signals.append(ExactSignal(SignalType.SOLANA_ADDRESS, value))
                rest = rest.replace(value, " ")
        for m in HANDLE_RE.finditer(text):
            signals.append(ExactSignal(SignalType.HANDLE, m.group(1)))
        for m in TICKER_RE.finditer(text):
            signals.append(ExactSignal(SignalType.TICKER, m.group(1)))
        for m in NUMBER_UNIT_RE.finditer(rest):
            signals.append(ExactSignal(SignalType.NUMBER_UNIT, f"{m.group(1)} {m.group(2)}"))
        return signals

    # ------------------------------------------------------------------ intents
    def detect_intents(self, query: str, signals: Sequence[ExactSignal] | None = None) -> List[SlotIntent]:
        lowered = (query or "").lower()
        if signals is None:
            signals = self.detect_signals(query)
        kinds = {s.type for s in signals}
        intents: List[SlotIntent] = []

        contract_words = self._hits("contract", lowered)
        has_address = bool(kinds & {SignalType.ETH_ADDRESS, SignalType.SOLANA_ADDRESS})
        if contract_words or has_address:
            intents.append(SlotIntent(
                IntentType.CONTRACT_ADDRESS, 0.95 if has_address else 0.9, contract_words,
            ))

        ticker_words = self._hits("ticker", lowered)
        price_words = self._hits("price", lowered)
        tickers = tuple(s.value for s in signals if s.type is SignalType.TICKER)
        if ticker_words or tickers:
            intents.append(SlotIntent(
                IntentType.TICKER_SYMBOL, 0.9 if tickers else 0.8, tickers or ticker_words,
            ))
        else:
            tokens = self._hits("tokens", lowered)
            if tokens and price_words:
                intents.append(SlotIntent(IntentType.TICKER_SYMBOL, 0.8, tokens))

        official_words = self._hits("official", lowered)
        if official_words:
            intents.append(SlotIntent(IntentType.OFFICIAL_CHANNEL, 0.8, official_words))

        technical_words = self._hits("technical", lowered)
        if technical_words:
            intents.append(SlotIntent(IntentType.TECHNICAL_SPECS, 0.7, technical_words))
        return intents

    # ------------------------------------------------------------------ weights
    def compute_weights(
        self,
        intents: Sequence[SlotIntent],
        signals: Sequence[ExactSignal] = (),
    ) -> FusionWeights:
        """Lexical / dense fusion weights for the detected intents and signals.

        The strongest intent sets the lexical weight; every exact signal adds
        ``exact_signal_boost``; the result is capped at
        ``max_lexical_weight`` and never leaves the dense side below
        ``min_dense_weight``.
        """
        cfg = self.config
        lexical = cfg.base_lexical_weight
        reason = "base"
        for intent in intents:
            weight = cfg.intent_weights.get(intent.type.value)
            if weight is not None and weight > lexical:
                lexical = weight
                reason = f"{intent.type.value}_intent"
        if signals:
            lexical += cfg.exact_signal_boost * len(signals)
            reason += "_with_exact_signals"
        lexical = min(lexical, cfg.max_lexical_weight)
        dense = max(1.0 - lexical, cfg.min_dense_weight)
        return FusionWeights(lexical=round(1.0 - dense, 6), dense=round(dense, 6), reason=reason)

    def analyze(self, query: str) -> QueryAnalysis:
        signals = self.detect_signals(query)
        intents = self.detect_intents(query, signals)
        weights = self.compute_weights(intents, signals)
        logger.debug("query %r intents=%s signals=%d weights=%s", query, [i.type.value for i in intents], len(signals), weights)
        return QueryAnalysis(intents=intents, signals=signals, weights=weights)

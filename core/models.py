from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class ChunkType(str, Enum):
    FACTS = "facts"
    HOWTO = "howto"
    POLICY = "policy"
    FAQ = "faq"
    TROUBLESHOOTING = "troubleshooting"
    ABOUT = "about"
    INTEGRATION = "integration"
    ECOSYSTEM = "ecosystem"
    MARKETING = "marketing"


class Lang(str, Enum):
    EN = "en"
    ZH = "zh"
    BILINGUAL = "bilingual"


class Stability(str, Enum):
    STABLE = "stable"
    VOLATILE = "volatile"
    EVOLVING = "evolving"
    DEPRECATED = "deprecated"


REQUIRED_FIELDS = (
    "id", "source_id", "type", "lang", "tags", "stability",
    "title", "body", "summary_en", "summary_zh",
)

# 参与内容哈希的字段，顺序即拼接顺序
HASH_FIELDS = (
    "id", "source_id", "type", "title", "body", "summary_en", "summary_zh", "tags",
)


@dataclass
class ValidationResult:
    chunk_id: str
    violations: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


@dataclass
class SizeReport:
    """Advisory size measurement for one chunk body."""

    chunk_id: str
    lang: str
    char_count: int
    token_count: Optional[int] = None
    issues: List[str] = field(default_factory=list)

    @property
    def within_bounds(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, object]:
        return {
            "chunk_id": self.chunk_id,
            "lang": self.lang,
            "char_count": self.char_count,
            "token_count": self.token_count,
            "issues": list(self.issues),
        }

"""Exception types raised by the retrieval core."""
from __future__ import annotations

from typing import List


class RetrievalError(Exception):
    """Base class for errors raised by the retrieval core."""


class ChunkValidationError(RetrievalError, ValueError):
    """A raw chunk failed schema validation.

    ``violations`` lists one message per offending field.
    """

    def __init__(self, chunk_id: str, violations: List[str]) -> None:
        self.chunk_id = chunk_id
        self.violations = list(violations)
        super().__init__(f"chunk {chunk_id or '<unknown>'} is invalid: " + "; ".join(violations))


class IndexUnavailableError(RetrievalError, RuntimeError):
    """No lexical index or vector store is loaded."""


class EmbeddingError(RetrievalError):
    """The embedding collaborator failed or returned an unusable vector."""

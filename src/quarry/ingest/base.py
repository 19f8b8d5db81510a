"""Base chunker interface and the shared token estimator."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

from quarry.db.models import Chunk

# Rough tokens-per-word ratio for English prose and code identifiers.
TOKENS_PER_WORD = 1.3


def estimate_token_count(text: str) -> int:
    """Approximate token count: ``ceil(words × 1.3)``; 0 for blank text.

    A word-count heuristic, not a real tokenizer. Everything that sizes
    chunks goes through this function so a BPE tokenizer can replace it.
    """
    return math.ceil(len(text.split()) * TOKENS_PER_WORD)


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Chunkers are pure: the same input always yields the same ordered list
    of immutable ``Chunk`` objects with sequential ``index`` values.
    """

    @abstractmethod
    def chunk(self, content: str) -> list[Chunk]:
        """Split *content* into ordered Chunk objects.

        Args:
            content: Full decoded text of the source.

        Returns:
            Ordered list of Chunk objects; empty for blank input.
        """

    @staticmethod
    def count_tokens(text: str) -> int:
        return estimate_token_count(text)

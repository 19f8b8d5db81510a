"""Token-window chunker: fixed word windows with overlap."""

from __future__ import annotations

import math

from quarry.db.models import Chunk
from quarry.ingest.base import TOKENS_PER_WORD, BaseChunker, estimate_token_count


class TokenWindowChunker(BaseChunker):
    """Split text into consecutive word windows that overlap.

    Window size is ``floor(max_tokens / 1.3)`` words and consecutive windows
    share ``floor(overlap / 1.3)`` words. When the words left after a window
    are fewer than the overlap, the window absorbs them rather than leaving
    a tiny trailing chunk, so the last chunk may exceed ``max_tokens`` by up
    to ``overlap`` tokens.

    Each chunk's metadata records ``word_start``/``word_end`` (a half-open
    range over the whitespace-split words), so callers can strip the
    overlap and rebuild the original word sequence.

    Default: 800 tokens / 120 tokens overlap.
    """

    def __init__(self, max_tokens: int = 800, overlap: int = 120) -> None:
        window = math.floor(max_tokens / TOKENS_PER_WORD)
        if window < 1:
            raise ValueError("max_tokens must be >= 2 (at least one word per window)")
        if overlap < 0:
            raise ValueError("overlap must be >= 0")
        if overlap >= max_tokens:
            raise ValueError("overlap must be smaller than max_tokens")
        self.max_tokens = max_tokens
        self.overlap = overlap
        self.window_words = window
        self.overlap_words = math.floor(overlap / TOKENS_PER_WORD)

    def chunk(self, content: str) -> list[Chunk]:
        words = content.split()
        if not words:
            return []

        total = len(words)
        step = max(1, self.window_words - self.overlap_words)
        chunks: list[Chunk] = []
        start = 0

        while start < total:
            end = min(start + self.window_words, total)
            if total - end < self.overlap_words:
                end = total
            text = " ".join(words[start:end])
            chunks.append(
                Chunk(
                    content=text,
                    index=len(chunks),
                    token_count=estimate_token_count(text),
                    metadata={
                        "strategy": "token_window",
                        "word_start": start,
                        "word_end": end,
                    },
                )
            )
            if end >= total:
                break
            start += step

        return chunks

"""Quarry ingest pipeline: chunkers, embedding writer, document ingestor."""

from __future__ import annotations

from quarry.db.models import Chunk
from quarry.ingest.base import BaseChunker, estimate_token_count
from quarry.ingest.code import LineChunker
from quarry.ingest.markdown import MarkdownChunker, looks_like_markdown
from quarry.ingest.plaintext import TokenWindowChunker

STRATEGIES: frozenset[str] = frozenset(["token_window", "markdown", "auto"])


def chunk_text(
    text: str,
    strategy: str | None = None,
    max_tokens: int = 800,
    overlap: int = 120,
) -> list[Chunk]:
    """Chunk generic text with the named strategy.

    ``None`` or ``"auto"`` picks markdown when any line is a heading and
    the token window otherwise.
    """
    if strategy in (None, "auto"):
        strategy = "markdown" if looks_like_markdown(text) else "token_window"
    if strategy == "markdown":
        return MarkdownChunker(max_tokens=max_tokens, overlap=overlap).chunk(text)
    if strategy == "token_window":
        return TokenWindowChunker(max_tokens=max_tokens, overlap=overlap).chunk(text)
    raise ValueError(f"Unknown chunking strategy '{strategy}'")


__all__ = [
    "BaseChunker",
    "LineChunker",
    "MarkdownChunker",
    "STRATEGIES",
    "TokenWindowChunker",
    "chunk_text",
    "estimate_token_count",
]

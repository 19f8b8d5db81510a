"""Line-based code chunker.

Works for every language without a parser: windows of at most ``max_lines``
lines, cut at a nearby natural break where one exists. The break tokens
(blank line, ``}``, ``};``, ``end``, ``})``) suit brace and ``end``-delimited
languages; indentation-based and Lisp-like sources still chunk correctly,
just at less meaningful boundaries.
"""

from __future__ import annotations

from quarry.db.models import Chunk
from quarry.indexer.scanner import hash_file
from quarry.ingest.base import BaseChunker, estimate_token_count

_BREAK_LINES: frozenset[str] = frozenset(["", "}", "};", "end", "})"])
_BREAK_LOOKBACK = 30


class LineChunker(BaseChunker):
    """Split source code into overlapping line windows.

    Each chunk's metadata carries ``line_start``/``line_end`` (1-based,
    inclusive) and ``hash``, the content hash of the chunk text.

    Args:
        max_lines: Largest window, in lines.
        min_lines: Windows (and whole files) shorter than this are dropped.
        overlap_lines: Lines shared between consecutive windows.
    """

    def __init__(self, max_lines: int = 200, min_lines: int = 5, overlap_lines: int = 20) -> None:
        if max_lines < 1:
            raise ValueError("max_lines must be >= 1")
        if not 1 <= min_lines <= max_lines:
            raise ValueError("min_lines must be in [1, max_lines]")
        if not 0 <= overlap_lines < max_lines:
            raise ValueError("overlap_lines must be in [0, max_lines)")
        self.max_lines = max_lines
        self.min_lines = min_lines
        self.overlap_lines = overlap_lines

    def chunk(self, content: str) -> list[Chunk]:
        lines = content.split("\n")
        total = len(lines)

        if total <= self.max_lines:
            if total < self.min_lines or not content.strip():
                return []
            return [self._make(content, 0, 1, total)]

        chunks: list[Chunk] = []
        start = 0
        while start < total:
            end = min(start + self.max_lines, total)
            if end < total:
                end = self._find_break(lines, start, end)

            if end - start >= self.min_lines:
                text = "\n".join(lines[start:end])
                chunks.append(self._make(text, len(chunks), start + 1, end))

            if end >= total:
                break
            next_start = end - self.overlap_lines
            start = next_start if next_start > start else end

        return chunks

    def _find_break(self, lines: list[str], start: int, end: int) -> int:
        """Return the cut position: just after the last break line in range, else *end*."""
        floor = max(start + self.min_lines, end - _BREAK_LOOKBACK)
        for i in range(end - 1, floor - 1, -1):
            if lines[i].strip() in _BREAK_LINES:
                return i + 1
        return end

    @staticmethod
    def _make(text: str, index: int, line_start: int, line_end: int) -> Chunk:
        return Chunk(
            content=text,
            index=index,
            token_count=estimate_token_count(text),
            metadata={
                "strategy": "code",
                "line_start": line_start,
                "line_end": line_end,
                "hash": hash_file(text),
            },
        )

"""Markdown chunker: heading-aware sections with token-window fallback."""

from __future__ import annotations

import re

from quarry.db.models import Chunk
from quarry.ingest.base import BaseChunker, estimate_token_count
from quarry.ingest.plaintext import TokenWindowChunker

# Any ATX heading, H1 through H6.
HEADING_RE = re.compile(r"^#{1,6}\s")
_FENCE = "```"


class MarkdownChunker(BaseChunker):
    """Split Markdown on heading boundaries.

    Strategy:
    - Walk the lines; a heading outside a ``` fence starts a new *section*.
      Content before the first heading is a section with an empty heading.
    - Greedily merge consecutive sections (joined by a blank line) while the
      merged text stays within ``max_tokens``.
    - A section that alone exceeds ``max_tokens`` is split with
      ``TokenWindowChunker`` and every piece is tagged with the section's
      heading and ``sub_chunk=True``.
    """

    def __init__(self, max_tokens: int = 800, overlap: int = 120) -> None:
        self._window = TokenWindowChunker(max_tokens=max_tokens, overlap=overlap)
        self.max_tokens = max_tokens
        self.overlap = overlap

    def chunk(self, content: str) -> list[Chunk]:
        if not content.strip():
            return []

        texts: list[tuple[str, dict]] = []
        buffer = ""
        buffer_heading = ""

        def flush() -> None:
            nonlocal buffer, buffer_heading
            if buffer.strip():
                texts.append((buffer.strip(), {"strategy": "markdown", "heading": buffer_heading}))
            buffer = ""
            buffer_heading = ""

        for heading, section in self._split_sections(content):
            if estimate_token_count(section) > self.max_tokens:
                flush()
                for sub in self._window.chunk(section):
                    texts.append(
                        (sub.content, {"strategy": "markdown", "heading": heading, "sub_chunk": True})
                    )
                continue

            combined = f"{buffer}\n\n{section}" if buffer else section
            if estimate_token_count(combined) > self.max_tokens:
                flush()
                buffer = section
                buffer_heading = heading
            else:
                buffer = combined
                if not buffer_heading:
                    buffer_heading = heading
        flush()

        return [
            Chunk(content=text, index=i, token_count=estimate_token_count(text), metadata=meta)
            for i, (text, meta) in enumerate(texts)
        ]

    @staticmethod
    def _split_sections(content: str) -> list[tuple[str, str]]:
        """Return ``(heading_line, section_text)`` pairs in document order."""
        sections: list[tuple[str, str]] = []
        heading = ""
        lines: list[str] = []
        in_code = False

        for line in content.split("\n"):
            if line.strip().startswith(_FENCE):
                in_code = not in_code
                lines.append(line)
                continue
            if not in_code and HEADING_RE.match(line):
                if lines:
                    sections.append((heading, "\n".join(lines)))
                heading = line.strip()
                lines = [line]
            else:
                lines.append(line)

        if lines:
            sections.append((heading, "\n".join(lines)))
        return sections


def looks_like_markdown(text: str) -> bool:
    """True if any line of *text* is a Markdown heading."""
    return any(HEADING_RE.match(line) for line in text.split("\n"))

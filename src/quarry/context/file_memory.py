"""File-backed memory: human-readable daily markdown logs plus a JSON index.

Each entry is appended to ``<base_dir>/YYYY-MM-DD.md`` (the date taken from
the entry's ``created_at``) and recorded in ``<base_dir>/index.json`` so
lookups do not have to parse every log. The logs are meant to be read,
edited and committed by people; the index is the only thing quarry relies on.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from pathlib import Path

from quarry.db.models import MemoryEntry
from quarry.db.repository import utc_now
from quarry.logging import get_logger

log = get_logger(__name__)

_DATE_FILE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}\.md$")
_PREVIEW_CHARS = 100
INDEX_FILE = "index.json"


@dataclass
class FileMemoryIndexEntry:
    id: str
    date: str
    category: str
    scope: str
    source_id: str | None
    preview: str
    created_at: str


class FileMemory:
    """Append-only markdown memory log under *base_dir* (created if missing)."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir).expanduser().resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._index_path = self.base_dir / INDEX_FILE
        self._entries: list[FileMemoryIndexEntry] = self._load_index()

    def write(self, entry: MemoryEntry) -> Path:
        """Append *entry* to its daily log and index it.

        Returns:
            Path of the daily log written to.
        """
        created_at = entry.created_at or utc_now()
        date = created_at[:10]
        path = self.base_dir / f"{date}.md"

        tags = [f"category:{entry.category}", f"scope:{entry.scope}"]
        if entry.source_id:
            tags.append(f"source:{entry.source_id}")
        if entry.auto_captured:
            tags.append("auto")
        tags.append(f"importance:{entry.importance:.2f}")

        block = "\n".join(
            [
                f"### [{created_at}] {entry.category}",
                f"> ID: {entry.id} | Tags: {', '.join(tags)}",
                "",
                entry.content,
                "",
                "---",
                "",
            ]
        )
        is_new = not path.exists()
        with path.open("a", encoding="utf-8") as fh:
            if is_new:
                fh.write(f"# Memory Log - {date}\n\n")
            fh.write(block)

        self._entries.append(
            FileMemoryIndexEntry(
                id=entry.id,
                date=date,
                category=entry.category,
                scope=entry.scope,
                source_id=entry.source_id,
                preview=entry.content[:_PREVIEW_CHARS],
                created_at=created_at,
            )
        )
        self._save_index()
        log.info("memory_file_written", id=entry.id, path=str(path))
        return path

    def read_date(self, date: str) -> str | None:
        """Raw markdown log for *date* (``YYYY-MM-DD``), or None."""
        path = self.base_dir / f"{date}.md"
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def list_dates(self) -> list[str]:
        """Dates that have a log, newest first."""
        return sorted(
            (p.name[:-3] for p in self.base_dir.iterdir() if _DATE_FILE_RE.match(p.name)),
            reverse=True,
        )

    def search(
        self,
        query: str,
        scope: str | None = None,
        source_id: str | None = None,
        limit: int = 20,
    ) -> list[FileMemoryIndexEntry]:
        """Case-insensitive keyword search, newest first.

        The preview is checked first; the full entry is read from its log
        only when the preview does not match.
        """
        needle = query.lower()
        results = []
        for e in self._entries:
            if scope is not None and e.scope != scope:
                continue
            if source_id is not None and e.source_id != source_id:
                continue
            if needle in e.preview.lower():
                results.append(e)
                continue
            full = self.get_entry_content(e.id)
            if full is not None and needle in full.lower():
                results.append(e)
        results.sort(key=lambda e: e.created_at, reverse=True)
        return results[:limit]

    def get_entry_content(self, entry_id: str) -> str | None:
        """Full content of an indexed entry, parsed back out of its log."""
        indexed = next((e for e in self._entries if e.id == entry_id), None)
        if indexed is None:
            return None
        text = self.read_date(indexed.date)
        if text is None:
            return None
        pattern = re.compile(
            r"### \[.*?\].*?\n> ID: " + re.escape(entry_id) + r".*?\n\n([\s\S]*?)\n---",
            re.MULTILINE,
        )
        match = pattern.search(text)
        return match.group(1).strip() if match else None

    def delete_entry(self, entry_id: str) -> bool:
        """Remove *entry_id* from the index. The markdown log is left as is."""
        for i, e in enumerate(self._entries):
            if e.id == entry_id:
                del self._entries[i]
                self._save_index()
                return True
        return False

    def count(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Index persistence
    # ------------------------------------------------------------------

    def _load_index(self) -> list[FileMemoryIndexEntry]:
        if not self._index_path.is_file():
            return []
        try:
            data = json.loads(self._index_path.read_text(encoding="utf-8"))
            return [FileMemoryIndexEntry(**e) for e in data.get("entries", [])]
        except (json.JSONDecodeError, TypeError, AttributeError) as exc:
            log.warning("memory_index_unreadable", path=str(self._index_path), error=str(exc))
            return []

    def _save_index(self) -> None:
        payload = {
            "entries": [asdict(e) for e in self._entries],
            "last_updated": utc_now(),
        }
        self._index_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

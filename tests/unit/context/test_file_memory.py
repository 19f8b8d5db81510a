"""Tests for the markdown-backed FileMemory."""

from __future__ import annotations

import json

import pytest

from quarry.context.file_memory import INDEX_FILE, FileMemory
from quarry.db.models import MemoryEntry


def _entry(entry_id: str, content: str, created_at: str, **kw) -> MemoryEntry:
    defaults = dict(type="fact", category="preference", scope="chat", source_id="chat-1")
    defaults.update(kw)
    return MemoryEntry(id=entry_id, content=content, created_at=created_at, **defaults)


@pytest.fixture
def memory(tmp_path):
    return FileMemory(tmp_path / "memory")


def test_write_appends_to_daily_log(memory):
    path = memory.write(_entry("m1", "Likes green tea.", "2026-03-01T09:00:00+00:00", auto_captured=True))
    memory.write(_entry("m2", "Works nights.", "2026-03-01T21:00:00+00:00", importance=0.9))

    assert path.name == "2026-03-01.md"
    text = memory.read_date("2026-03-01")
    assert text.startswith("# Memory Log - 2026-03-01\n\n")
    assert text.count("# Memory Log") == 1
    assert "### [2026-03-01T09:00:00+00:00] preference" in text
    assert (
        "> ID: m1 | Tags: category:preference, scope:chat, source:chat-1, auto, importance:0.50"
        in text
    )
    assert "importance:0.90" in text
    assert text.index("Likes green tea.") < text.index("Works nights.")


def test_list_dates_newest_first(memory):
    memory.write(_entry("a", "first", "2026-01-02T00:00:00+00:00"))
    memory.write(_entry("b", "second", "2026-02-10T00:00:00+00:00"))
    (memory.base_dir / "notes.md").write_text("not a log", encoding="utf-8")

    assert memory.list_dates() == ["2026-02-10", "2026-01-02"]
    assert memory.read_date("2025-12-31") is None


def test_get_entry_content_parses_block(memory):
    memory.write(_entry("m1", "Line one.\nLine two.", "2026-03-01T09:00:00+00:00"))
    memory.write(_entry("m2", "Other entry.", "2026-03-01T10:00:00+00:00"))

    assert memory.get_entry_content("m1") == "Line one.\nLine two."
    assert memory.get_entry_content("m2") == "Other entry."
    assert memory.get_entry_content("missing") is None


def test_search_filters_and_orders(memory):
    memory.write(_entry("old", "Enjoys hiking trips.", "2026-01-01T00:00:00+00:00"))
    memory.write(_entry("new", "Planning a hiking holiday.", "2026-02-01T00:00:00+00:00"))
    memory.write(_entry("char", "Hiking is boring.", "2026-02-02T00:00:00+00:00", scope="character", source_id="c1"))

    assert [e.id for e in memory.search("HIKING")] == ["char", "new", "old"]
    assert [e.id for e in memory.search("hiking", scope="chat")] == ["new", "old"]
    assert [e.id for e in memory.search("hiking", source_id="c1")] == ["char"]
    assert [e.id for e in memory.search("hiking", limit=1)] == ["char"]
    assert memory.search("sailing") == []


def test_search_falls_back_to_full_content(memory):
    long_content = "x" * 150 + " hidden keyword"
    memory.write(_entry("m1", long_content, "2026-03-01T09:00:00+00:00"))

    (hit,) = memory.search("hidden keyword")
    assert hit.id == "m1"
    assert len(hit.preview) == 100


def test_index_survives_reload(memory, tmp_path):
    memory.write(_entry("m1", "Remember me.", "2026-03-01T09:00:00+00:00"))

    reloaded = FileMemory(tmp_path / "memory")

    assert reloaded.count() == 1
    assert reloaded.get_entry_content("m1") == "Remember me."
    data = json.loads((tmp_path / "memory" / INDEX_FILE).read_text(encoding="utf-8"))
    assert [e["id"] for e in data["entries"]] == ["m1"]
    assert "last_updated" in data


def test_delete_entry_only_touches_index(memory):
    memory.write(_entry("m1", "Forget me.", "2026-03-01T09:00:00+00:00"))

    assert memory.delete_entry("m1") is True
    assert memory.delete_entry("m1") is False
    assert memory.count() == 0
    assert memory.search("forget") == []
    assert "Forget me." in memory.read_date("2026-03-01")


def test_corrupt_index_starts_empty(tmp_path):
    base = tmp_path / "memory"
    base.mkdir()
    (base / INDEX_FILE).write_text("{not json", encoding="utf-8")

    assert FileMemory(base).count() == 0

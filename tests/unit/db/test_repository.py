"""Tests for the Quarry repositories."""

from __future__ import annotations

import pytest

from quarry.db.models import Chunk, CodeChunk, Document, MemoryEntry
from quarry.db.repository import (
    CodeChunkRepository,
    DocChunkRepository,
    DocumentRepository,
    IndexJobRepository,
    MemoryRepository,
)
from quarry.errors import JobConflictError, NotFoundError, ValidationError


@pytest.fixture
def documents(tmp_db):
    return DocumentRepository(tmp_db)


@pytest.fixture
def doc_chunks(tmp_db):
    return DocChunkRepository(tmp_db)


@pytest.fixture
def code_chunks(tmp_db):
    return CodeChunkRepository(tmp_db)


@pytest.fixture
def jobs(tmp_db):
    return IndexJobRepository(tmp_db)


def _doc(title="Notes"):
    return Document(id="", title=title, source_type="text")


def _code(file_path="a.py", line_start=1, line_end=3, file_hash="f1", workspace="/ws"):
    return CodeChunk(
        id="",
        workspace_path=workspace,
        file_path=file_path,
        language="python",
        content="def a():\n    pass\n",
        line_start=line_start,
        line_end=line_end,
        hash="h",
        file_hash=file_hash,
    )


# ------------------------------------------------------------------
# Documents and chunks
# ------------------------------------------------------------------

def test_create_document_assigns_id_and_timestamp(documents):
    doc = documents.create(_doc())
    assert doc.id
    assert doc.created_at
    assert documents.get(doc.id) == doc


def test_get_document_not_found(documents):
    assert documents.get("missing") is None


def test_update_chunk_count(documents):
    doc = documents.create(_doc())
    documents.update_chunk_count(doc.id, 7)
    assert documents.get(doc.id).chunk_count == 7


def test_doc_chunk_batch_round_trip(documents, doc_chunks):
    doc = documents.create(_doc())
    created = doc_chunks.create_batch(
        doc.id,
        [
            Chunk(content="first", index=0, token_count=2, metadata={"strategy": "token_window"}),
            Chunk(content="second", index=1, token_count=2),
        ],
    )
    stored = doc_chunks.get_by_document(doc.id)
    assert [c.content for c in stored] == ["first", "second"]
    assert stored[0].metadata == {"strategy": "token_window"}
    assert all(c.embedding_ref is None for c in stored)
    assert set(doc_chunks.get_many([created[0].id, "missing"])) == {created[0].id}


def test_doc_chunk_embedding_ref(documents, doc_chunks):
    doc = documents.create(_doc())
    (chunk,) = doc_chunks.create_batch(doc.id, [Chunk(content="x", index=0, token_count=1)])
    doc_chunks.update_embedding_ref(chunk.id, chunk.id)
    assert doc_chunks.get(chunk.id).embedding_ref == chunk.id


def test_delete_by_document_returns_ids(documents, doc_chunks):
    doc = documents.create(_doc())
    created = doc_chunks.create_batch(
        doc.id, [Chunk(content=str(i), index=i, token_count=1) for i in range(3)]
    )
    removed = doc_chunks.delete_by_document(doc.id)
    assert sorted(removed) == sorted(c.id for c in created)
    assert doc_chunks.count() == 0


def test_delete_document_cascades(documents, doc_chunks):
    doc = documents.create(_doc())
    doc_chunks.create_batch(doc.id, [Chunk(content="x", index=0, token_count=1)])
    assert documents.delete(doc.id) is True
    assert doc_chunks.count() == 0
    assert documents.delete(doc.id) is False


# ------------------------------------------------------------------
# Code chunks
# ------------------------------------------------------------------

def test_code_chunk_create_and_query(code_chunks):
    code_chunks.create_batch([_code(line_start=5, line_end=9), _code(line_start=1, line_end=4)])
    rows = code_chunks.get_by_file_path("/ws", "a.py")
    assert [(r.line_start, r.line_end) for r in rows] == [(1, 4), (5, 9)]
    assert code_chunks.count("/ws") == 2
    assert code_chunks.count("/other") == 0


def test_get_file_hashes(code_chunks):
    code_chunks.create_batch([_code("a.py", file_hash="fa"), _code("b.py", file_hash="fb")])
    assert code_chunks.get_file_hashes("/ws") == {"a.py": "fa", "b.py": "fb"}


def test_delete_by_file_path_only_touches_one_file(code_chunks):
    code_chunks.create_batch([_code("a.py"), _code("b.py")])
    removed = code_chunks.delete_by_file_path("/ws", "a.py")
    assert len(removed) == 1
    assert [c.file_path for c in code_chunks.list_by_workspace("/ws")] == ["b.py"]


def test_delete_by_workspace(code_chunks):
    code_chunks.create_batch([_code("a.py"), _code("a.py", workspace="/other")])
    assert len(code_chunks.delete_by_workspace("/ws")) == 1
    assert code_chunks.count() == 1


# ------------------------------------------------------------------
# Index jobs
# ------------------------------------------------------------------

def test_create_job_is_pending(jobs):
    job = jobs.create("/ws", "full")
    assert job.status == "pending"
    assert job.is_active
    assert jobs.get_active("/ws").id == job.id


def test_create_job_rejects_unknown_mode(jobs):
    with pytest.raises(ValidationError):
        jobs.create("/ws", "partial")


def test_second_active_job_conflicts(jobs):
    first = jobs.create("/ws")
    with pytest.raises(JobConflictError) as exc_info:
        jobs.create("/ws")
    assert exc_info.value.active_job_id == first.id


def test_other_workspace_does_not_conflict(jobs):
    jobs.create("/ws")
    assert jobs.create("/other").workspace_path == "/other"


def test_new_job_allowed_after_completion(jobs):
    first = jobs.create("/ws")
    assert jobs.update_status(first.id, "running")
    assert jobs.update_status(first.id, "completed")
    second = jobs.create("/ws")
    assert second.id != first.id


def test_status_transitions_stamp_times(jobs):
    job = jobs.create("/ws")
    jobs.update_status(job.id, "running")
    running = jobs.get(job.id)
    assert running.started_at is not None
    assert running.completed_at is None
    jobs.update_status(job.id, "failed", error="boom")
    failed = jobs.get(job.id)
    assert failed.status == "failed"
    assert failed.error == "boom"
    assert failed.completed_at is not None


def test_terminal_status_is_final(jobs):
    job = jobs.create("/ws")
    assert jobs.update_status(job.id, "cancelled") is True
    assert jobs.update_status(job.id, "completed") is False
    assert jobs.update_status(job.id, "running") is False
    assert jobs.get(job.id).status == "cancelled"


def test_update_status_unknown_job(jobs):
    with pytest.raises(NotFoundError):
        jobs.update_status("missing", "completed")


def test_update_status_rejects_pending(jobs):
    job = jobs.create("/ws")
    with pytest.raises(ValidationError):
        jobs.update_status(job.id, "pending")


def test_update_progress(jobs):
    job = jobs.create("/ws")
    jobs.update_progress(job.id, total_files=4)
    jobs.update_progress(job.id, processed_files=2, total_chunks=9)
    row = jobs.get(job.id)
    assert (row.total_files, row.processed_files, row.total_chunks) == (4, 2, 9)


def test_list_jobs_filters_by_status(jobs):
    a = jobs.create("/a")
    jobs.update_status(a.id, "cancelled")
    b = jobs.create("/b")
    assert [j.id for j in jobs.list(status="pending")] == [b.id]
    assert {j.id for j in jobs.list()} == {a.id, b.id}
    assert jobs.get_latest("/a").id == a.id


# ------------------------------------------------------------------
# Memory entries
# ------------------------------------------------------------------

def test_memory_entry_round_trip(tmp_db):
    repo = MemoryRepository(tmp_db)
    entry = repo.create(
        MemoryEntry(
            id="",
            type="summary",
            category="summary",
            scope="chat",
            content="digest",
            source_id="chat-1",
            importance=0.7,
            auto_captured=True,
        )
    )
    got = repo.get(entry.id)
    assert got.auto_captured is True
    assert got.importance == pytest.approx(0.7)
    assert [e.id for e in repo.list(scope="chat", source_id="chat-1")] == [entry.id]
    assert repo.list(scope="character") == []
    assert repo.delete(entry.id) is True


def _memory(content: str, importance: float = 0.5, scope: str = "global", source_id=None) -> MemoryEntry:
    return MemoryEntry(
        id="",
        type="memory",
        category="fact",
        scope=scope,
        content=content,
        source_id=source_id,
        importance=importance,
    )


def test_memory_search_by_content_orders_by_importance(tmp_db):
    repo = MemoryRepository(tmp_db)
    low = repo.create(_memory("Tea is brewed at 80 degrees", importance=0.2))
    high = repo.create(_memory("Green TEA goes well with rice", importance=0.9))
    repo.create(_memory("Coffee is roasted"))

    assert [e.id for e in repo.search_by_content("tea")] == [high.id, low.id]
    assert repo.search_by_content("tea", limit=1)[0].id == high.id
    assert repo.search_by_content("cocoa") == []


def test_memory_search_by_content_treats_wildcards_literally(tmp_db):
    repo = MemoryRepository(tmp_db)
    repo.create(_memory("Uptime reached 1000 hours"))
    pct = repo.create(_memory("Coverage is 100% now"))
    under = repo.create(_memory("Use snake_case names"))

    assert [e.id for e in repo.search_by_content("100%")] == [pct.id]
    assert [e.id for e in repo.search_by_content("e_c")] == [under.id]
    assert repo.search_by_content("snakeXcase") == []


def test_memory_search_by_content_and_list_filter_scope(tmp_db):
    repo = MemoryRepository(tmp_db)
    mine = repo.create(_memory("likes jazz", scope="chat", source_id="c1"))
    repo.create(_memory("likes jazz", scope="chat", source_id="c2"))

    assert [e.id for e in repo.search_by_content("jazz", scope="chat", source_id="c1")] == [mine.id]
    assert len(repo.list(limit=None)) == 2
    assert len(repo.list(limit=1)) == 1

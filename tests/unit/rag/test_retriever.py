"""Tests for dense retrieval over documents and code."""

from __future__ import annotations

import pytest

from quarry.db.models import Chunk, CodeChunk, Document
from quarry.db.repository import CodeChunkRepository, DocChunkRepository, DocumentRepository
from quarry.errors import ValidationError
from quarry.rag.retriever import embed_query, search_code, search_documents


@pytest.fixture
def doc_repos(tmp_db):
    return DocumentRepository(tmp_db), DocChunkRepository(tmp_db)


async def _index_doc(doc_repos, provider, store, title: str, texts: list[str]) -> list[str]:
    documents, chunks = doc_repos
    doc = documents.create(Document(id="", title=title, source_type="text"))
    rows = chunks.create_batch(
        doc.id, [Chunk(content=t, index=i, token_count=len(t.split())) for i, t in enumerate(texts)]
    )
    result = await provider.embed([r.content for r in rows])
    for row, vector in zip(rows, result.embeddings):
        store.insert(row.id, vector, {"type": "doc_chunk", "document_id": doc.id})
    return [r.id for r in rows]


async def _index_code(tmp_db, provider, store, file_path: str, language: str, content: str) -> str:
    repo = CodeChunkRepository(tmp_db)
    (row,) = repo.create_batch(
        [
            CodeChunk(
                id="",
                document_id="job-1",
                workspace_path="/ws",
                file_path=file_path,
                language=language,
                content=content,
                line_start=1,
                line_end=content.count("\n") + 1,
                hash="h",
                file_hash="fh",
            )
        ]
    )
    vector = (await provider.embed([content])).embeddings[0]
    store.insert(
        row.id, vector, {"type": "code", "workspace_path": "/ws", "language": language}
    )
    return row.id


@pytest.mark.asyncio
async def test_embed_query_rejects_blank(provider):
    for query in ("", "   ", "\n"):
        with pytest.raises(ValidationError):
            await embed_query(query, provider)


@pytest.mark.asyncio
async def test_search_documents_ranks_and_titles(doc_repos, provider, store):
    await _index_doc(doc_repos, provider, store, "Cooking", ["bake bread with flour and yeast"])
    await _index_doc(doc_repos, provider, store, "Space", ["orbital rockets burn fuel"])

    results = await search_documents("rockets fuel", provider, store, *doc_repos, top_k=2)

    assert results[0].title == "Space"
    assert results[0].chunk_index == 0
    assert results[0].score >= results[-1].score


@pytest.mark.asyncio
async def test_stale_hits_are_skipped(doc_repos, provider, store):
    ids = await _index_doc(doc_repos, provider, store, "Notes", ["alpha beta", "alpha gamma"])
    store.insert("ghost", (await provider.embed(["alpha"])).embeddings[0], {"type": "doc_chunk"})
    doc_repos[1].delete_by_document(doc_repos[1].get(ids[0]).document_id)
    remaining = await _index_doc(doc_repos, provider, store, "Kept", ["alpha delta"])

    results = await search_documents("alpha", provider, store, *doc_repos, top_k=5)

    assert [r.chunk_id for r in results] == remaining


@pytest.mark.asyncio
async def test_non_positive_top_k_returns_nothing(doc_repos, provider, store):
    await _index_doc(doc_repos, provider, store, "Notes", ["alpha beta"])
    assert await search_documents("alpha", provider, store, *doc_repos, top_k=0) == []
    assert await search_documents("alpha", provider, store, *doc_repos, top_k=-1) == []


@pytest.mark.asyncio
async def test_non_positive_top_k_still_validates_query(doc_repos, provider, store):
    with pytest.raises(ValidationError):
        await search_documents(" ", provider, store, *doc_repos, top_k=0)


@pytest.mark.asyncio
async def test_search_code_filters_language(tmp_db, provider, store):
    py_id = await _index_code(tmp_db, provider, store, "a.py", "python", "def parse_config(): pass")
    await _index_code(tmp_db, provider, store, "a.js", "javascript", "function parse_config() {}")

    results = await search_code(
        "parse_config", provider, store, CodeChunkRepository(tmp_db), language="python"
    )

    assert [r.chunk_id for r in results] == [py_id]
    assert results[0].file_path == "a.py"
    assert results[0].line_start == 1


@pytest.mark.asyncio
async def test_search_code_workspace_filter(tmp_db, provider, store):
    await _index_code(tmp_db, provider, store, "a.py", "python", "x = 1")
    results = await search_code(
        "x", provider, store, CodeChunkRepository(tmp_db), workspace_path="/elsewhere"
    )
    assert results == []

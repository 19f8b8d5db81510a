"""Dense retrieval: embed the query, k-NN the vector store, join to chunk rows.

Vector entries and chunk rows share ids but no foreign key, so a hit may
point at a row that was deleted in the meantime (or, during a reindex, not
written yet). Such stale hits are skipped. The store is asked for twice
``top_k`` candidates so that skipping a few still fills the page.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from quarry.db.repository import CodeChunkRepository, DocChunkRepository, DocumentRepository
from quarry.db.vectors import VectorHit, VectorStore
from quarry.errors import ProviderError, ValidationError
from quarry.rag.embeddings import EmbeddingProvider

_OVERFETCH = 2


@dataclass
class CodeSearchResult:
    chunk_id: str
    file_path: str
    language: str
    content: str
    line_start: int
    line_end: int
    score: float


@dataclass
class DocSearchResult:
    chunk_id: str
    document_id: str
    title: str
    content: str
    chunk_index: int
    score: float


async def embed_query(query: str, provider: EmbeddingProvider) -> list[float]:
    """Embed a single non-blank query.

    Raises:
        ValidationError: If *query* is blank.
        ProviderError: If the provider returns no vector.
    """
    if not query or not query.strip():
        raise ValidationError("query must not be empty")
    result = await provider.embed([query])
    if len(result.embeddings) != 1:
        raise ProviderError("Embedding provider returned no vector for the query")
    return result.embeddings[0]


async def _hits(
    query: str,
    provider: EmbeddingProvider,
    store: VectorStore,
    top_k: int,
    flt: dict[str, Any],
) -> list[VectorHit]:
    vector = await embed_query(query, provider)
    if top_k <= 0:
        return []
    return store.search(vector, top_k * _OVERFETCH, flt)


async def search_code(
    query: str,
    provider: EmbeddingProvider,
    store: VectorStore,
    chunks: CodeChunkRepository,
    workspace_path: str | None = None,
    language: str | None = None,
    top_k: int = 10,
) -> list[CodeSearchResult]:
    """Rank code chunks by similarity to *query*, best first."""
    flt: dict[str, Any] = {"type": "code"}
    if workspace_path is not None:
        flt["workspace_path"] = workspace_path
    if language is not None:
        flt["language"] = language

    hits = await _hits(query, provider, store, top_k, flt)
    rows = chunks.get_many([h.id for h in hits])
    results: list[CodeSearchResult] = []
    for hit in hits:
        row = rows.get(hit.id)
        if row is None:
            continue
        results.append(
            CodeSearchResult(
                chunk_id=row.id,
                file_path=row.file_path,
                language=row.language,
                content=row.content,
                line_start=row.line_start,
                line_end=row.line_end,
                score=hit.score,
            )
        )
        if len(results) == top_k:
            break
    return results


async def search_documents(
    query: str,
    provider: EmbeddingProvider,
    store: VectorStore,
    documents: DocumentRepository,
    chunks: DocChunkRepository,
    top_k: int = 10,
) -> list[DocSearchResult]:
    """Rank document chunks by similarity to *query*, best first."""
    hits = await _hits(query, provider, store, top_k, {"type": "doc_chunk"})
    rows = chunks.get_many([h.id for h in hits])
    titles: dict[str, str] = {}
    results: list[DocSearchResult] = []
    for hit in hits:
        row = rows.get(hit.id)
        if row is None:
            continue
        if row.document_id not in titles:
            doc = documents.get(row.document_id)
            titles[row.document_id] = doc.title if doc else ""
        results.append(
            DocSearchResult(
                chunk_id=row.id,
                document_id=row.document_id,
                title=titles[row.document_id],
                content=row.content,
                chunk_index=row.chunk_index,
                score=hit.score,
            )
        )
        if len(results) == top_k:
            break
    return results

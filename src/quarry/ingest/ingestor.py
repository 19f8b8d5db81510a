"""Document ingestor: extract → chunk → persist → embed for text, URL and file sources."""

from __future__ import annotations

import asyncio
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from quarry.db.models import DocChunk, Document
from quarry.db.repository import DocChunkRepository, DocumentRepository
from quarry.db.vectors import VectorStore
from quarry.errors import EmptyContentError, NotFoundError, ValidationError
from quarry.ingest import chunk_text
from quarry.ingest.embedding_writer import DEFAULT_BATCH_SIZE, EmbeddingWriter, PendingEmbedding
from quarry.ingest.web import fetch_url
from quarry.logging import get_logger
from quarry.rag.embeddings import EmbeddingProvider
from quarry.rag.retriever import DocSearchResult, search_documents

log = get_logger(__name__)

_SOURCE_TYPES = ("text", "url", "file")
_TITLE_PREVIEW_CHARS = 50


@dataclass
class IngestRequest:
    """What to ingest.

    Attributes:
        type: ``text``, ``url`` or ``file``.
        content: Verbatim text (``text`` and ``file``).
        url: Address to fetch (``url``).
        path: File to read when ``type == "file"`` and no content is given.
        title: Document title; derived from the source when omitted.
        mime_type: Stored on the document; URL fetches use the response type.
    """

    type: str
    content: str | None = None
    url: str | None = None
    path: str | None = None
    title: str | None = None
    mime_type: str | None = None


@dataclass
class IngestResult:
    document: Document
    chunks: int
    embeddings: int


@dataclass
class IngestorConfig:
    strategy: str = "token_window"
    max_tokens: int = 800
    overlap: int = 120
    batch_size: int = DEFAULT_BATCH_SIZE


class DocumentIngestor:
    """Turns text, URLs and files into searchable document chunks.

    Args:
        documents: Document repository.
        chunks: Document chunk repository.
        provider: Embedding provider.
        store: Vector store shared with search.
        config: Chunking strategy and batch size.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        chunks: DocChunkRepository,
        provider: EmbeddingProvider,
        store: VectorStore,
        config: IngestorConfig | None = None,
    ) -> None:
        self._documents = documents
        self._chunks = chunks
        self._store = store
        self._provider = provider
        self._config = config or IngestorConfig()
        self._writer = EmbeddingWriter(provider, store, batch_size=self._config.batch_size)

    async def ingest(self, request: IngestRequest) -> IngestResult:
        """Ingest one source.

        Embedding is partial-success: a failed batch is logged and its chunks
        stay without an ``embedding_ref`` until ``reconcile()``.

        Raises:
            ValidationError: Unknown type or a required field is missing.
            EmptyContentError: Extraction produced only whitespace.
            SsrfError: The URL points at a private address.
            ProviderError: The URL could not be fetched.
        """
        if request.type not in _SOURCE_TYPES:
            raise ValidationError(f"Unsupported ingest type '{request.type}'")
        log.info("ingest_started", type=request.type, title=request.title)

        text, mime_type = await self._extract(request)
        if not text.strip():
            raise EmptyContentError("No text content extracted from source")

        document = self._documents.create(
            Document(
                id="",
                title=request.title or self._default_title(request),
                source_type=request.type,
                source_uri=request.url or request.path,
                mime_type=request.mime_type or mime_type,
                size_bytes=len(text.encode("utf-8")),
            )
        )

        chunks = chunk_text(
            text,
            strategy=self._config.strategy,
            max_tokens=self._config.max_tokens,
            overlap=self._config.overlap,
        )
        stored = self._chunks.create_batch(document.id, chunks)
        log.debug("document_chunked", document_id=document.id, chunks=len(stored))

        embedded = await self._embed(stored)

        self._documents.update_chunk_count(document.id, len(stored))
        document = self._documents.get(document.id) or document
        log.info(
            "ingest_completed",
            document_id=document.id,
            chunks=len(stored),
            embeddings=embedded,
        )
        return IngestResult(document=document, chunks=len(stored), embeddings=embedded)

    def get_document(self, document_id: str) -> Document:
        doc = self._documents.get(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        return doc

    def list_documents(self) -> list[Document]:
        return self._documents.list()

    def delete_document(self, document_id: str) -> int:
        """Delete a document, its chunks and their vectors; return the chunk count removed."""
        if self._documents.get(document_id) is None:
            raise NotFoundError("Document", document_id)
        chunk_ids = self._chunks.delete_by_document(document_id)
        for chunk_id in chunk_ids:
            self._store.delete(chunk_id)
        self._documents.delete(document_id)
        log.info("document_deleted", document_id=document_id, chunks=len(chunk_ids))
        return len(chunk_ids)

    async def search(self, query: str, top_k: int = 10) -> list[DocSearchResult]:
        """Document chunks most similar to *query*, best first."""
        return await search_documents(
            query, self._provider, self._store, self._documents, self._chunks, top_k=top_k
        )

    async def reconcile(self) -> int:
        """Re-embed chunks with no embedding_ref or no vector in the store."""
        missing = [
            c
            for c in self._chunks.list_all()
            if c.embedding_ref is None or not self._store.contains(c.id)
        ]
        if not missing:
            return 0
        count = await self._embed(missing)
        log.info("documents_reconciled", missing=len(missing), embedded=count)
        return count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed(self, chunks: list[DocChunk]) -> int:
        items = [
            PendingEmbedding(
                id=c.id,
                text=c.content,
                metadata={
                    "type": "doc_chunk",
                    "document_id": c.document_id,
                    "chunk_index": c.chunk_index,
                    "entry_id": c.id,
                    "scope": "global",
                    "category": "document",
                },
            )
            for c in chunks
        ]
        return await self._writer.write(
            items, lambda chunk_id: self._chunks.update_embedding_ref(chunk_id, chunk_id)
        )

    async def _extract(self, request: IngestRequest) -> tuple[str, str]:
        """Return ``(text, mime_type)`` for *request*."""
        if request.type == "url":
            if not request.url:
                raise ValidationError("url is required for type 'url'")
            page = await asyncio.to_thread(fetch_url, request.url)
            return page.text, page.content_type
        if request.content is not None:
            return request.content, "text/plain"
        if request.type == "file" and request.path:
            text = await asyncio.to_thread(Path(request.path).read_text, encoding="utf-8")
            return text, "text/plain"
        raise ValidationError(f"content is required for type '{request.type}'")

    @staticmethod
    def _default_title(request: IngestRequest) -> str:
        if request.url:
            parsed = urllib.parse.urlparse(request.url)
            if parsed.hostname:
                return parsed.hostname + parsed.path
            return request.url[:100]
        if request.content:
            return request.content[:_TITLE_PREVIEW_CHARS].replace("\n", " ") + "..."
        if request.path:
            return Path(request.path).name
        return f"Document {datetime.now(timezone.utc).isoformat()}"

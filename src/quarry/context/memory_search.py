"""Memory recall: vector, keyword and file-backed search over memory entries.

Candidates come from three places:

- the vector store (entries written by ``index_entry``, metadata
  ``type=memory``), scored by cosine similarity;
- a SQL substring match on ``memory_entries.content``, base score 0.5;
- the file-backed memory log when one is configured, base score 0.4.

An entry found more than once keeps its best base score. Every candidate is
then ranked by ``base * 0.7 + recency * 0.2 + importance * 0.1``, where
recency falls linearly from 1 (just created) to 0 at ``recency_window_days``.
Results below ``min_score`` are dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from quarry.context.file_memory import FileMemory
from quarry.db.models import MemoryEntry
from quarry.db.repository import MemoryRepository
from quarry.db.vectors import VectorStore
from quarry.errors import ProviderError, ValidationError
from quarry.ingest.embedding_writer import EmbeddingWriter, PendingEmbedding
from quarry.logging import get_logger
from quarry.rag.embeddings import EmbeddingProvider
from quarry.rag.retriever import embed_query

log = get_logger(__name__)

VECTOR_WEIGHT = 0.7
RECENCY_WEIGHT = 0.2
IMPORTANCE_WEIGHT = 0.1
KEYWORD_SCORE = 0.5
FILE_SCORE = 0.4
_FILE_IMPORTANCE = 0.5
_OVERFETCH = 2
_SECONDS_PER_DAY = 86_400


@dataclass
class MemorySearchConfig:
    default_limit: int = 10
    min_score: float = 0.3
    recency_window_days: int = 30


@dataclass
class MemorySearchResult:
    entry: MemoryEntry
    score: float
    source: str  # vector | keyword | file


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def recency_score(created_at: str | None, window_days: float, now: datetime | None = None) -> float:
    """1.0 for an entry created *now*, falling linearly to 0.0 at *window_days*."""
    created = _parse_time(created_at)
    if created is None or window_days <= 0:
        return 0.0
    now = now or datetime.now(timezone.utc)
    age_days = (now - created).total_seconds() / _SECONDS_PER_DAY
    return min(1.0, max(0.0, 1.0 - age_days / window_days))


def format_memory_context(results: list[MemorySearchResult]) -> str:
    """Render results as a numbered ``## Relevant Memory`` block for a prompt."""
    if not results:
        return ""
    lines = ["## Relevant Memory", ""]
    for i, r in enumerate(results, start=1):
        scope = f" ({r.entry.scope})" if r.entry.scope != "global" else ""
        lines.append(f"{i}. [{r.entry.category}{scope}] {r.entry.content}")
    return "\n".join(lines)


class MemorySearch:
    """Embed memory entries and recall them by query.

    Args:
        memory_repo: Memory entry repository.
        provider: Embedding provider, shared with document search.
        store: Vector store; memory vectors carry ``type=memory``.
        file_memory: Optional markdown log searched alongside the database.
        config: Result limit, score floor and recency window.
    """

    def __init__(
        self,
        memory_repo: MemoryRepository,
        provider: EmbeddingProvider,
        store: VectorStore,
        file_memory: FileMemory | None = None,
        config: MemorySearchConfig | None = None,
    ) -> None:
        self._memory = memory_repo
        self._provider = provider
        self._store = store
        self._file_memory = file_memory
        self._config = config or MemorySearchConfig()
        self._writer = EmbeddingWriter(provider, store)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_entry(self, entry: MemoryEntry) -> bool:
        """Embed *entry* and record its embedding_ref.

        Returns:
            False when the provider failed; the entry stays unembedded until
            ``reconcile`` runs.
        """
        return await self._embed([entry]) == 1

    async def reconcile(self) -> int:
        """Re-embed entries with no embedding_ref or no vector in the store."""
        missing = [
            e
            for e in self._memory.list(limit=None)
            if e.embedding_ref is None or not self._store.contains(e.id)
        ]
        if not missing:
            return 0
        count = await self._embed(missing)
        log.info("memory_reconciled", missing=len(missing), embedded=count)
        return count

    async def _embed(self, entries: list[MemoryEntry]) -> int:
        items = [
            PendingEmbedding(
                id=e.id,
                text=e.content,
                metadata={
                    "type": "memory",
                    "entry_id": e.id,
                    "category": e.category,
                    "scope": e.scope,
                    "source_id": e.source_id,
                },
            )
            for e in entries
        ]
        return await self._writer.write(
            items, lambda entry_id: self._memory.update_embedding_ref(entry_id, entry_id)
        )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        scope: str | None = None,
        source_id: str | None = None,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> list[MemorySearchResult]:
        """Memory entries relevant to *query*, best first.

        A provider failure only loses the vector candidates; keyword and
        file matches are still returned.

        Raises:
            ValidationError: If *query* is blank.
        """
        if not query or not query.strip():
            raise ValidationError("query must not be empty")
        limit = self._config.default_limit if limit is None else limit
        floor = self._config.min_score if min_score is None else min_score
        if limit <= 0:
            return []

        candidates: dict[str, MemorySearchResult] = {}
        try:
            found = await self._vector_candidates(query, scope, source_id, limit * _OVERFETCH)
        except ProviderError as exc:
            log.warning("memory_vector_search_failed", error=str(exc))
            found = []
        found += self._keyword_candidates(query, scope, source_id, limit)
        found += self._file_candidates(query, scope, source_id, limit)
        for candidate in found:
            best = candidates.get(candidate.entry.id)
            if best is None or candidate.score > best.score:
                candidates[candidate.entry.id] = candidate

        ranked = self._rank(list(candidates.values()))
        results = [r for r in ranked if r.score >= floor][:limit]
        log.debug("memory_search", query=query[:80], candidates=len(candidates), results=len(results))
        return results

    async def _vector_candidates(
        self, query: str, scope: str | None, source_id: str | None, top_k: int
    ) -> list[MemorySearchResult]:
        vector = await embed_query(query, self._provider)
        flt: dict[str, Any] = {"type": "memory"}
        if scope is not None:
            flt["scope"] = scope
        if source_id is not None:
            flt["source_id"] = source_id
        results = []
        for hit in self._store.search(vector, top_k, flt):
            entry = self._memory.get(hit.id)
            if entry is None:
                continue  # deleted since it was embedded
            results.append(MemorySearchResult(entry=entry, score=hit.score, source="vector"))
        return results

    def _keyword_candidates(
        self, query: str, scope: str | None, source_id: str | None, limit: int
    ) -> list[MemorySearchResult]:
        return [
            MemorySearchResult(entry=entry, score=KEYWORD_SCORE, source="keyword")
            for entry in self._memory.search_by_content(
                query.strip(), scope=scope, source_id=source_id, limit=limit
            )
        ]

    def _file_candidates(
        self, query: str, scope: str | None, source_id: str | None, limit: int
    ) -> list[MemorySearchResult]:
        if self._file_memory is None:
            return []
        results = []
        for hit in self._file_memory.search(query.strip(), scope=scope, source_id=source_id, limit=limit):
            content = self._file_memory.get_entry_content(hit.id)
            entry = MemoryEntry(
                id=hit.id,
                type="memory",
                category=hit.category,
                scope=hit.scope,
                source_id=hit.source_id,
                content=content if content is not None else hit.preview,
                importance=_FILE_IMPORTANCE,
                created_at=hit.created_at,
            )
            results.append(MemorySearchResult(entry=entry, score=FILE_SCORE, source="file"))
        return results

    def _rank(self, results: list[MemorySearchResult]) -> list[MemorySearchResult]:
        now = datetime.now(timezone.utc)
        window = self._config.recency_window_days
        ranked = [
            replace(
                r,
                score=r.score * VECTOR_WEIGHT
                + recency_score(r.entry.created_at, window, now) * RECENCY_WEIGHT
                + r.entry.importance * IMPORTANCE_WEIGHT,
            )
            for r in results
        ]
        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked

    def get_config(self) -> MemorySearchConfig:
        return replace(self._config)

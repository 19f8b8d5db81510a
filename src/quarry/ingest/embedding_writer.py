"""Embedding writer: batched embed → vector insert → embedding_ref.

Shared by the document ingestor, the code indexer and both reconcile
passes. Batches run one after another. A batch whose provider call fails is
logged and skipped; the chunks it covered keep a NULL ``embedding_ref`` so a
later reconcile picks them up. Dimension mismatches are programmer errors
and propagate.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from quarry.db.vectors import VectorStore
from quarry.errors import ProviderError
from quarry.logging import get_logger
from quarry.rag.embeddings import EmbeddingProvider

log = get_logger(__name__)

DEFAULT_BATCH_SIZE = 32


@dataclass
class PendingEmbedding:
    """One chunk waiting to be embedded.

    Attributes:
        id: Chunk id; becomes the vector entry id and the embedding_ref.
        text: Text sent to the provider.
        metadata: Stored alongside the vector for filtered search.
    """

    id: str
    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


class EmbeddingWriter:
    """Embed chunks in batches and insert the vectors into a store.

    Args:
        provider: Embedding provider.
        store: Vector store receiving one entry per embedded chunk.
        batch_size: Texts per provider call (default 32).
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._provider = provider
        self._store = store
        self._batch_size = batch_size

    async def write(
        self,
        items: Sequence[PendingEmbedding],
        on_embedded: Callable[[str], None],
    ) -> int:
        """Embed *items*; call *on_embedded(id)* after each vector is stored.

        Returns:
            Number of items embedded and stored.

        Raises:
            DimensionMismatchError: If the provider's vectors don't fit the store.
        """
        stored = 0
        for offset in range(0, len(items), self._batch_size):
            batch = items[offset : offset + self._batch_size]
            try:
                result = await self._provider.embed([item.text for item in batch])
            except ProviderError as exc:
                log.warning(
                    "embedding_batch_failed",
                    batch_start=offset,
                    batch_size=len(batch),
                    error=str(exc),
                )
                continue

            if len(result.embeddings) != len(batch):
                log.warning(
                    "embedding_batch_failed",
                    batch_start=offset,
                    batch_size=len(batch),
                    error=f"provider returned {len(result.embeddings)} vectors",
                )
                continue

            for item, vector in zip(batch, result.embeddings):
                self._store.insert(item.id, vector, item.metadata)
                on_embedded(item.id)
                stored += 1
            log.debug("embedding_batch_stored", batch_start=offset, stored=len(batch))
        return stored

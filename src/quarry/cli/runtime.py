"""Shared wiring for CLI commands: config, logging, database, provider, store."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from quarry.cli.errors import err_config, err_dimension_mismatch, err_no_api_key
from quarry.config import ConfigError, QuarryConfig, load_config
from quarry.context.autocapture import AutoCapture, AutoCaptureConfig
from quarry.context.budget import TokenBudget, allocate_budget
from quarry.context.compactor import CompactionConfig, ContextCompactor
from quarry.context.file_memory import FileMemory
from quarry.context.memory_search import MemorySearch, MemorySearchConfig
from quarry.db.connection import Database
from quarry.db.repository import (
    CodeChunkRepository,
    DocChunkRepository,
    DocumentRepository,
    IndexJobRepository,
    MemoryRepository,
)
from quarry.db.schema import initialize
from quarry.db.vectors import InMemoryVectorStore, SqliteVecStore, VectorStore, model_to_slug
from quarry.errors import ApiKeyMissingError, DimensionMismatchError
from quarry.indexer.indexer import CodeIndexer, IndexerConfig
from quarry.ingest.ingestor import DocumentIngestor, IngestorConfig
from quarry.logging import configure_logging
from quarry.rag.embeddings import EmbeddingProvider, create_embedding_provider

console = Console()

DEFAULT_DB = Path(".quarry.db")


@dataclass
class Runtime:
    cfg: QuarryConfig
    conn: sqlite3.Connection
    provider: EmbeddingProvider
    store: VectorStore

    def ingestor(self) -> DocumentIngestor:
        chunking = (
            self.cfg.chunkers.markdown
            if self.cfg.ingest.strategy == "markdown"
            else self.cfg.chunkers.token_window
        )
        return DocumentIngestor(
            DocumentRepository(self.conn),
            DocChunkRepository(self.conn),
            self.provider,
            self.store,
            IngestorConfig(
                strategy=self.cfg.ingest.strategy,
                max_tokens=chunking.max_tokens,
                overlap=chunking.overlap,
                batch_size=self.cfg.embedding.batch_size,
            ),
        )

    def indexer(self) -> CodeIndexer:
        code = self.cfg.chunkers.code
        return CodeIndexer(
            CodeChunkRepository(self.conn),
            IndexJobRepository(self.conn),
            self.provider,
            self.store,
            IndexerConfig(
                max_lines=code.max_lines,
                min_lines=code.min_lines,
                overlap_lines=code.overlap_lines,
                batch_size=self.cfg.embedding.batch_size,
                ignore_patterns=list(self.cfg.indexer.ignore_patterns),
                max_file_size=self.cfg.indexer.max_file_size,
            ),
        )

    def file_memory(self) -> FileMemory | None:
        file_dir = self.cfg.memory.file_dir
        return FileMemory(file_dir) if file_dir else None

    def compactor(self) -> ContextCompactor:
        compaction = self.cfg.compaction
        return ContextCompactor(
            MemoryRepository(self.conn),
            file_memory=self.file_memory(),
            config=CompactionConfig(
                enabled=compaction.enabled,
                threshold=compaction.threshold,
                preserve_recent_messages=compaction.preserve_recent_messages,
            ),
        )

    def memory_search(self) -> MemorySearch:
        memory = self.cfg.memory
        return MemorySearch(
            MemoryRepository(self.conn),
            self.provider,
            self.store,
            file_memory=self.file_memory(),
            config=MemorySearchConfig(
                min_score=memory.min_score,
                recency_window_days=memory.recency_window_days,
            ),
        )

    def auto_capture(self) -> AutoCapture:
        return AutoCapture(
            MemoryRepository(self.conn),
            self.memory_search(),
            self.provider,
            self.store,
            file_memory=self.file_memory(),
            config=AutoCaptureConfig(enabled=self.cfg.memory.auto_capture),
        )

    def budget(self, context_window: int, max_response_tokens: int) -> TokenBudget:
        b = self.cfg.budget
        return allocate_budget(
            context_window,
            max_response_tokens,
            system_tokens=b.system_tokens,
            persona_tokens=b.persona_tokens,
            memory_tokens=b.memory_tokens,
        )


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the quarry database and run migrations."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def vector_slug(cfg: QuarryConfig) -> str:
    """One vector table per embedding model; the offline provider gets its own."""
    return model_to_slug(cfg.embedding.model if cfg.embedding.provider == "litellm" else cfg.embedding.provider)


@contextmanager
def open_runtime(db_path: Path) -> Iterator[Runtime]:
    """Load config and open everything a command needs; exit 1 with a hint on setup errors."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    configure_logging(cfg.logging.level, cfg.logging.format)

    try:
        provider = create_embedding_provider(cfg.embedding)
    except ApiKeyMissingError as exc:
        console.print(err_no_api_key(exc.provider, exc.env_var))
        raise typer.Exit(1) from exc
    except ValueError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    conn = open_db(db_path)
    try:
        store: VectorStore
        if cfg.vector_store.backend == "memory":
            store = InMemoryVectorStore(cfg.embedding.dimensions)
        else:
            try:
                store = SqliteVecStore(conn, cfg.embedding.dimensions, vector_slug(cfg))
            except DimensionMismatchError as exc:
                console.print(err_dimension_mismatch(exc.expected, exc.actual, cfg.embedding.model))
                raise typer.Exit(1) from exc
        yield Runtime(cfg=cfg, conn=conn, provider=provider, store=store)
    finally:
        conn.close()

"""Domain models for the Quarry database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

JOB_STATUSES: frozenset[str] = frozenset(
    ["pending", "running", "completed", "failed", "cancelled"]
)
ACTIVE_JOB_STATUSES: frozenset[str] = frozenset(["pending", "running"])
TERMINAL_JOB_STATUSES: frozenset[str] = frozenset(["completed", "failed", "cancelled"])
INDEX_MODES: frozenset[str] = frozenset(["full", "incremental"])
MEMORY_SCOPES: frozenset[str] = frozenset(["global", "character", "chat"])


@dataclass(frozen=True)
class Chunk:
    """A bounded slice of content produced by a chunker. Immutable."""

    content: str
    index: int
    token_count: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Document:
    id: str
    title: str
    source_type: str  # file | url | text
    source_uri: str | None = None
    mime_type: str = "text/plain"
    size_bytes: int = 0
    chunk_count: int = 0
    created_at: str | None = None


@dataclass
class DocChunk:
    id: str
    document_id: str
    content: str
    chunk_index: int
    token_count: int
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding_ref: str | None = None
    created_at: str | None = None


@dataclass
class CodeChunk:
    """A persisted slice of a source file.

    ``line_start`` and ``line_end`` are 1-based and inclusive. ``hash`` is the
    chunk content hash; ``file_hash`` is the whole-file hash at index time and
    drives incremental change detection.
    """

    id: str
    workspace_path: str
    file_path: str
    language: str
    content: str
    line_start: int
    line_end: int
    hash: str
    file_hash: str
    document_id: str | None = None
    embedding_ref: str | None = None
    created_at: str | None = None


@dataclass
class IndexJob:
    id: str
    workspace_path: str
    status: str = "pending"
    mode: str = "full"
    total_files: int = 0
    processed_files: int = 0
    total_chunks: int = 0
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    created_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES


@dataclass
class MemoryEntry:
    id: str
    type: str
    category: str
    scope: str  # global | character | chat
    content: str
    source_id: str | None = None
    importance: float = 0.5
    embedding_ref: str | None = None
    auto_captured: bool = False
    created_at: str | None = None

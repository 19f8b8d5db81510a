"""Forward-only migration runner for Quarry's database schema.

Vector tables (vectors_*) are NOT migration-managed; use ensure_vector_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    source_type     TEXT NOT NULL CHECK (source_type IN ('file', 'url', 'text')),
    source_uri      TEXT,
    mime_type       TEXT NOT NULL DEFAULT 'text/plain',
    size_bytes      INTEGER NOT NULL DEFAULT 0,
    chunk_count     INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS doc_chunks (
    id              TEXT PRIMARY KEY,
    document_id     TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    content         TEXT NOT NULL,
    chunk_index     INTEGER NOT NULL,
    token_count     INTEGER NOT NULL DEFAULT 0,
    embedding_ref   TEXT,
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_doc_chunks_document ON doc_chunks(document_id, chunk_index);

CREATE TABLE IF NOT EXISTS code_chunks (
    id              TEXT PRIMARY KEY,
    document_id     TEXT,
    workspace_path  TEXT NOT NULL,
    file_path       TEXT NOT NULL,
    language        TEXT NOT NULL,
    content         TEXT NOT NULL,
    line_start      INTEGER NOT NULL,
    line_end        INTEGER NOT NULL,
    hash            TEXT NOT NULL,
    file_hash       TEXT NOT NULL,
    embedding_ref   TEXT,
    created_at      TEXT NOT NULL,
    CHECK (line_start <= line_end)
);
CREATE INDEX IF NOT EXISTS idx_code_chunks_file ON code_chunks(workspace_path, file_path);

CREATE TABLE IF NOT EXISTS index_jobs (
    id              TEXT PRIMARY KEY,
    workspace_path  TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'running', 'completed', 'failed', 'cancelled')),
    mode            TEXT NOT NULL DEFAULT 'full' CHECK (mode IN ('full', 'incremental')),
    total_files     INTEGER NOT NULL DEFAULT 0,
    processed_files INTEGER NOT NULL DEFAULT 0,
    total_chunks    INTEGER NOT NULL DEFAULT 0,
    error           TEXT,
    started_at      TEXT,
    completed_at    TEXT,
    created_at      TEXT NOT NULL
);
-- At most one pending/running job per workspace.
CREATE UNIQUE INDEX IF NOT EXISTS idx_index_jobs_active
    ON index_jobs(workspace_path) WHERE status IN ('pending', 'running');

CREATE TABLE IF NOT EXISTS memory_entries (
    id              TEXT PRIMARY KEY,
    type            TEXT NOT NULL,
    category        TEXT NOT NULL,
    scope           TEXT NOT NULL CHECK (scope IN ('global', 'character', 'chat')),
    source_id       TEXT,
    content         TEXT NOT NULL,
    importance      REAL NOT NULL DEFAULT 0.5 CHECK (importance BETWEEN 0 AND 1),
    embedding_ref   TEXT,
    auto_captured   INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memory_scope ON memory_entries(scope, source_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 for a fresh database)."""
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ).fetchone()
    if row is None:
        return 0
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    return version or 0

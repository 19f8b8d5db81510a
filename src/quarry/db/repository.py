"""Repositories for all Quarry database entities.

One class per aggregate: documents, document chunks, code chunks, index jobs
and memory entries. Each wraps an open sqlite3.Connection owned by the
caller. Ids are UUID4 strings and timestamps are UTC ISO-8601, both assigned
here when the caller leaves them empty.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timezone

from quarry.db.models import (
    ACTIVE_JOB_STATUSES,
    INDEX_MODES,
    JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    Chunk,
    CodeChunk,
    DocChunk,
    Document,
    IndexJob,
    MemoryEntry,
)
from quarry.errors import JobConflictError, NotFoundError, ValidationError


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


class _Repository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see quarry.db.schema.initialize).
        """
        self._conn = conn


# ------------------------------------------------------------------
# Documents
# ------------------------------------------------------------------


class DocumentRepository(_Repository):
    _COLUMNS = "id, title, source_type, source_uri, mime_type, size_bytes, chunk_count, created_at"

    def create(self, document: Document) -> Document:
        """Insert *document*, filling in ``id`` and ``created_at`` when empty."""
        doc = replace(
            document,
            id=document.id or new_id(),
            created_at=document.created_at or utc_now(),
        )
        self._conn.execute(
            f"INSERT INTO documents ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                doc.id,
                doc.title,
                doc.source_type,
                doc.source_uri,
                doc.mime_type,
                doc.size_bytes,
                doc.chunk_count,
                doc.created_at,
            ),
        )
        self._conn.commit()
        return doc

    def get(self, document_id: str) -> Document | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def list(self) -> list[Document]:
        """Return all documents, oldest first."""
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM documents ORDER BY created_at, rowid"
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    def update_chunk_count(self, document_id: str, chunk_count: int) -> None:
        self._conn.execute(
            "UPDATE documents SET chunk_count = ? WHERE id = ?", (chunk_count, document_id)
        )
        self._conn.commit()

    def delete(self, document_id: str) -> bool:
        """Delete a document; its chunks go with it (ON DELETE CASCADE)."""
        cur = self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        self._conn.commit()
        return cur.rowcount > 0


# ------------------------------------------------------------------
# Document chunks
# ------------------------------------------------------------------


class DocChunkRepository(_Repository):
    _COLUMNS = (
        "id, document_id, content, chunk_index, token_count, embedding_ref, metadata, created_at"
    )

    def create_batch(self, document_id: str, chunks: Iterable[Chunk]) -> list[DocChunk]:
        """Persist *chunks* under *document_id* in one transaction."""
        now = utc_now()
        records = [
            DocChunk(
                id=new_id(),
                document_id=document_id,
                content=c.content,
                chunk_index=c.index,
                token_count=c.token_count,
                metadata=dict(c.metadata),
                created_at=now,
            )
            for c in chunks
        ]
        with self._conn:
            self._conn.executemany(
                f"INSERT INTO doc_chunks ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.id,
                        r.document_id,
                        r.content,
                        r.chunk_index,
                        r.token_count,
                        None,
                        json.dumps(r.metadata),
                        r.created_at,
                    )
                    for r in records
                ],
            )
        return records

    def get(self, chunk_id: str) -> DocChunk | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM doc_chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_doc_chunk(row) if row else None

    def get_many(self, chunk_ids: list[str]) -> dict[str, DocChunk]:
        """Return the chunks among *chunk_ids* that exist, keyed by id."""
        if not chunk_ids:
            return {}
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM doc_chunks WHERE id IN ({_placeholders(len(chunk_ids))})",
            chunk_ids,
        ).fetchall()
        return {r["id"]: _row_to_doc_chunk(r) for r in rows}

    def get_by_document(self, document_id: str) -> list[DocChunk]:
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM doc_chunks WHERE document_id = ? ORDER BY chunk_index",
            (document_id,),
        ).fetchall()
        return [_row_to_doc_chunk(r) for r in rows]

    def update_embedding_ref(self, chunk_id: str, embedding_ref: str) -> None:
        self._conn.execute(
            "UPDATE doc_chunks SET embedding_ref = ? WHERE id = ?", (embedding_ref, chunk_id)
        )
        self._conn.commit()

    def list_all(self) -> list[DocChunk]:
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM doc_chunks ORDER BY created_at, chunk_index"
        ).fetchall()
        return [_row_to_doc_chunk(r) for r in rows]

    def delete_by_document(self, document_id: str) -> list[str]:
        """Delete a document's chunks and return their ids."""
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM doc_chunks WHERE document_id = ?", (document_id,)
            ).fetchall()
        ]
        self._conn.execute("DELETE FROM doc_chunks WHERE document_id = ?", (document_id,))
        self._conn.commit()
        return ids

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM doc_chunks").fetchone()[0]


# ------------------------------------------------------------------
# Code chunks
# ------------------------------------------------------------------


class CodeChunkRepository(_Repository):
    _COLUMNS = (
        "id, document_id, workspace_path, file_path, language, content, line_start, "
        "line_end, hash, file_hash, embedding_ref, created_at"
    )

    def create_batch(self, chunks: Iterable[CodeChunk]) -> list[CodeChunk]:
        """Persist *chunks* in one transaction, filling ``id``/``created_at``."""
        now = utc_now()
        records = [replace(c, id=c.id or new_id(), created_at=c.created_at or now) for c in chunks]
        with self._conn:
            self._conn.executemany(
                f"INSERT INTO code_chunks ({self._COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.id,
                        r.document_id,
                        r.workspace_path,
                        r.file_path,
                        r.language,
                        r.content,
                        r.line_start,
                        r.line_end,
                        r.hash,
                        r.file_hash,
                        r.embedding_ref,
                        r.created_at,
                    )
                    for r in records
                ],
            )
        return records

    def get(self, chunk_id: str) -> CodeChunk | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM code_chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_code_chunk(row) if row else None

    def get_many(self, chunk_ids: list[str]) -> dict[str, CodeChunk]:
        """Return the chunks among *chunk_ids* that exist, keyed by id."""
        if not chunk_ids:
            return {}
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM code_chunks WHERE id IN ({_placeholders(len(chunk_ids))})",
            chunk_ids,
        ).fetchall()
        return {r["id"]: _row_to_code_chunk(r) for r in rows}

    def get_by_file_path(self, workspace_path: str, file_path: str) -> list[CodeChunk]:
        rows = self._conn.execute(
            f"""
            SELECT {self._COLUMNS} FROM code_chunks
            WHERE workspace_path = ? AND file_path = ?
            ORDER BY line_start
            """,
            (workspace_path, file_path),
        ).fetchall()
        return [_row_to_code_chunk(r) for r in rows]

    def get_file_hashes(self, workspace_path: str) -> dict[str, str]:
        """Map each indexed file to the ``file_hash`` of its most recent chunks."""
        rows = self._conn.execute(
            """
            SELECT file_path, file_hash FROM code_chunks
            WHERE workspace_path = ?
            ORDER BY created_at, rowid
            """,
            (workspace_path,),
        ).fetchall()
        return {r["file_path"]: r["file_hash"] for r in rows}

    def update_embedding_ref(self, chunk_id: str, embedding_ref: str) -> None:
        self._conn.execute(
            "UPDATE code_chunks SET embedding_ref = ? WHERE id = ?", (embedding_ref, chunk_id)
        )
        self._conn.commit()

    def list_by_workspace(self, workspace_path: str | None = None) -> list[CodeChunk]:
        if workspace_path is None:
            rows = self._conn.execute(
                f"SELECT {self._COLUMNS} FROM code_chunks ORDER BY workspace_path, file_path, line_start"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM code_chunks WHERE workspace_path = ?
                ORDER BY file_path, line_start
                """,
                (workspace_path,),
            ).fetchall()
        return [_row_to_code_chunk(r) for r in rows]

    def delete_by_file_path(self, workspace_path: str, file_path: str) -> list[str]:
        """Delete every chunk of one file and return their ids."""
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM code_chunks WHERE workspace_path = ? AND file_path = ?",
                (workspace_path, file_path),
            ).fetchall()
        ]
        self._conn.execute(
            "DELETE FROM code_chunks WHERE workspace_path = ? AND file_path = ?",
            (workspace_path, file_path),
        )
        self._conn.commit()
        return ids

    def delete_by_workspace(self, workspace_path: str) -> list[str]:
        """Delete every chunk of a workspace and return their ids."""
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM code_chunks WHERE workspace_path = ?", (workspace_path,)
            ).fetchall()
        ]
        self._conn.execute("DELETE FROM code_chunks WHERE workspace_path = ?", (workspace_path,))
        self._conn.commit()
        return ids

    def count(self, workspace_path: str | None = None) -> int:
        if workspace_path is None:
            return self._conn.execute("SELECT COUNT(*) FROM code_chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM code_chunks WHERE workspace_path = ?", (workspace_path,)
        ).fetchone()[0]


# ------------------------------------------------------------------
# Index jobs
# ------------------------------------------------------------------


class IndexJobRepository(_Repository):
    _COLUMNS = (
        "id, workspace_path, status, mode, total_files, processed_files, total_chunks, "
        "error, started_at, completed_at, created_at"
    )

    def create(self, workspace_path: str, mode: str = "full") -> IndexJob:
        """Create a pending job unless the workspace already has an active one.

        The existence check and the insert are a single statement, and a
        partial unique index backs it up, so two racing callers cannot both
        succeed.

        Raises:
            ValidationError: If *mode* is not ``full`` or ``incremental``.
            JobConflictError: If a pending/running job exists for the workspace.
        """
        if mode not in INDEX_MODES:
            raise ValidationError(f"Invalid index mode '{mode}' (expected full or incremental)")
        job = IndexJob(id=new_id(), workspace_path=workspace_path, mode=mode, created_at=utc_now())
        try:
            cur = self._conn.execute(
                """
                INSERT INTO index_jobs (id, workspace_path, status, mode, created_at)
                SELECT ?, ?, 'pending', ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM index_jobs
                    WHERE workspace_path = ? AND status IN ('pending', 'running')
                )
                """,
                (job.id, workspace_path, mode, job.created_at, workspace_path),
            )
            self._conn.commit()
        except sqlite3.IntegrityError:
            self._conn.rollback()
            cur = None
        if cur is None or cur.rowcount == 0:
            active = self.get_active(workspace_path)
            raise JobConflictError(workspace_path, active.id if active else None)
        return job

    def get(self, job_id: str) -> IndexJob | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM index_jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return _row_to_job(row) if row else None

    def get_latest(self, workspace_path: str | None = None) -> IndexJob | None:
        """Most recently created job, optionally for one workspace."""
        if workspace_path is None:
            row = self._conn.execute(
                f"SELECT {self._COLUMNS} FROM index_jobs ORDER BY created_at DESC, rowid DESC LIMIT 1"
            ).fetchone()
        else:
            row = self._conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM index_jobs WHERE workspace_path = ?
                ORDER BY created_at DESC, rowid DESC LIMIT 1
                """,
                (workspace_path,),
            ).fetchone()
        return _row_to_job(row) if row else None

    def get_active(self, workspace_path: str) -> IndexJob | None:
        row = self._conn.execute(
            f"""
            SELECT {self._COLUMNS} FROM index_jobs
            WHERE workspace_path = ? AND status IN ('pending', 'running')
            ORDER BY created_at DESC LIMIT 1
            """,
            (workspace_path,),
        ).fetchone()
        return _row_to_job(row) if row else None

    def list(self, status: str | None = None, limit: int = 50, offset: int = 0) -> list[IndexJob]:
        """Return jobs newest first, optionally filtered by *status*."""
        if status is not None and status not in JOB_STATUSES:
            raise ValidationError(f"Invalid job status '{status}'")
        if status is None:
            rows = self._conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM index_jobs
                ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM index_jobs WHERE status = ?
                ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?
                """,
                (status, limit, offset),
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def update_status(self, job_id: str, status: str, error: str | None = None) -> bool:
        """Move a job along pending → running → terminal.

        ``running`` stamps ``started_at``; terminal states stamp
        ``completed_at``. A job that is already terminal is left untouched.

        Returns:
            True if the transition happened, False if the job was not in a
            state that allows it.

        Raises:
            ValidationError: If *status* is unknown or ``pending``.
            NotFoundError: If *job_id* does not exist.
        """
        if status == "running":
            cur = self._conn.execute(
                "UPDATE index_jobs SET status = 'running', started_at = ? "
                "WHERE id = ? AND status = 'pending'",
                (utc_now(), job_id),
            )
        elif status in TERMINAL_JOB_STATUSES:
            cur = self._conn.execute(
                f"""
                UPDATE index_jobs SET status = ?, error = ?, completed_at = ?
                WHERE id = ? AND status IN ({_placeholders(len(ACTIVE_JOB_STATUSES))})
                """,
                (status, error, utc_now(), job_id, *sorted(ACTIVE_JOB_STATUSES)),
            )
        else:
            raise ValidationError(f"Cannot move a job to status '{status}'")
        self._conn.commit()
        if cur.rowcount == 0 and self.get(job_id) is None:
            raise NotFoundError("IndexJob", job_id)
        return cur.rowcount > 0

    def update_progress(
        self,
        job_id: str,
        *,
        total_files: int | None = None,
        processed_files: int | None = None,
        total_chunks: int | None = None,
    ) -> None:
        sets: list[str] = []
        params: list[int] = []
        for column, value in (
            ("total_files", total_files),
            ("processed_files", processed_files),
            ("total_chunks", total_chunks),
        ):
            if value is not None:
                sets.append(f"{column} = ?")
                params.append(value)
        if not sets:
            return
        self._conn.execute(
            f"UPDATE index_jobs SET {', '.join(sets)} WHERE id = ?", (*params, job_id)
        )
        self._conn.commit()


# ------------------------------------------------------------------
# Memory entries
# ------------------------------------------------------------------


class MemoryRepository(_Repository):
    _COLUMNS = (
        "id, type, category, scope, source_id, content, importance, embedding_ref, "
        "auto_captured, created_at"
    )

    def create(self, entry: MemoryEntry) -> MemoryEntry:
        """Insert *entry*, filling in ``id`` and ``created_at`` when empty."""
        e = replace(entry, id=entry.id or new_id(), created_at=entry.created_at or utc_now())
        self._conn.execute(
            f"INSERT INTO memory_entries ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                e.id,
                e.type,
                e.category,
                e.scope,
                e.source_id,
                e.content,
                e.importance,
                e.embedding_ref,
                int(e.auto_captured),
                e.created_at,
            ),
        )
        self._conn.commit()
        return e

    def get(self, entry_id: str) -> MemoryEntry | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM memory_entries WHERE id = ?", (entry_id,)
        ).fetchone()
        return _row_to_memory(row) if row else None

    def list(
        self,
        scope: str | None = None,
        source_id: str | None = None,
        limit: int | None = 100,
    ) -> list[MemoryEntry]:
        """Return entries newest first, optionally narrowed by scope/source.

        A *limit* of None returns every matching entry.
        """
        clauses, params = self._scope_clauses(scope, source_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM memory_entries {where} "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (*params, -1 if limit is None else limit),
        ).fetchall()
        return [_row_to_memory(r) for r in rows]

    def search_by_content(
        self,
        query: str,
        scope: str | None = None,
        source_id: str | None = None,
        limit: int = 20,
    ) -> list[MemoryEntry]:
        """Entries whose content contains *query* (ASCII case-insensitive).

        Ordered by importance, then newest first.
        """
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        clauses, params = self._scope_clauses(scope, source_id)
        clauses.insert(0, "content LIKE ? ESCAPE '\\'")
        params.insert(0, f"%{escaped}%")
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM memory_entries WHERE {' AND '.join(clauses)} "
            "ORDER BY importance DESC, created_at DESC, rowid DESC LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [_row_to_memory(r) for r in rows]

    @staticmethod
    def _scope_clauses(scope: str | None, source_id: str | None) -> tuple[list[str], list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        if scope is not None:
            clauses.append("scope = ?")
            params.append(scope)
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        return clauses, params

    def update_embedding_ref(self, entry_id: str, embedding_ref: str) -> None:
        self._conn.execute(
            "UPDATE memory_entries SET embedding_ref = ? WHERE id = ?", (embedding_ref, entry_id)
        )
        self._conn.commit()

    def delete(self, entry_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM memory_entries WHERE id = ?", (entry_id,))
        self._conn.commit()
        return cur.rowcount > 0


# ------------------------------------------------------------------
# Row mappers
# ------------------------------------------------------------------


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        source_type=row["source_type"],
        source_uri=row["source_uri"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        chunk_count=row["chunk_count"],
        created_at=row["created_at"],
    )


def _row_to_doc_chunk(row: sqlite3.Row) -> DocChunk:
    return DocChunk(
        id=row["id"],
        document_id=row["document_id"],
        content=row["content"],
        chunk_index=row["chunk_index"],
        token_count=row["token_count"],
        metadata=json.loads(row["metadata"] or "{}"),
        embedding_ref=row["embedding_ref"],
        created_at=row["created_at"],
    )


def _row_to_code_chunk(row: sqlite3.Row) -> CodeChunk:
    return CodeChunk(
        id=row["id"],
        document_id=row["document_id"],
        workspace_path=row["workspace_path"],
        file_path=row["file_path"],
        language=row["language"],
        content=row["content"],
        line_start=row["line_start"],
        line_end=row["line_end"],
        hash=row["hash"],
        file_hash=row["file_hash"],
        embedding_ref=row["embedding_ref"],
        created_at=row["created_at"],
    )


def _row_to_job(row: sqlite3.Row) -> IndexJob:
    return IndexJob(
        id=row["id"],
        workspace_path=row["workspace_path"],
        status=row["status"],
        mode=row["mode"],
        total_files=row["total_files"],
        processed_files=row["processed_files"],
        total_chunks=row["total_chunks"],
        error=row["error"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
    )


def _row_to_memory(row: sqlite3.Row) -> MemoryEntry:
    return MemoryEntry(
        id=row["id"],
        type=row["type"],
        category=row["category"],
        scope=row["scope"],
        source_id=row["source_id"],
        content=row["content"],
        importance=row["importance"],
        embedding_ref=row["embedding_ref"],
        auto_captured=bool(row["auto_captured"]),
        created_at=row["created_at"],
    )

"""Code indexer: scan → hash → chunk → persist → embed, driven by index jobs.

Job lifecycle: pending → running → completed | failed | cancelled.

``start_job`` records a pending job (refused with ``JobConflictError`` if the
workspace already has an active one) and runs the pipeline as an asyncio
task. ``stop`` only flips the job's status; the pipeline checks it between
files, so an embedding batch already in flight finishes first. Searches
that run during a reindex may see a partially indexed workspace.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from quarry.db.models import CodeChunk, IndexJob
from quarry.db.repository import CodeChunkRepository, IndexJobRepository
from quarry.db.vectors import VectorStore
from quarry.errors import NotFoundError, ValidationError
from quarry.indexer.scanner import (
    MAX_FILE_SIZE,
    ScannedFile,
    hash_file,
    load_ignore_patterns,
    scan_workspace,
)
from quarry.ingest.code import LineChunker
from quarry.ingest.embedding_writer import DEFAULT_BATCH_SIZE, EmbeddingWriter, PendingEmbedding
from quarry.logging import get_logger
from quarry.rag.embeddings import EmbeddingProvider
from quarry.rag.retriever import CodeSearchResult, search_code

log = get_logger(__name__)


@dataclass
class IndexerConfig:
    max_lines: int = 200
    min_lines: int = 5
    overlap_lines: int = 20
    batch_size: int = DEFAULT_BATCH_SIZE
    ignore_patterns: list[str] = field(default_factory=list)
    max_file_size: int = MAX_FILE_SIZE


@dataclass
class IndexProgress:
    total_files: int
    processed_files: int
    total_chunks: int


@dataclass
class IndexStatus:
    """Snapshot for status displays; ``status`` is ``idle`` when no job exists."""

    job_id: str | None
    status: str
    workspace_path: str | None
    progress: IndexProgress | None


class CodeIndexer:
    """Index workspaces and search the result.

    Args:
        chunks: Code chunk repository.
        jobs: Index job repository.
        provider: Embedding provider.
        store: Vector store shared with search.
        config: Chunker sizes, batch size and extra ignore patterns.
    """

    def __init__(
        self,
        chunks: CodeChunkRepository,
        jobs: IndexJobRepository,
        provider: EmbeddingProvider,
        store: VectorStore,
        config: IndexerConfig | None = None,
    ) -> None:
        self._chunks = chunks
        self._jobs = jobs
        self._provider = provider
        self._store = store
        self._config = config or IndexerConfig()
        self._chunker = LineChunker(
            max_lines=self._config.max_lines,
            min_lines=self._config.min_lines,
            overlap_lines=self._config.overlap_lines,
        )
        self._writer = EmbeddingWriter(provider, store, batch_size=self._config.batch_size)
        # job id -> (workspace path, pipeline task)
        self._running: dict[str, tuple[str, asyncio.Task[None]]] = {}

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------

    async def start_job(
        self,
        workspace_path: str | Path,
        mode: str = "full",
        ignore_patterns: list[str] | None = None,
    ) -> IndexJob:
        """Create a job for *workspace_path* and start it in the background.

        Returns:
            The job as created (status ``pending``).

        Raises:
            ValidationError: Missing/non-directory workspace or unknown mode.
            JobConflictError: The workspace already has an active job.
        """
        root = self._resolve_workspace(workspace_path)
        job = self._jobs.create(str(root), mode)
        task = asyncio.create_task(self._run(job, root, ignore_patterns))
        self._running[job.id] = (job.workspace_path, task)
        task.add_done_callback(lambda _t, job_id=job.id: self._running.pop(job_id, None))
        log.info("index_job_started", job_id=job.id, workspace=job.workspace_path, mode=mode)
        return job

    async def wait(self, job_id: str | None = None) -> IndexJob | None:
        """Wait for one job (or, with no id, every running job) to finish.

        Returns:
            The job's final record when *job_id* is given, else None.
        """
        if job_id is None:
            tasks = [task for _, task in self._running.values()]
            if tasks:
                await asyncio.gather(*tasks)
            return None
        running = self._running.get(job_id)
        if running is not None:
            await running[1]
        return self.get_job(job_id)

    async def index(
        self,
        workspace_path: str | Path,
        mode: str = "full",
        ignore_patterns: list[str] | None = None,
    ) -> IndexJob:
        """Run a job to completion and return its final record."""
        job = await self.start_job(workspace_path, mode, ignore_patterns)
        await self.wait(job.id)
        return self.get_job(job.id)

    def stop(self, workspace_path: str | Path | None = None) -> bool:
        """Cancel active jobs, optionally only the one for *workspace_path*.

        With a workspace, a pending/running job left behind by another
        process is cancelled too.

        Returns:
            True if at least one job was cancelled.
        """
        target = str(Path(workspace_path).expanduser().resolve()) if workspace_path else None
        job_ids = [
            job_id
            for job_id, (workspace, _) in self._running.items()
            if target is None or workspace == target
        ]
        if target is not None:
            orphan = self._jobs.get_active(target)
            if orphan is not None and orphan.id not in job_ids:
                job_ids.append(orphan.id)

        stopped = False
        for job_id in job_ids:
            if self._jobs.update_status(job_id, "cancelled"):
                log.info("index_job_cancelled", job_id=job_id)
                stopped = True
        return stopped

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> IndexJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("IndexJob", job_id)
        return job

    def list_jobs(self, status: str | None = None, limit: int = 50, offset: int = 0) -> list[IndexJob]:
        return self._jobs.list(status=status, limit=limit, offset=offset)

    def status(self, workspace_path: str | Path | None = None) -> IndexStatus:
        """Status of the active job, else the most recent one."""
        workspace = str(Path(workspace_path).expanduser().resolve()) if workspace_path else None
        job = None
        for job_id, (ws, _) in self._running.items():
            if workspace is None or ws == workspace:
                job = self._jobs.get(job_id)
                break
        if job is None:
            job = self._jobs.get_latest(workspace)
        if job is None:
            return IndexStatus(job_id=None, status="idle", workspace_path=workspace, progress=None)
        return IndexStatus(
            job_id=job.id,
            status=job.status,
            workspace_path=job.workspace_path,
            progress=IndexProgress(
                total_files=job.total_files,
                processed_files=job.processed_files,
                total_chunks=job.total_chunks,
            ),
        )

    async def search(
        self,
        query: str,
        workspace_path: str | Path | None = None,
        language: str | None = None,
        top_k: int = 10,
    ) -> list[CodeSearchResult]:
        """Code chunks most similar to *query*, best first.

        Raises:
            ValidationError: If *query* is blank.
        """
        workspace = str(Path(workspace_path).expanduser().resolve()) if workspace_path else None
        return await search_code(
            query,
            self._provider,
            self._store,
            self._chunks,
            workspace_path=workspace,
            language=language,
            top_k=top_k,
        )

    async def reconcile(self, workspace_path: str | Path | None = None) -> int:
        """Re-embed chunks with no embedding_ref or no vector in the store."""
        workspace = str(Path(workspace_path).expanduser().resolve()) if workspace_path else None
        missing = [
            c
            for c in self._chunks.list_by_workspace(workspace)
            if c.embedding_ref is None or not self._store.contains(c.id)
        ]
        if not missing:
            return 0
        count = await self._embed(missing)
        log.info("code_reconciled", missing=len(missing), embedded=count)
        return count

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, job: IndexJob, root: Path, ignore_patterns: list[str] | None) -> None:
        if not self._jobs.update_status(job.id, "running"):
            return  # stopped before it started
        try:
            await self._index(job, root, ignore_patterns)
        except Exception as exc:
            log.error("index_job_failed", job_id=job.id, error=str(exc))
            self._jobs.update_status(job.id, "failed", error=str(exc) or type(exc).__name__)
            return

        if self._jobs.update_status(job.id, "completed"):
            final = self._jobs.get(job.id)
            log.info(
                "index_job_completed",
                job_id=job.id,
                files=final.processed_files if final else None,
                chunks=final.total_chunks if final else None,
            )

    async def _index(self, job: IndexJob, root: Path, ignore_patterns: list[str] | None) -> None:
        workspace = job.workspace_path
        patterns = load_ignore_patterns(root, [*self._config.ignore_patterns, *(ignore_patterns or [])])
        files = await asyncio.to_thread(scan_workspace, root, patterns, self._config.max_file_size)
        self._jobs.update_progress(job.id, total_files=len(files))

        if job.mode == "full":
            previous: dict[str, str] = {}
            self._drop_vectors(self._chunks.delete_by_workspace(workspace))
            self._store.delete_where({"type": "code", "workspace_path": workspace})
        else:
            previous = self._chunks.get_file_hashes(workspace)
            present = {f.relative_path for f in files}
            for gone in sorted(set(previous) - present):
                self._drop_vectors(self._chunks.delete_by_file_path(workspace, gone))
                log.debug("index_file_pruned", job_id=job.id, file=gone)

        processed = 0
        total_chunks = 0
        for scanned in files:
            if self._is_cancelled(job.id):
                log.info("index_job_stopping", job_id=job.id, processed=processed)
                return
            if previous.get(scanned.relative_path) != scanned.hash:
                total_chunks += await self._index_file(job, scanned)
            processed += 1
            self._jobs.update_progress(job.id, processed_files=processed, total_chunks=total_chunks)

    async def _index_file(self, job: IndexJob, scanned: ScannedFile) -> int:
        """Replace one file's chunks; return how many were written."""
        try:
            content = await asyncio.to_thread(scanned.path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            log.warning("index_file_unreadable", file=scanned.relative_path, error=str(exc))
            return 0

        workspace = job.workspace_path
        self._drop_vectors(self._chunks.delete_by_file_path(workspace, scanned.relative_path))

        file_hash = hash_file(content)
        pieces = self._chunker.chunk(content)
        if not pieces:
            return 0
        records = self._chunks.create_batch(
            CodeChunk(
                id="",
                document_id=job.id,
                workspace_path=workspace,
                file_path=scanned.relative_path,
                language=scanned.language,
                content=piece.content,
                line_start=piece.metadata["line_start"],
                line_end=piece.metadata["line_end"],
                hash=piece.metadata["hash"],
                file_hash=file_hash,
            )
            for piece in pieces
        )
        await self._embed(records)
        log.debug("index_file_done", file=scanned.relative_path, chunks=len(records))
        return len(records)

    async def _embed(self, records: list[CodeChunk]) -> int:
        items = [
            PendingEmbedding(
                id=c.id,
                text=c.content,
                metadata={
                    "type": "code",
                    "chunk_id": c.id,
                    "workspace_path": c.workspace_path,
                    "file_path": c.file_path,
                    "language": c.language,
                    "line_start": c.line_start,
                    "line_end": c.line_end,
                    "code_key": f"{c.workspace_path}::{c.file_path}",
                },
            )
            for c in records
        ]
        return await self._writer.write(
            items, lambda chunk_id: self._chunks.update_embedding_ref(chunk_id, chunk_id)
        )

    def _drop_vectors(self, chunk_ids: list[str]) -> None:
        for chunk_id in chunk_ids:
            self._store.delete(chunk_id)

    def _is_cancelled(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        return job is None or job.status == "cancelled"

    @staticmethod
    def _resolve_workspace(workspace_path: str | Path | None) -> Path:
        if workspace_path is None or not str(workspace_path).strip():
            raise ValidationError("workspace_path is required")
        root = Path(workspace_path).expanduser().resolve()
        if not root.is_dir():
            raise ValidationError(f"Workspace is not a directory: {root}")
        return root

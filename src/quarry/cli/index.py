"""quarry index / jobs / stop: workspace indexing and job control."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.errors import err_invalid_request, err_job_conflict, err_not_found
from quarry.cli.runtime import DEFAULT_DB, console, open_runtime
from quarry.db.models import JOB_STATUSES, IndexJob
from quarry.errors import JobConflictError, NotFoundError, ValidationError

_STATUS_STYLE = {
    "pending": "dim",
    "running": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
}


def index_cmd(
    path: Annotated[Path, typer.Argument(help="Workspace directory to index.")],
    incremental: Annotated[
        bool,
        typer.Option("--incremental", "-i", help="Only re-chunk files whose content changed."),
    ] = False,
    ignore: Annotated[
        list[str] | None,
        typer.Option("--ignore", help="Extra ignore pattern (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database (created if missing)."),
    ] = DEFAULT_DB,
) -> None:
    """Index a workspace's source files for code search."""
    mode = "incremental" if incremental else "full"
    with open_runtime(db) as rt:
        try:
            job = asyncio.run(rt.indexer().index(path, mode=mode, ignore_patterns=ignore or []))
        except JobConflictError as exc:
            console.print(err_job_conflict(exc.workspace_path, exc.active_job_id))
            raise typer.Exit(1) from exc
        except ValidationError as exc:
            console.print(err_invalid_request(str(exc)))
            raise typer.Exit(1) from exc

    if job.status == "failed":
        console.print(f"[red]✗ Index job {job.id} failed:[/] {job.error}")
        raise typer.Exit(1)
    console.print(
        f"[green]✓[/] Indexed [bold]{job.workspace_path}[/] ({mode}): "
        f"{job.processed_files}/{job.total_files} files, {job.total_chunks} chunks "
        f"[dim]job {job.id}[/]"
    )


def jobs_cmd(
    status: Annotated[
        str | None,
        typer.Option("--status", help="Only show jobs with this status."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum number of jobs.")] = 20,
    job_id: Annotated[
        str | None,
        typer.Option("--id", help="Show one job in detail."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database."),
    ] = DEFAULT_DB,
) -> None:
    """List recent index jobs, newest first, or show one with --id."""
    if job_id is not None:
        with open_runtime(db) as rt:
            try:
                job = rt.indexer().get_job(job_id)
            except NotFoundError as exc:
                console.print(err_not_found("Index job", job_id))
                raise typer.Exit(1) from exc
        _print_job(job)
        return

    if status is not None and status not in JOB_STATUSES:
        console.print(
            err_invalid_request(
                f"Unknown status '{status}'. Use one of: {', '.join(sorted(JOB_STATUSES))}"
            )
        )
        raise typer.Exit(1)

    with open_runtime(db) as rt:
        jobs = rt.indexer().list_jobs(status=status, limit=limit)

    if not jobs:
        console.print("[dim]No index jobs yet.[/]  Run:  quarry index PATH")
        return

    table = Table(title="Index jobs")
    table.add_column("Job")
    table.add_column("Workspace")
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Created")
    for job in jobs:
        style = _STATUS_STYLE.get(job.status, "")
        table.add_row(
            job.id[:8],
            job.workspace_path,
            job.mode,
            f"[{style}]{job.status}[/]" if style else job.status,
            f"{job.processed_files}/{job.total_files}",
            str(job.total_chunks),
            (job.created_at or "")[:19],
        )
    console.print(table)


def stop_cmd(
    path: Annotated[Path, typer.Argument(help="Workspace whose active job should stop.")],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database."),
    ] = DEFAULT_DB,
) -> None:
    """Cancel the active index job for a workspace."""
    with open_runtime(db) as rt:
        stopped = rt.indexer().stop(path)
    if stopped:
        console.print(f"[green]✓[/] Cancelled the active index job for '{path}'.")
    else:
        console.print(f"[dim]No active index job for '{path}'.[/]")


def _print_job(job: IndexJob) -> None:
    style = _STATUS_STYLE.get(job.status, "")
    console.print(f"[bold]Job {job.id}[/]")
    console.print(f"  Workspace:  {job.workspace_path}")
    console.print(f"  Mode:       {job.mode}")
    console.print(f"  Status:     [{style}]{job.status}[/]")
    console.print(f"  Files:      {job.processed_files}/{job.total_files}")
    console.print(f"  Chunks:     {job.total_chunks}")
    console.print(f"  Started:    {job.started_at or '-'}")
    console.print(f"  Finished:   {job.completed_at or '-'}")
    if job.error:
        console.print(f"  [red]Error:[/]      {job.error}")

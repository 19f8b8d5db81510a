"""quarry reconcile: embed chunks and memories that have no vector yet."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.runtime import DEFAULT_DB, Runtime, console, open_runtime


def reconcile_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database."),
    ] = DEFAULT_DB,
) -> None:
    """Re-embed document chunks, code chunks and memories whose embedding is missing."""
    with open_runtime(db) as rt:
        docs, code, memories = asyncio.run(_reconcile(rt))
    console.print(
        f"[green]✓[/] Re-embedded {docs} document chunks, {code} code chunks "
        f"and {memories} memories."
    )


async def _reconcile(rt: Runtime) -> tuple[int, int, int]:
    docs = await rt.ingestor().reconcile()
    code = await rt.indexer().reconcile()
    memories = await rt.memory_search().reconcile()
    return docs, code, memories

"""quarry recall / capture: search and grow conversation memory."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from quarry.cli.errors import err_invalid_request
from quarry.cli.runtime import DEFAULT_DB, console, open_runtime
from quarry.context.memory_search import format_memory_context
from quarry.errors import ValidationError

_PREVIEW_CHARS = 80
_SCOPES = ("global", "character", "chat")


def _check_scope(scope: str | None) -> None:
    if scope is not None and scope not in _SCOPES:
        console.print(err_invalid_request(f"--scope must be one of {', '.join(_SCOPES)}, got '{scope}'."))
        raise typer.Exit(1)


def recall_cmd(
    query: Annotated[str, typer.Argument(help="What to remember.")],
    scope: Annotated[
        str | None,
        typer.Option("--scope", "-s", help="Only global, character or chat memories."),
    ] = None,
    source_id: Annotated[
        str | None,
        typer.Option("--source-id", help="Only memories of this character or chat."),
    ] = None,
    top_k: Annotated[
        int,
        typer.Option("--top-k", "-k", help="Maximum number of results."),
    ] = 10,
    as_context: Annotated[
        bool,
        typer.Option("--as-context", help="Print a prompt-ready memory block instead of a table."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database."),
    ] = DEFAULT_DB,
) -> None:
    """Search stored memories by meaning, keyword and recency."""
    _check_scope(scope)
    with open_runtime(db) as rt:
        try:
            results = asyncio.run(
                rt.memory_search().search(query, scope=scope, source_id=source_id, limit=top_k)
            )
        except ValidationError as exc:
            console.print(err_invalid_request(str(exc)))
            raise typer.Exit(1) from exc

    if not results:
        console.print("[yellow]No matching memories.[/]")
        return

    if as_context:
        console.print(format_memory_context(results), markup=False, highlight=False)
        return

    table = Table(title=f"Memories matching '{query}'")
    table.add_column("Score", justify="right")
    table.add_column("Category")
    table.add_column("Scope")
    table.add_column("From")
    table.add_column("Preview")
    for r in results:
        preview = " ".join(r.entry.content.split())[:_PREVIEW_CHARS]
        table.add_row(f"{r.score:.3f}", r.entry.category, r.entry.scope, r.source, escape(preview))
    console.print(table)


def capture_cmd(
    text: Annotated[str, typer.Argument(help="A user or assistant message.")],
    scope: Annotated[
        str,
        typer.Option("--scope", "-s", help="global, character or chat."),
    ] = "global",
    source_id: Annotated[
        str | None,
        typer.Option("--source-id", help="Character or chat the memories belong to."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database."),
    ] = DEFAULT_DB,
) -> None:
    """Store preferences, decisions and facts found in a message."""
    _check_scope(scope)
    with open_runtime(db) as rt:
        stored = asyncio.run(rt.auto_capture().process_message(text, scope, source_id))

    if not stored:
        console.print("[dim]Nothing worth remembering.[/]")
        return
    for entry in stored:
        console.print(f"[green]✓[/] {escape(f'[{entry.category}] {entry.content}')}", highlight=False)

"""quarry search: similarity search over indexed code."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.syntax import Syntax

from quarry.cli.errors import err_invalid_request, err_provider_failed
from quarry.cli.runtime import DEFAULT_DB, console, open_runtime
from quarry.errors import ProviderError, ValidationError

_MAX_PREVIEW_LINES = 12


def search_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language or code query.")],
    workspace: Annotated[
        Path | None,
        typer.Option("--workspace", "-w", help="Only search this workspace."),
    ] = None,
    language: Annotated[
        str | None,
        typer.Option("--language", "-l", help="Only search files of this language."),
    ] = None,
    top_k: Annotated[
        int,
        typer.Option("--top-k", "-k", help="Maximum number of results."),
    ] = 10,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database."),
    ] = DEFAULT_DB,
) -> None:
    """Search indexed code by similarity."""
    with open_runtime(db) as rt:
        try:
            results = asyncio.run(
                rt.indexer().search(query, workspace_path=workspace, language=language, top_k=top_k)
            )
        except ValidationError as exc:
            console.print(err_invalid_request(str(exc)))
            raise typer.Exit(1) from exc
        except ProviderError as exc:
            console.print(err_provider_failed(str(exc)))
            raise typer.Exit(1) from exc

    if not results:
        console.print("[yellow]No matching code.[/]  Run:  quarry index PATH  first.")
        return

    for r in results:
        lines = r.content.splitlines()
        snippet = "\n".join(lines[:_MAX_PREVIEW_LINES])
        console.print(
            Panel(
                Syntax(snippet, r.language, line_numbers=True, start_line=r.line_start),
                title=f"[bold]{r.file_path}[/]:{r.line_start}-{r.line_end}",
                subtitle=f"score {r.score:.3f}",
                expand=False,
            )
        )

"""quarry ingest / quarry docs: add documents and search them.

Exactly one source per call:
  --text TEXT   verbatim text
  --url URL     fetched over http(s), HTML reduced to text
  --file PATH   UTF-8 text file read from disk
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.errors import (
    err_empty_content,
    err_ingest_source_count,
    err_invalid_request,
    err_provider_failed,
    err_ssrf_blocked,
    warn_partial_embedding,
)
from quarry.cli.runtime import DEFAULT_DB, console, open_runtime
from quarry.errors import EmptyContentError, ProviderError, SsrfError, ValidationError
from quarry.ingest.ingestor import IngestRequest

_PREVIEW_CHARS = 80


def ingest_cmd(
    text: Annotated[
        str | None,
        typer.Option("--text", "-t", help="Text to ingest verbatim."),
    ] = None,
    url: Annotated[
        str | None,
        typer.Option("--url", "-u", help="http(s) URL to fetch and ingest."),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="UTF-8 text file to ingest."),
    ] = None,
    title: Annotated[
        str | None,
        typer.Option("--title", help="Document title (derived from the source if omitted)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database (created if missing)."),
    ] = DEFAULT_DB,
) -> None:
    """Ingest one document: chunk it, embed it, store it."""
    given = [v for v in (text, url, file) if v is not None]
    if len(given) != 1:
        console.print(err_ingest_source_count())
        raise typer.Exit(1)

    if text is not None:
        request = IngestRequest(type="text", content=text, title=title)
        label = "the given text"
    elif url is not None:
        request = IngestRequest(type="url", url=url, title=title)
        label = url
    else:
        if not file.is_file():
            console.print(err_invalid_request(f"File not found: '{file}'"))
            raise typer.Exit(1)
        request = IngestRequest(type="file", path=str(file), title=title)
        label = str(file)

    with open_runtime(db) as rt:
        try:
            result = asyncio.run(rt.ingestor().ingest(request))
        except SsrfError as exc:
            console.print(err_ssrf_blocked(url or ""))
            raise typer.Exit(1) from exc
        except EmptyContentError as exc:
            console.print(err_empty_content(label))
            raise typer.Exit(1) from exc
        except ValidationError as exc:
            console.print(err_invalid_request(str(exc)))
            raise typer.Exit(1) from exc
        except (ProviderError, OSError, UnicodeDecodeError) as exc:
            console.print(err_provider_failed(str(exc)))
            raise typer.Exit(1) from exc

    doc = result.document
    console.print(
        f"[green]✓[/] Ingested [bold]{doc.title}[/] ({doc.id}): "
        f"{result.chunks} chunks, {result.embeddings} embedded"
    )
    if result.embeddings < result.chunks:
        console.print(warn_partial_embedding(result.chunks, result.embeddings))


def docs_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    top_k: Annotated[
        int,
        typer.Option("--top-k", "-k", help="Maximum number of results."),
    ] = 10,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database."),
    ] = DEFAULT_DB,
) -> None:
    """Search ingested documents by similarity."""
    with open_runtime(db) as rt:
        try:
            results = asyncio.run(rt.ingestor().search(query, top_k=top_k))
        except ValidationError as exc:
            console.print(err_invalid_request(str(exc)))
            raise typer.Exit(1) from exc
        except ProviderError as exc:
            console.print(err_provider_failed(str(exc)))
            raise typer.Exit(1) from exc

    if not results:
        console.print("[yellow]No matching documents.[/]")
        return

    table = Table(title=f"Documents matching '{query}'")
    table.add_column("Score", justify="right")
    table.add_column("Title")
    table.add_column("Chunk", justify="right")
    table.add_column("Preview")
    for r in results:
        preview = " ".join(r.content.split())[:_PREVIEW_CHARS]
        table.add_row(f"{r.score:.3f}", r.title, str(r.chunk_index), preview)
    console.print(table)

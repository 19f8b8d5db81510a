"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from quarry.cli.compact import compact_cmd
from quarry.cli.index import index_cmd, jobs_cmd, stop_cmd
from quarry.cli.ingest import docs_cmd, ingest_cmd
from quarry.cli.memory import capture_cmd, recall_cmd
from quarry.cli.reconcile import reconcile_cmd
from quarry.cli.search import search_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"quarry {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry: memory and retrieval engine.\n\n"
        "  quarry ingest   Add a document (text, URL or file).\n"
        "  quarry index    Index a code workspace.\n"
        "  quarry search   Search indexed code.\n"
        "  quarry compact  Fit a chat transcript into a context window.\n"
        "  quarry recall   Search stored memories."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Quarry: memory and retrieval engine."""


app.command("ingest")(ingest_cmd)
app.command("docs")(docs_cmd)
app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("jobs")(jobs_cmd)
app.command("stop")(stop_cmd)
app.command("reconcile")(reconcile_cmd)
app.command("compact")(compact_cmd)
app.command("recall")(recall_cmd)
app.command("capture")(capture_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    typer.echo(f"quarry {_installed_version()}")


if __name__ == "__main__":
    app()

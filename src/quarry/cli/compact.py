"""quarry compact: fit a chat transcript into a model's context window.

The transcript is a JSON array of ``{"role": ..., "content": ...}`` messages.
Older turns are folded into a summary (stored and embedded as a memory
entry) once the history passes the compaction threshold; the result is then
trimmed to the history allowance left by the configured budget.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.errors import err_invalid_request
from quarry.cli.runtime import DEFAULT_DB, console, open_runtime
from quarry.context.budget import trim_history
from quarry.context.compactor import estimate_messages_tokens


def compact_cmd(
    messages_file: Annotated[
        Path,
        typer.Argument(help="JSON file holding the message list."),
    ],
    window: Annotated[
        int,
        typer.Option("--window", "-w", help="Model context window in tokens."),
    ] = 8192,
    max_response: Annotated[
        int,
        typer.Option("--max-response", help="Tokens reserved for the reply."),
    ] = 1024,
    chat_id: Annotated[
        str,
        typer.Option("--chat-id", help="Chat the summary memory belongs to."),
    ] = "cli",
    character_id: Annotated[
        str | None,
        typer.Option("--character-id", help="Scope the summary to a character instead."),
    ] = None,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Write the fitted messages here instead of stdout."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the quarry database (created if missing)."),
    ] = DEFAULT_DB,
) -> None:
    """Compact and trim a transcript so it fits the context window."""
    try:
        messages = json.loads(messages_file.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        console.print(err_invalid_request(f"Cannot read messages from '{messages_file}': {exc}"))
        raise typer.Exit(1) from exc
    if not isinstance(messages, list):
        console.print(err_invalid_request("The messages file must hold a JSON array."))
        raise typer.Exit(1)

    with open_runtime(db) as rt:
        outcome = rt.compactor().compact(messages, window, chat_id, character_id)
        if outcome.entry is not None:
            asyncio.run(rt.memory_search().index_entry(outcome.entry))
        budget = rt.budget(window, max_response)

    fitted = trim_history(outcome.messages, budget.history)
    if outcome.event is None:
        console.print(
            f"[dim]No compaction needed ({estimate_messages_tokens(messages)} tokens).[/]"
        )
    else:
        e = outcome.event
        console.print(
            f"[green]✓[/] Compacted {e.messages_before} → {e.messages_after} messages "
            f"({e.tokens_before} → {e.tokens_after} tokens)"
        )
    dropped = len(outcome.messages) - len(fitted)
    if dropped:
        console.print(
            f"[yellow]⚠[/] Dropped {dropped} oldest messages to fit {budget.history} history tokens."
        )

    if out is not None:
        out.write_text(json.dumps(fitted, indent=2), encoding="utf-8")
        console.print(f"[green]✓[/] Wrote {len(fitted)} messages to {out}")
    else:
        console.print_json(data=fitted)

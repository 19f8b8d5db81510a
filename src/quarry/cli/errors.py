"""Quarry rich error messages: what went wrong and how to fix it.

Every message names the cause and the exact action to take next.

Usage:
    from quarry.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai", "OPENAI_API_KEY"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str, env_var: str) -> str:
    """No API key for the embedding provider.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-...\n"
        "  Or use the offline provider:  export QUARRY_EMBEDDING_PROVIDER=hashing"
    )


def err_config(message: str) -> str:
    """quarry.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix quarry.yaml (or ~/.quarry/config.yaml) and try again."
    )


def err_ssrf_blocked(url: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] URL resolves to private address (SSRF protection): '{url}'\n"
        "  Use a publicly reachable URL."
    )


def err_empty_content(source: str) -> str:
    return (
        f"[red]Error:[/] No text content could be extracted from {source}.\n"
        "  Check that the source is not empty or binary."
    )


def err_invalid_request(message: str) -> str:
    return f"[red]Error:[/] {message}"


def err_ingest_source_count() -> str:
    """Zero or several of --text/--url/--file were given."""
    return (
        "[red]Error:[/] Give exactly one source.\n"
        "  Use one of:  --text TEXT  |  --url URL  |  --file PATH"
    )


def err_provider_failed(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Check your network connection and provider status, then retry."
    )


def err_job_conflict(workspace: str, job_id: str | None) -> str:
    """An index job for *workspace* is already pending or running."""
    job = f" ({job_id})" if job_id else ""
    return (
        f"[red]Error:[/] An index job{job} is already active for '{workspace}'.\n"
        f"  Wait for it to finish, or run:  quarry stop {workspace}"
    )


def err_not_found(kind: str, ident: str) -> str:
    return (
        f"[yellow]{kind} not found:[/] '{ident}'\n"
        "  Run:  quarry jobs  to see recent index jobs."
    )


def err_dimension_mismatch(expected: int, actual: int, model: str) -> str:
    """Stored vectors were written with a different embedding size."""
    return (
        f"[red]Error:[/] Embedding dimension mismatch for '{model}'.\n"
        f"  Database table holds:  {expected}-dimensional vectors\n"
        f"  Provider produces:     {actual}-dimensional vectors\n"
        "  Set embedding.dimensions in quarry.yaml to match, or use a new --db."
    )


def warn_partial_embedding(chunks: int, embedded: int) -> str:
    """Some embedding batches failed."""
    return (
        f"[yellow]⚠[/] Only {embedded} of {chunks} chunks were embedded.\n"
        "  Run:  quarry reconcile  to embed the rest."
    )

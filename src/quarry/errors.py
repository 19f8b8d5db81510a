"""Quarry exception hierarchy.

Every error raised by the engine derives from ``QuarryError`` so callers can
catch the whole family at once. The concrete classes also inherit from the
closest builtin (``ValueError``, ``LookupError``, ``RuntimeError``) so code
written against plain Python exceptions keeps working.
"""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for all Quarry errors."""


class ValidationError(QuarryError, ValueError):
    """Raised for a malformed request (missing workspace path, blank query, ...)."""


class NotFoundError(QuarryError, LookupError):
    """Raised when a job, document or chunk id is unknown."""

    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} '{ident}' not found")
        self.kind = kind
        self.ident = ident


class DimensionMismatchError(ValidationError):
    """Raised when a vector's length differs from the store's dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class EmptyContentError(ValidationError):
    """Raised when extraction yields no text to ingest."""


class JobConflictError(QuarryError):
    """Raised when an index job is started while another is active."""

    def __init__(self, workspace_path: str, active_job_id: str | None = None) -> None:
        msg = f"An index job is already active for workspace '{workspace_path}'"
        if active_job_id:
            msg += f" (job {active_job_id})"
        super().__init__(msg)
        self.workspace_path = workspace_path
        self.active_job_id = active_job_id


class ProviderError(QuarryError, RuntimeError):
    """Raised when an embedding or network call fails."""


class ApiKeyMissingError(ProviderError):
    """Raised before any call when the provider's API key env var is unset."""

    def __init__(self, provider: str, env_var: str) -> None:
        super().__init__(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )
        self.provider = provider
        self.env_var = env_var


class SsrfError(ValidationError):
    """Raised when a URL resolves to a private or reserved address."""

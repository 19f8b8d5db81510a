"""Embedding providers.

All embedding calls route through an ``EmbeddingProvider``:

- ``LiteLLMEmbeddingProvider`` calls ``litellm.aembedding()`` with LiteLLM's
  built-in retry (num_retries=3, exponential backoff). API key presence is
  validated before the first request.
- ``HashingEmbeddingProvider`` is deterministic and offline: a
  feature-hashed bag of words. Texts that share words score as similar,
  which is enough for tests and air-gapped use, not for real semantics.
"""

from __future__ import annotations

import hashlib
import math
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field

import litellm

from quarry.config import EmbeddingCfg
from quarry.errors import ApiKeyMissingError, ProviderError
from quarry.logging import get_logger

log = get_logger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
}

# OpenAI's native size for text-embedding-3-small; other sizes are requested
# explicitly.
_NATIVE_DIMENSIONS = 1536

_WORD_RE = re.compile(r"\w+")


@dataclass
class EmbeddingResult:
    """Vectors for a batch of texts, in input order."""

    embeddings: list[list[float]] = field(default_factory=list)
    model: str = ""
    token_count: int = 0


class EmbeddingProvider(ABC):
    """Turns texts into fixed-length vectors."""

    name: str = "abstract"

    def __init__(self, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        """Embed *texts*; the result holds exactly one vector per text.

        Raises:
            ProviderError: If the underlying call fails.
        """


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        ApiKeyMissingError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama) or provider unknown to us

    if not os.getenv(env_var):
        raise ApiKeyMissingError(provider, env_var)


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """Hosted embeddings through LiteLLM.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; passed to the API when it differs
            from the model's native size.
        num_retries: Retries on transient errors (exponential backoff).
    """

    name = "litellm"

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        dimensions: int = _NATIVE_DIMENSIONS,
        num_retries: int = 3,
    ) -> None:
        super().__init__(dimensions)
        self.model = model
        self.num_retries = num_retries

    async def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        if not texts:
            return EmbeddingResult(model=self.model)

        kwargs: dict = {}
        if self.dimensions != _NATIVE_DIMENSIONS:
            kwargs["dimensions"] = self.dimensions
        try:
            response = await litellm.aembedding(
                model=self.model,
                input=list(texts),
                num_retries=self.num_retries,
                **kwargs,
            )
        except Exception as exc:
            raise ProviderError(f"Embedding call to '{self.model}' failed: {exc}") from exc

        ordered = sorted(enumerate(response.data), key=lambda p: p[1].get("index", p[0]))
        embeddings = [list(d["embedding"]) for _, d in ordered]
        if len(embeddings) != len(texts):
            raise ProviderError(
                f"Embedding call to '{self.model}' returned {len(embeddings)} vectors "
                f"for {len(texts)} texts"
            )
        usage = getattr(response, "usage", None)
        return EmbeddingResult(
            embeddings=embeddings,
            model=getattr(response, "model", None) or self.model,
            token_count=getattr(usage, "total_tokens", 0) or 0,
        )


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words vectors via the hashing trick.

    Each lower-cased ``\\w+`` token adds 1.0 to the bucket chosen by its
    SHA-256 digest; the vector is then L2-normalised. Same text, same
    vector, across processes.
    """

    name = "hashing"

    def __init__(self, dimensions: int = 384) -> None:
        super().__init__(dimensions)

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimensions
        for token in _WORD_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vec[int.from_bytes(digest[:8], "big") % self.dimensions] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        return [v / norm for v in vec] if norm else vec

    async def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        return EmbeddingResult(
            embeddings=[self.vector(t) for t in texts],
            model="hashing",
            token_count=sum(len(_WORD_RE.findall(t)) for t in texts),
        )


def create_embedding_provider(cfg: EmbeddingCfg) -> EmbeddingProvider:
    """Build the provider named by ``cfg.provider``.

    Raises:
        ValueError: If the provider name is unknown.
        ApiKeyMissingError: For ``litellm`` when the model's key is unset.
    """
    if cfg.provider == "hashing":
        return HashingEmbeddingProvider(dimensions=cfg.dimensions)
    if cfg.provider == "litellm":
        validate_api_key(cfg.model)
        return LiteLLMEmbeddingProvider(model=cfg.model, dimensions=cfg.dimensions)
    raise ValueError(f"Unknown embedding provider '{cfg.provider}' (expected litellm or hashing)")

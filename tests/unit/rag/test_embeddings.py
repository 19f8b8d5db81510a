"""Tests for embedding providers (LiteLLM mocked, hashing offline)."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from quarry.config import EmbeddingCfg
from quarry.errors import ApiKeyMissingError, ProviderError
from quarry.rag.embeddings import (
    HashingEmbeddingProvider,
    LiteLLMEmbeddingProvider,
    create_embedding_provider,
    validate_api_key,
)


def _response(vectors: list[list[float]], reverse: bool = False) -> MagicMock:
    data = [{"index": i, "embedding": v} for i, v in enumerate(vectors)]
    if reverse:
        data.reverse()
    response = MagicMock()
    response.data = data
    response.model = "text-embedding-3-small"
    response.usage = MagicMock(total_tokens=7)
    return response


# ------------------------------------------------------------------
# API key validation
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ApiKeyMissingError) as exc_info:
        validate_api_key("openai/text-embedding-3-small")
    assert exc_info.value.env_var == "OPENAI_API_KEY"
    assert "OPENAI_API_KEY" in str(exc_info.value)


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/text-embedding-3-small")


def test_validate_api_key_bare_model_is_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ApiKeyMissingError):
        validate_api_key("text-embedding-3-small")


def test_validate_api_key_ollama_needs_no_key():
    validate_api_key("ollama/nomic-embed-text")


# ------------------------------------------------------------------
# LiteLLM provider
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_litellm_embed_orders_by_index():
    provider = LiteLLMEmbeddingProvider(dimensions=3)
    mock = AsyncMock(return_value=_response([[1.0, 0, 0], [0, 1.0, 0]], reverse=True))
    with patch("quarry.rag.embeddings.litellm.aembedding", mock):
        result = await provider.embed(["a", "b"])

    assert result.embeddings == [[1.0, 0, 0], [0, 1.0, 0]]
    assert result.token_count == 7
    assert result.model == "text-embedding-3-small"
    kwargs = mock.call_args.kwargs
    assert kwargs["input"] == ["a", "b"]
    assert kwargs["dimensions"] == 3
    assert kwargs["num_retries"] == 3


@pytest.mark.asyncio
async def test_litellm_native_dimensions_not_sent():
    provider = LiteLLMEmbeddingProvider()
    mock = AsyncMock(return_value=_response([[0.0] * 1536]))
    with patch("quarry.rag.embeddings.litellm.aembedding", mock):
        await provider.embed(["a"])
    assert "dimensions" not in mock.call_args.kwargs


@pytest.mark.asyncio
async def test_litellm_empty_input_skips_call():
    mock = AsyncMock()
    with patch("quarry.rag.embeddings.litellm.aembedding", mock):
        result = await LiteLLMEmbeddingProvider().embed([])
    assert result.embeddings == []
    mock.assert_not_called()


@pytest.mark.asyncio
async def test_litellm_failure_becomes_provider_error():
    mock = AsyncMock(side_effect=RuntimeError("503"))
    with patch("quarry.rag.embeddings.litellm.aembedding", mock):
        with pytest.raises(ProviderError, match="503"):
            await LiteLLMEmbeddingProvider().embed(["a"])


@pytest.mark.asyncio
async def test_litellm_count_mismatch_is_provider_error():
    mock = AsyncMock(return_value=_response([[1.0, 0, 0]]))
    with patch("quarry.rag.embeddings.litellm.aembedding", mock):
        with pytest.raises(ProviderError, match="1 vectors for 2 texts"):
            await LiteLLMEmbeddingProvider(dimensions=3).embed(["a", "b"])


# ------------------------------------------------------------------
# Hashing provider
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_hashing_is_deterministic_and_normalised():
    provider = HashingEmbeddingProvider(64)
    first = await provider.embed(["Quarry indexes code", ""])
    second = await HashingEmbeddingProvider(64).embed(["quarry INDEXES code"])

    assert first.embeddings[0] == second.embeddings[0]
    assert len(first.embeddings[0]) == 64
    assert math.isclose(math.sqrt(sum(v * v for v in first.embeddings[0])), 1.0)
    assert first.embeddings[1] == [0.0] * 64
    assert first.token_count == 3


def test_dimensions_must_be_positive():
    with pytest.raises(ValueError):
        HashingEmbeddingProvider(0)


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------


def test_create_hashing_provider():
    provider = create_embedding_provider(EmbeddingCfg(provider="hashing", dimensions=32))
    assert isinstance(provider, HashingEmbeddingProvider)
    assert provider.dimensions == 32


def test_create_litellm_provider_checks_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ApiKeyMissingError):
        create_embedding_provider(EmbeddingCfg())
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    provider = create_embedding_provider(EmbeddingCfg())
    assert isinstance(provider, LiteLLMEmbeddingProvider)
    assert provider.model == "openai/text-embedding-3-small"


def test_create_unknown_provider():
    with pytest.raises(ValueError, match="Unknown embedding provider"):
        create_embedding_provider(EmbeddingCfg(provider="magic"))

"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quarry.db.connection import Database
from quarry.db.schema import initialize
from quarry.db.vectors import InMemoryVectorStore
from quarry.rag.embeddings import HashingEmbeddingProvider


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def provider():
    """Deterministic offline embedding provider."""
    return HashingEmbeddingProvider(dimensions=1024)


@pytest.fixture
def store(provider):
    return InMemoryVectorStore(provider.dimensions)

"""Quarry database layer."""

from quarry.db.connection import Database
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.schema import initialize
from quarry.db.vectors import (
    InMemoryVectorStore,
    SqliteVecStore,
    VectorHit,
    VectorStore,
    ensure_vector_table,
    model_to_slug,
    vector_table_name,
)

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "InMemoryVectorStore",
    "SqliteVecStore",
    "VectorHit",
    "VectorStore",
    "ensure_vector_table",
    "model_to_slug",
    "vector_table_name",
]

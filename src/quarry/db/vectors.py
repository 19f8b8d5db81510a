"""Vector stores: cosine k-NN over (id, vector, metadata) entries.

Two interchangeable implementations share the ``VectorStore`` contract:

- ``InMemoryVectorStore``: process-lifetime dict with a linear cosine scan.
  Relational chunk records plus a reconcile pass are its recovery path.
- ``SqliteVecStore``: the same contract on a regular SQLite table scored
  with sqlite-vec's ``vec_distance_cosine``; used where the index must
  survive the process (the CLI).

Entry ids equal the owning chunk id. Search returns hits in descending
similarity; equal scores keep insertion order, and re-inserting an id moves
it to the most recent insertion position.
"""

from __future__ import annotations

import json
import math
import re
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import sqlite_vec

from quarry.errors import DimensionMismatchError

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class VectorHit:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "hashing" -> "hashing"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vector_table_name(slug: str) -> str:
    """Return the full vector table name for a model slug."""
    return f"vectors_{slug}"


def ensure_vector_table(conn: sqlite3.Connection, slug: str, dimensions: int) -> str:
    """Create vectors_{slug} if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector length stored in this table.

    Returns:
        The table name (vectors_{slug}).

    Raises:
        ValueError: If *slug* is not sanitized or *dimensions* < 1.
        DimensionMismatchError: If the table exists with a different length.
    """
    if not re.fullmatch(r"[a-z0-9_]+", slug):
        raise ValueError(f"Invalid slug '{slug}'; use model_to_slug() to sanitize.")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vector_table_name(slug)
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            seq         INTEGER PRIMARY KEY AUTOINCREMENT,
            id          TEXT NOT NULL UNIQUE,
            embedding   BLOB NOT NULL,
            dimensions  INTEGER NOT NULL,
            metadata    TEXT NOT NULL DEFAULT '{{}}'
        )
        """
    )
    conn.commit()

    row = conn.execute(f"SELECT dimensions FROM {table} LIMIT 1").fetchone()
    if row is not None and row[0] != dimensions:
        raise DimensionMismatchError(row[0], dimensions)
    return table


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either is all zeros."""
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def _matches(metadata: Mapping[str, Any], flt: Mapping[str, Any] | None) -> bool:
    if not flt:
        return True
    return all(metadata.get(k) == v for k, v in flt.items())


class VectorStore(ABC):
    """Abstract k-NN store keyed by chunk id."""

    def __init__(self, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        self.dimensions = dimensions

    def _check(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(vector))

    @abstractmethod
    def insert(self, id: str, vector: Sequence[float], metadata: Mapping[str, Any] | None = None) -> None:
        """Store *vector* under *id*, replacing any previous entry.

        Raises:
            DimensionMismatchError: If ``len(vector) != self.dimensions``.
        """

    @abstractmethod
    def search(
        self,
        query: Sequence[float],
        top_k: int,
        filter: Mapping[str, Any] | None = None,
    ) -> list[VectorHit]:
        """Return up to *top_k* hits by descending cosine similarity.

        Only entries whose metadata equals every key/value in *filter* are
        eligible.

        Raises:
            DimensionMismatchError: If the query has the wrong length.
        """

    @abstractmethod
    def count(self) -> int:
        """Number of stored vectors."""

    @abstractmethod
    def delete(self, id: str) -> bool:
        """Remove *id*; return False if it was not stored."""

    @abstractmethod
    def delete_where(self, filter: Mapping[str, Any]) -> int:
        """Remove every entry matching *filter*; return how many were removed."""

    @abstractmethod
    def contains(self, id: str) -> bool: ...

    @abstractmethod
    def clear(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryVectorStore(VectorStore):
    """Linear-scan store living for the lifetime of the process."""

    def __init__(self, dimensions: int) -> None:
        super().__init__(dimensions)
        # dict preserves insertion order, which is the tie-breaker.
        self._entries: dict[str, tuple[list[float], dict[str, Any]]] = {}

    def insert(self, id: str, vector: Sequence[float], metadata: Mapping[str, Any] | None = None) -> None:
        self._check(vector)
        self._entries.pop(id, None)
        self._entries[id] = ([float(x) for x in vector], dict(metadata or {}))

    def search(
        self,
        query: Sequence[float],
        top_k: int,
        filter: Mapping[str, Any] | None = None,
    ) -> list[VectorHit]:
        self._check(query)
        if top_k <= 0:
            return []
        hits = [
            VectorHit(id=id, score=cosine_similarity(query, vec), metadata=dict(meta))
            for id, (vec, meta) in self._entries.items()
            if _matches(meta, filter)
        ]
        # sorted() is stable: equal scores stay in insertion order.
        hits = sorted(hits, key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    def count(self) -> int:
        return len(self._entries)

    def delete(self, id: str) -> bool:
        return self._entries.pop(id, None) is not None

    def delete_where(self, filter: Mapping[str, Any]) -> int:
        doomed = [id for id, (_, meta) in self._entries.items() if _matches(meta, filter)]
        for id in doomed:
            del self._entries[id]
        return len(doomed)

    def contains(self, id: str) -> bool:
        return id in self._entries

    def clear(self) -> None:
        self._entries.clear()


# ---------------------------------------------------------------------------
# SQLite (sqlite-vec scoring)
# ---------------------------------------------------------------------------


class SqliteVecStore(VectorStore):
    """Durable store on a regular table, scored with ``vec_distance_cosine``.

    Args:
        conn: Open connection with sqlite-vec loaded (see ``Database.connect``).
        dimensions: Vector length for this table.
        slug: Table suffix; one table per embedding model keeps vectors of
            different lengths apart.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int, slug: str = "default") -> None:
        super().__init__(dimensions)
        self._conn = conn
        self._table = ensure_vector_table(conn, slug, dimensions)

    @property
    def table(self) -> str:
        return self._table

    def insert(self, id: str, vector: Sequence[float], metadata: Mapping[str, Any] | None = None) -> None:
        self._check(vector)
        # Delete then insert so the fresh row takes the newest seq.
        self._conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (id,))
        self._conn.execute(
            f"INSERT INTO {self._table} (id, embedding, dimensions, metadata) VALUES (?, ?, ?, ?)",
            (
                id,
                sqlite_vec.serialize_float32([float(x) for x in vector]),
                self.dimensions,
                json.dumps(dict(metadata or {})),
            ),
        )
        self._conn.commit()

    def search(
        self,
        query: Sequence[float],
        top_k: int,
        filter: Mapping[str, Any] | None = None,
    ) -> list[VectorHit]:
        self._check(query)
        if top_k <= 0:
            return []
        where, params = self._where(filter)
        rows = self._conn.execute(
            f"""
            SELECT id, metadata, vec_distance_cosine(embedding, ?) AS distance
            FROM {self._table}
            {where}
            ORDER BY distance ASC NULLS LAST, seq ASC
            LIMIT ?
            """,
            (sqlite_vec.serialize_float32([float(x) for x in query]), *params, top_k),
        ).fetchall()
        return [
            VectorHit(
                id=row["id"],
                score=1.0 - row["distance"] if row["distance"] is not None else 0.0,
                metadata=json.loads(row["metadata"]),
            )
            for row in rows
        ]

    def count(self) -> int:
        return self._conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()[0]

    def delete(self, id: str) -> bool:
        cur = self._conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (id,))
        self._conn.commit()
        return cur.rowcount > 0

    def delete_where(self, filter: Mapping[str, Any]) -> int:
        where, params = self._where(filter)
        cur = self._conn.execute(f"DELETE FROM {self._table} {where}", params)
        self._conn.commit()
        return cur.rowcount

    def contains(self, id: str) -> bool:
        row = self._conn.execute(
            f"SELECT 1 FROM {self._table} WHERE id = ?", (id,)
        ).fetchone()
        return row is not None

    def clear(self) -> None:
        self._conn.execute(f"DELETE FROM {self._table}")
        self._conn.commit()

    @staticmethod
    def _where(flt: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
        if not flt:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        for key, value in flt.items():
            if not _KEY_RE.match(key):
                raise ValueError(f"Invalid metadata filter key '{key}'")
            if value is None:
                clauses.append(f"json_extract(metadata, '$.{key}') IS NULL")
            else:
                clauses.append(f"json_extract(metadata, '$.{key}') = ?")
                params.append(value)
        return "WHERE " + " AND ".join(clauses), params

"""SQLite storage for the vector plugin: one database per user, one row per hash."""

from __future__ import annotations

import json
import sqlite3
import threading
from array import array
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from scribe.utils.helpers import ensure_dir, now_ms, safe_user_handle


@dataclass(slots=True)
class StoredVector:
    """One row of a collection."""

    hash: str
    text: str
    index: int
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_item(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "text": self.text,
            "index": self.index,
            "metadata": self.metadata,
        }


class VectorStore:
    """Embedding vectors keyed by ``(collection_id, hash)``.

    Similarity is exact cosine over every row of the collection; no ANN index.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path.expanduser()
        ensure_dir(self.db_path.parent)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _create_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vectors (
                    collection_id TEXT NOT NULL,
                    hash TEXT NOT NULL,
                    text TEXT NOT NULL,
                    item_index INTEGER NOT NULL DEFAULT 0,
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    dims INTEGER NOT NULL,
                    vector BLOB NOT NULL,
                    created_at INTEGER NOT NULL,
                    PRIMARY KEY (collection_id, hash)
                )
                """
            )
            self._conn.commit()

    @staticmethod
    def _serialize_vector(vector: list[float]) -> bytes:
        return array("f", [float(v) for v in vector]).tobytes()

    @staticmethod
    def _deserialize_vector(blob: bytes) -> list[float]:
        unpacked = array("f")
        unpacked.frombytes(blob)
        return unpacked.tolist()

    @classmethod
    def _row_to_vector(cls, row: sqlite3.Row) -> StoredVector:
        try:
            metadata = json.loads(row["metadata_json"] or "{}")
        except ValueError:
            metadata = {}
        return StoredVector(
            hash=str(row["hash"]),
            text=str(row["text"]),
            index=int(row["item_index"]),
            vector=cls._deserialize_vector(bytes(row["vector"])),
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def upsert(self, collection_id: str, rows: list[StoredVector]) -> int:
        """Insert rows; an existing hash in the collection is replaced."""
        if not rows:
            return 0
        created = now_ms()
        with self._lock:
            self._conn.executemany(
                """
                INSERT OR REPLACE INTO vectors (
                    collection_id, hash, text, item_index, metadata_json, dims, vector, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        collection_id,
                        row.hash,
                        row.text,
                        int(row.index),
                        json.dumps(row.metadata, ensure_ascii=False),
                        len(row.vector),
                        self._serialize_vector(row.vector),
                        created,
                    )
                    for row in rows
                ],
            )
            self._conn.commit()
        return len(rows)

    def query(
        self,
        collection_id: str,
        query_vector: list[float],
        *,
        top_k: int = 10,
        threshold: float = 0.0,
    ) -> list[tuple[StoredVector, float]]:
        """Rows scored by cosine similarity (clamped to ``[0, 1]``), best first."""
        if not query_vector or top_k <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM vectors WHERE collection_id = ?", (collection_id,)
            ).fetchall()
        scored: list[tuple[StoredVector, float]] = []
        for row in rows:
            stored = self._row_to_vector(row)
            if len(stored.vector) != len(query_vector):
                continue
            score = max(0.0, min(1.0, _cosine_similarity(query_vector, stored.vector)))
            if threshold and score < threshold:
                continue
            scored.append((stored, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[: int(top_k)]

    def list_hashes(self, collection_id: str) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT hash FROM vectors WHERE collection_id = ? ORDER BY item_index, hash",
                (collection_id,),
            ).fetchall()
        return [str(row["hash"]) for row in rows]

    def get_by_hashes(self, collection_id: str, hashes: list[str]) -> list[StoredVector]:
        if not hashes:
            return []
        placeholders = ",".join(["?"] * len(hashes))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM vectors WHERE collection_id = ? AND hash IN ({placeholders})",
                (collection_id, *hashes),
            ).fetchall()
        return [self._row_to_vector(row) for row in rows]

    def delete(self, collection_id: str, hashes: list[str]) -> int:
        if not hashes:
            return 0
        placeholders = ",".join(["?"] * len(hashes))
        with self._lock:
            cursor = self._conn.execute(
                f"DELETE FROM vectors WHERE collection_id = ? AND hash IN ({placeholders})",
                (collection_id, *hashes),
            )
            self._conn.commit()
        return int(cursor.rowcount or 0)

    def drop(self, collection_id: str) -> int:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM vectors WHERE collection_id = ?", (collection_id,)
            )
            self._conn.commit()
        return int(cursor.rowcount or 0)

    def stats(self, collection_id: str) -> dict[str, Any]:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS c, MAX(dims) AS d FROM vectors WHERE collection_id = ?",
                (collection_id,),
            ).fetchone()
        count = int(row["c"] if row else 0)
        return {"count": count, "hasEmbeddings": bool(count and row["d"])}


class VectorStoreRegistry:
    """Opens and caches one ``VectorStore`` per sanitized user handle."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = ensure_dir(data_dir.expanduser())
        self._stores: dict[str, VectorStore] = {}
        self._lock = threading.Lock()

    def for_user(self, handle: str | None) -> VectorStore:
        user = safe_user_handle(handle or "")
        with self._lock:
            store = self._stores.get(user)
            if store is None:
                store = VectorStore(self.data_dir / user / "vectors.db")
                self._stores[user] = store
            return store

    def close(self) -> None:
        with self._lock:
            for store in self._stores.values():
                store.close()
            self._stores.clear()


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=False):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a <= 0.0 or norm_b <= 0.0:
        return 0.0
    return dot / ((norm_a ** 0.5) * (norm_b ** 0.5))

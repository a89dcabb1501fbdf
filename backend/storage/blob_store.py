from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

import duckdb

from domain.errors import PersistenceError
from storage.sql import (
    CREATE_BLOBS_TABLE_SQL,
    DELETE_BLOB_SQL,
    LIST_BLOBS_SQL,
    SELECT_BLOB_SQL,
    UPSERT_BLOB_SQL,
)

log = logging.getLogger(__name__)


@dataclass
class BlobStore:
    """
    Opaque blobs keyed by name, kept in a single DuckDB file.

    Each blob is read and written wholesale. DuckDB connections are not safe to share across
    threads without serialization, so every statement runs under one lock.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def open(cls, path: Path | str) -> "BlobStore":
        p = Path(path)
        if str(p) != ":memory:":
            p.parent.mkdir(parents=True, exist_ok=True)
        conn = duckdb.connect(str(p))
        store = cls(path=p, conn=conn)
        store.ensure_schema()
        log.info("BlobStore opened: %s", p)
        return store

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_BLOBS_TABLE_SQL)

    def put(self, name: str, data: bytes) -> None:
        try:
            with self._lock:
                self.conn.execute(
                    UPSERT_BLOB_SQL, [name, bytes(data), int(time.time() * 1000)]
                )
                # Make the write durable before reporting success.
                self.conn.execute("CHECKPOINT;")
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to write blob {name!r}: {e}") from e

    def get(self, name: str) -> bytes | None:
        try:
            with self._lock:
                row = self.conn.execute(SELECT_BLOB_SQL, [name]).fetchone()
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to read blob {name!r}: {e}") from e
        if row is None or row[0] is None:
            return None
        return bytes(row[0])

    def delete(self, name: str) -> None:
        try:
            with self._lock:
                self.conn.execute(DELETE_BLOB_SQL, [name])
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to delete blob {name!r}: {e}") from e

    def names(self) -> list[tuple[str, int, int]]:
        """(name, size in bytes, last write in epoch ms) for every stored blob."""
        try:
            with self._lock:
                rows = self.conn.execute(LIST_BLOBS_SQL).fetchall()
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to list blobs: {e}") from e
        return [(str(n), int(size or 0), int(ts or 0)) for n, size, ts in rows]

    def close(self) -> None:
        with self._lock:
            try:
                self.conn.close()
            except duckdb.Error as e:
                log.warning("BlobStore close failed: %s", e)

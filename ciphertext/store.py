"""
ciphertext/store.py -- SQLite-backed bucketed key-value store for encrypted bytes.

Holds only opaque ciphertext, partitioned into one bucket per owner. The
lifecycle managers use the user id as the bucket name, so a bucket outlives
any handle reuse and purge() clears exactly one user's data.

Each user's data key sits in the same bucket under the reserved slot
core.validation.CIPHER_KEY_SLOT. This store neither knows nor cares; it is
the validator that keeps secret names out of that slot.

"Absent" is never an error: get() returns None and delete() returns False
when the bucket or key does not exist. sqlite3 failures raise StoreError.

Usage:
    store = SQLiteCiphertextStore()
    store.set("42", "db-pass", ciphertext)
    blob = store.get("42", "db-pass")     # bytes or None
    store.delete("42", "db-pass")         # True if removed
    store.purge("42")                     # drop the whole bucket
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from core.errors import StoreError

logger = logging.getLogger("lockbox.store")

_DDL = """
CREATE TABLE IF NOT EXISTS ciphertexts (
    bucket      TEXT NOT NULL,
    key         TEXT NOT NULL,
    value       BLOB NOT NULL,
    updated_at  REAL NOT NULL,
    PRIMARY KEY (bucket, key)
);
"""


class SQLiteCiphertextStore:
    def __init__(self, db_path: str | Path = "lockbox_ciphertext.db") -> None:
        # One connection shared across request threads; the lock serialises
        # calls so each one is atomic from the caller's point of view.
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    @contextmanager
    def _locked(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                logger.error("Ciphertext store failure during %s: %s", action, exc)
                raise StoreError(f"{action}: ciphertext store unavailable") from exc

    def ping(self) -> bool:
        try:
            with self._locked("ping") as conn:
                conn.execute("SELECT 1")
            return True
        except StoreError:
            return False

    def set(self, bucket: str, key: str, value: bytes) -> None:
        """Store value under (bucket, key), replacing any existing entry."""
        with self._locked("set") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO ciphertexts (bucket, key, value, updated_at) VALUES (?, ?, ?, ?)",
                (bucket, key, value, time.time()),
            )
            conn.commit()

    def get(self, bucket: str, key: str) -> bytes | None:
        """Return the stored bytes, or None if the bucket or key is absent."""
        with self._locked("get") as conn:
            row = conn.execute(
                "SELECT value FROM ciphertexts WHERE bucket = ? AND key = ?",
                (bucket, key),
            ).fetchone()
        return bytes(row[0]) if row is not None else None

    def delete(self, bucket: str, key: str) -> bool:
        """Remove one entry. Returns False if it did not exist."""
        with self._locked("delete") as conn:
            cursor = conn.execute("DELETE FROM ciphertexts WHERE bucket = ? AND key = ?", (bucket, key))
            conn.commit()
        return cursor.rowcount > 0

    def purge(self, bucket: str) -> int:
        """Remove every entry in a bucket. Returns the number of rows removed."""
        with self._locked("purge") as conn:
            cursor = conn.execute("DELETE FROM ciphertexts WHERE bucket = ?", (bucket,))
            conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

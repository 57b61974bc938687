"""
qfund.store.kv
--------------

Ciphertext Store: durable keyed storage of encrypted records. No cryptographic
logic and no validation beyond existence checks.

Two implementations are provided:

- MemoryStore: in-process dict of canonical-CBOR blobs (tests/dev).
- SqliteStore: persistent store using the stdlib `sqlite3` module (WAL).

Records are plain maps (str keys, CBOR-encodable values). A write becomes
visible to every subsequent read on the same store. `write_batch` applies a
set of puts and deletes atomically; the reveal commit relies on it.

Reading an unknown key raises `NotFound`, which callers treat as a domain
error.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from qfund.cbor.codec import dumps, loads
from qfund.errors import LedgerError, NotFound

log = logging.getLogger(__name__)

Record = Dict[str, Any]


def _prefix_upper_bound(prefix: bytes) -> Optional[bytes]:
    """Smallest key greater than every key starting with `prefix`."""
    b = bytearray(prefix)
    while b:
        if b[-1] < 0xFF:
            b[-1] += 1
            return bytes(b)
        b.pop()
    return None


# -----------------------------------------------------------------------------
# Store protocol & factory
# -----------------------------------------------------------------------------


class CiphertextStore(Protocol):
    def put(self, key: bytes, record: Mapping[str, Any]) -> None: ...
    def get(self, key: bytes) -> Record: ...
    def has(self, key: bytes) -> bool: ...
    def delete(self, key: bytes) -> bool: ...
    def scan(self, prefix: bytes, limit: int = 50, offset: int = 0) -> List[Tuple[bytes, Record]]: ...
    def count(self, prefix: bytes) -> int: ...
    def write_batch(self, puts: Mapping[bytes, Mapping[str, Any]], deletes: Iterable[bytes] = ()) -> None: ...
    def close(self) -> None: ...


def open_store(url: str) -> CiphertextStore:
    """
    Open a Ciphertext Store from a URL.

    Supported:
      - "memory:" → in-memory store
      - "sqlite:///:memory:" → SQLite in-memory
      - "sqlite:///path/to/ledger.db" → SQLite file
    """
    if url.startswith("memory:"):
        return MemoryStore()
    if url.startswith("sqlite:///"):
        return SqliteStore(url[len("sqlite:///") :])
    raise LedgerError(f"unsupported store URL: {url}")


# -----------------------------------------------------------------------------
# Memory store
# -----------------------------------------------------------------------------


class MemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: Dict[bytes, bytes] = {}

    def put(self, key: bytes, record: Mapping[str, Any]) -> None:
        blob = dumps(dict(record))
        with self._lock:
            self._data[bytes(key)] = blob

    def get(self, key: bytes) -> Record:
        with self._lock:
            blob = self._data.get(bytes(key))
        if blob is None:
            raise NotFound(key)
        return loads(blob)

    def has(self, key: bytes) -> bool:
        with self._lock:
            return bytes(key) in self._data

    def delete(self, key: bytes) -> bool:
        with self._lock:
            return self._data.pop(bytes(key), None) is not None

    def scan(self, prefix: bytes, limit: int = 50, offset: int = 0) -> List[Tuple[bytes, Record]]:
        with self._lock:
            keys = sorted(k for k in self._data if k.startswith(prefix))
            sel = keys[offset : offset + limit]
            return [(k, loads(self._data[k])) for k in sel]

    def count(self, prefix: bytes) -> int:
        with self._lock:
            return sum(1 for k in self._data if k.startswith(prefix))

    def write_batch(self, puts: Mapping[bytes, Mapping[str, Any]], deletes: Iterable[bytes] = ()) -> None:
        # Encode everything first so a bad record leaves the store untouched.
        staged = {bytes(k): dumps(dict(v)) for k, v in puts.items()}
        dels = [bytes(k) for k in deletes]
        with self._lock:
            self._data.update(staged)
            for k in dels:
                self._data.pop(k, None)

    def close(self) -> None:
        pass


# -----------------------------------------------------------------------------
# SQLite store
# -----------------------------------------------------------------------------

_SQL_SCHEMA = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
CREATE TABLE IF NOT EXISTS records (
  key     BLOB PRIMARY KEY,
  record  BLOB NOT NULL
);
"""


class SqliteStore:
    def __init__(self, path: str) -> None:
        self._path = os.path.abspath(path) if path != ":memory:" else ":memory:"
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.executescript(_SQL_SCHEMA)
        self._conn.commit()
        self._lock = threading.RLock()
        log.debug("opened sqlite ciphertext store at %s", self._path)

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def put(self, key: bytes, record: Mapping[str, Any]) -> None:
        blob = dumps(dict(record))
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO records(key, record) VALUES(?, ?)",
                (bytes(key), blob),
            )

    def get(self, key: bytes) -> Record:
        with self._lock:
            row = self._conn.execute(
                "SELECT record FROM records WHERE key = ?", (bytes(key),)
            ).fetchone()
        if not row:
            raise NotFound(key)
        return loads(row[0])

    def has(self, key: bytes) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM records WHERE key = ? LIMIT 1", (bytes(key),)
            ).fetchone()
        return row is not None

    def delete(self, key: bytes) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM records WHERE key = ?", (bytes(key),))
            return cur.rowcount > 0

    def _range_clause(self, prefix: bytes) -> Tuple[str, Tuple[bytes, ...]]:
        upper = _prefix_upper_bound(prefix)
        if upper is None:
            return "key >= ?", (bytes(prefix),)
        return "key >= ? AND key < ?", (bytes(prefix), upper)

    def scan(self, prefix: bytes, limit: int = 50, offset: int = 0) -> List[Tuple[bytes, Record]]:
        where, args = self._range_clause(prefix)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT key, record FROM records WHERE {where} ORDER BY key LIMIT ? OFFSET ?",
                (*args, int(limit), int(offset)),
            ).fetchall()
        return [(bytes(k), loads(blob)) for k, blob in rows]

    def count(self, prefix: bytes) -> int:
        where, args = self._range_clause(prefix)
        with self._lock:
            (n,) = self._conn.execute(f"SELECT COUNT(*) FROM records WHERE {where}", args).fetchone()
        return int(n)

    def write_batch(self, puts: Mapping[bytes, Mapping[str, Any]], deletes: Iterable[bytes] = ()) -> None:
        rows = [(bytes(k), dumps(dict(v))) for k, v in puts.items()]
        dels = [(bytes(k),) for k in deletes]
        # `with conn` commits on success and rolls back on any exception.
        with self._lock, self._conn:
            self._conn.executemany("INSERT OR REPLACE INTO records(key, record) VALUES(?, ?)", rows)
            self._conn.executemany("DELETE FROM records WHERE key = ?", dels)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = [
    "Record",
    "CiphertextStore",
    "MemoryStore",
    "SqliteStore",
    "open_store",
]

"""
qfund.store.events
------------------

Append-only ledger event log.

Every committed state transition appends exactly one event. Events are
sequence-numbered from 1, keyed by project id, and carry everything needed to
rebuild entity state by replay (see `qfund.ledger.Ledger.replay`):

    ProjectSubmitted   {creator, title, description, location, budget}
    ContributionMade   {index, contributor, amount}
    FundingCompleted   {closed_by}
    ProjectRevealed    {request_id, title, description, location, budget}
    VoteCast           {voter}
    ProjectReviewed    {reviewer, status}

Payloads are canonical CBOR. Nothing is ever updated or deleted.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Protocol

from qfund.cbor.codec import dumps, loads
from qfund.errors import LedgerError

log = logging.getLogger(__name__)


class EventKind(str, Enum):
    PROJECT_SUBMITTED = "ProjectSubmitted"
    CONTRIBUTION_MADE = "ContributionMade"
    FUNDING_COMPLETED = "FundingCompleted"
    PROJECT_REVEALED = "ProjectRevealed"
    VOTE_CAST = "VoteCast"
    PROJECT_REVIEWED = "ProjectReviewed"


@dataclass(frozen=True, slots=True)
class Event:
    seq: int
    kind: EventKind
    project_id: int
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)


class EventLog(Protocol):
    def append(self, kind: EventKind, project_id: int, data: Dict[str, Any], *, timestamp: int) -> Event: ...
    def events(self, *, after_seq: int = 0, limit: Optional[int] = None) -> Iterator[Event]: ...
    def for_project(self, project_id: int) -> List[Event]: ...
    def last_seq(self) -> int: ...
    def close(self) -> None: ...


def open_event_log(url: str) -> EventLog:
    """
    Open an event log from a URL ("memory:", "sqlite:///path", "sqlite:///:memory:").
    """
    if url.startswith("memory:"):
        return MemoryEventLog()
    if url.startswith("sqlite:///"):
        return SqliteEventLog(url[len("sqlite:///") :])
    raise LedgerError(f"unsupported event-log URL: {url}")


# -----------------------------------------------------------------------------
# Memory log
# -----------------------------------------------------------------------------


class MemoryEventLog:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: List[bytes] = []

    def append(self, kind: EventKind, project_id: int, data: Dict[str, Any], *, timestamp: int) -> Event:
        with self._lock:
            ev = Event(
                seq=len(self._rows) + 1,
                kind=EventKind(kind),
                project_id=int(project_id),
                timestamp=int(timestamp),
                data=dict(data),
            )
            self._rows.append(dumps(ev))
        log.debug("event %d %s project=%d", ev.seq, ev.kind.value, ev.project_id)
        return ev

    def events(self, *, after_seq: int = 0, limit: Optional[int] = None) -> Iterator[Event]:
        with self._lock:
            rows = list(self._rows[after_seq:])
        if limit is not None:
            rows = rows[:limit]
        for blob in rows:
            yield _decode_event(loads(blob))

    def for_project(self, project_id: int) -> List[Event]:
        return [ev for ev in self.events() if ev.project_id == project_id]

    def last_seq(self) -> int:
        with self._lock:
            return len(self._rows)

    def close(self) -> None:
        pass


def _decode_event(m: Dict[str, Any]) -> Event:
    return Event(
        seq=int(m["seq"]),
        kind=EventKind(m["kind"]),
        project_id=int(m["project_id"]),
        timestamp=int(m["timestamp"]),
        data=dict(m.get("data") or {}),
    )


# -----------------------------------------------------------------------------
# SQLite log
# -----------------------------------------------------------------------------

_SQL_SCHEMA = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
CREATE TABLE IF NOT EXISTS events (
  seq         INTEGER PRIMARY KEY AUTOINCREMENT,
  kind        TEXT NOT NULL,
  project_id  INTEGER NOT NULL,
  timestamp   INTEGER NOT NULL,
  data        BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_project ON events(project_id, seq);
"""


class SqliteEventLog:
    def __init__(self, path: str) -> None:
        self._path = os.path.abspath(path) if path != ":memory:" else ":memory:"
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.executescript(_SQL_SCHEMA)
        self._conn.commit()
        self._lock = threading.RLock()

    def __enter__(self) -> "SqliteEventLog":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def append(self, kind: EventKind, project_id: int, data: Dict[str, Any], *, timestamp: int) -> Event:
        kind = EventKind(kind)
        blob = dumps(dict(data))
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO events(kind, project_id, timestamp, data) VALUES(?,?,?,?)",
                (kind.value, int(project_id), int(timestamp), blob),
            )
            seq = int(cur.lastrowid)
        log.debug("event %d %s project=%d", seq, kind.value, project_id)
        return Event(seq=seq, kind=kind, project_id=int(project_id), timestamp=int(timestamp), data=dict(data))

    def _rows_to_events(self, rows) -> List[Event]:
        return [
            Event(seq=int(seq), kind=EventKind(kind), project_id=int(pid), timestamp=int(ts), data=loads(blob))
            for seq, kind, pid, ts, blob in rows
        ]

    def events(self, *, after_seq: int = 0, limit: Optional[int] = None) -> Iterator[Event]:
        sql = "SELECT seq, kind, project_id, timestamp, data FROM events WHERE seq > ? ORDER BY seq"
        args: tuple = (int(after_seq),)
        if limit is not None:
            sql += " LIMIT ?"
            args = (int(after_seq), int(limit))
        with self._lock:
            rows = self._conn.execute(sql, args).fetchall()
        yield from self._rows_to_events(rows)

    def for_project(self, project_id: int) -> List[Event]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT seq, kind, project_id, timestamp, data FROM events WHERE project_id = ? ORDER BY seq",
                (int(project_id),),
            ).fetchall()
        return self._rows_to_events(rows)

    def last_seq(self) -> int:
        with self._lock:
            (n,) = self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM events").fetchone()
        return int(n)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = [
    "EventKind",
    "Event",
    "EventLog",
    "MemoryEventLog",
    "SqliteEventLog",
    "open_event_log",
]

"""
qfund.store
===========

Persistence for the ledger:

- **types**: entity records (`Project`, `Contribution`, `RevealedProject`,
  `DecryptionRequest`) and the Ciphertext Store key layout
- **kv**: `CiphertextStore` with memory and SQLite backends
- **events**: append-only `EventLog` used for audit and replay
"""

from .events import Event, EventKind, EventLog, MemoryEventLog, SqliteEventLog, open_event_log
from .kv import CiphertextStore, MemoryStore, SqliteStore, open_store
from .types import (
    REVEAL_FIELDS,
    Contribution,
    DecryptionRequest,
    Project,
    RevealedProject,
    RevealState,
    ReviewStatus,
)

__all__ = [
    "CiphertextStore",
    "MemoryStore",
    "SqliteStore",
    "open_store",
    "Event",
    "EventKind",
    "EventLog",
    "MemoryEventLog",
    "SqliteEventLog",
    "open_event_log",
    "REVEAL_FIELDS",
    "Project",
    "Contribution",
    "RevealedProject",
    "DecryptionRequest",
    "RevealState",
    "ReviewStatus",
]

"""
qfund.locks
-----------

Keyed re-entrant locks. Mutations are serialized per project and per
accumulator key rather than behind one global lock.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """Lazily created `threading.RLock` per key; locks are never evicted."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[bytes, threading.RLock] = {}

    def lock(self, key: bytes) -> threading.RLock:
        k = bytes(key)
        with self._guard:
            lk = self._locks.get(k)
            if lk is None:
                lk = self._locks[k] = threading.RLock()
            return lk

    @contextmanager
    def hold(self, *keys: bytes) -> Iterator[None]:
        """Acquire the locks for `keys` in the order given."""
        with ExitStack() as stack:
            for k in keys:
                stack.enter_context(self.lock(k))
            yield


__all__ = ["KeyedLocks"]

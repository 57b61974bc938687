"""
qfund.accumulator
-----------------

Homomorphic Accumulator: wraps the FHE engine and maintains named running
encrypted sums in the Ciphertext Store.

Rules
~~~~~
- Every accumulation is an `add`; there is no replace. Running sums never
  decrease.
- A running sum must be explicitly initialized with `init(key)` (which writes
  `zero()`) before the first accumulation. Accumulating into an absent key
  raises `UninitializedAccumulator`.
- Read-modify-write happens under the key's lock, so concurrent contributors
  cannot lose an update.

The ledger keeps three kinds of sums: the per-project encrypted total, the
per-project Σ sqrt(amount), and the per-contributor Σ sqrt(amount) across
every project the contributor funds.
"""

from __future__ import annotations

import logging
from typing import Optional

from qfund.errors import NotFound, UninitializedAccumulator
from qfund.fhe.engine import Ciphertext, FheEngine
from qfund.locks import KeyedLocks
from qfund.store.kv import CiphertextStore

log = logging.getLogger(__name__)


class HomomorphicAccumulator:
    def __init__(self, engine: FheEngine, store: CiphertextStore, *, locks: Optional[KeyedLocks] = None) -> None:
        self.engine = engine
        self._store = store
        self._locks = locks or KeyedLocks()

    # ------------------------------------------------------------------ #
    # Engine delegation
    # ------------------------------------------------------------------ #

    def zero(self) -> Ciphertext:
        return self.engine.zero()

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self.engine.add(a, b)

    def sqrt_approx(self, a: Ciphertext) -> Ciphertext:
        return self.engine.sqrt_approx(a)

    def square(self, a: Ciphertext) -> Ciphertext:
        return self.engine.square(a)

    # ------------------------------------------------------------------ #
    # Running sums
    # ------------------------------------------------------------------ #

    def is_initialized(self, key: bytes) -> bool:
        return self._store.has(key)

    def init(self, key: bytes) -> bool:
        """
        Initialize `key` to zero() if absent. Returns True if it was created.
        """
        with self._locks.lock(key):
            if self._store.has(key):
                return False
            self._store.put(key, {"ct": self.zero()})
        log.debug("initialized accumulator %s", key.decode("utf-8", "replace"))
        return True

    def read(self, key: bytes) -> Ciphertext:
        try:
            return bytes(self._store.get(key)["ct"])
        except NotFound:
            raise UninitializedAccumulator(key) from None

    def combine(self, key: bytes, value: Ciphertext) -> Ciphertext:
        """
        Compute `read(key) + value` without writing it.

        Callers that batch several sums into one atomic store write must hold
        the key's lock from `combine` until the batch is written.
        """
        return self.add(self.read(key), value)

    def accumulate(self, key: bytes, value: Ciphertext) -> Ciphertext:
        with self._locks.lock(key):
            new = self.combine(key, value)
            self._store.put(key, {"ct": new})
        return new


__all__ = ["HomomorphicAccumulator"]

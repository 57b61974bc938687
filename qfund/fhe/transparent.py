"""
qfund.fhe.transparent
---------------------

Transparent development engine: a decrypt-everything stand-in for a real FHE
backend. It provides **no confidentiality** and exists so the ledger, its
tests and the `qfund simulate` CLI can run end to end on a laptop.

Handles
~~~~~~~
A handle is canonical CBOR of:

    {"t": "qfund/dev-ct/v1", "v": <int|str>, "s": <scale bits>, "n": <8-byte nonce>}

Integers are fixed-point with `s` fractional bits (CKKS-style scale). The
random nonce makes two encryptions of the same plaintext differ.

- add:         aligns scales, adds.
- sqrt_approx: integer fixed-point sqrt with `sqrt_precision_bits` fractional
               bits; error < 2**-sqrt_precision_bits per term.
- square:      squares the value, doubling the scale.
- decrypt:     rounds half-up back to an integer.

Oracle
~~~~~~
`request_async_decryption` only queues the request. `deliver(request_id)`
decrypts, signs and invokes the registered callback, standing in for the
out-of-band threshold decryption network. Proofs are
HMAC-SHA3-256(key, request_id || sha3_256(payload)).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import math
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from qfund.cbor.codec import CBORError, dumps, loads
from qfund.config import EngineConfig
from qfund.errors import EngineError, UnknownRequest
from qfund.fhe.engine import Ciphertext, DecryptionCallback

log = logging.getLogger(__name__)

HANDLE_TAG = "qfund/dev-ct/v1"
REQUEST_DOMAIN_TAG = b"qfund/dev-oracle.request_id/v1"


@dataclass(frozen=True, slots=True)
class _Plain:
    value: Any
    scale: int = 0


@dataclass(frozen=True, slots=True)
class PendingDecryption:
    request_id: bytes
    handles: Tuple[Ciphertext, ...]
    callback: DecryptionCallback


class TransparentEngine:
    """
    Development FHE engine with a built-in asynchronous decryption oracle.

    Parameters
    ----------
    sqrt_precision_bits : int
        Fractional bits kept by `sqrt_approx`.
    proof_key : bytes
        HMAC key shared by the oracle (signing) and the verifier.
    """

    name = "transparent-dev"

    def __init__(self, *, sqrt_precision_bits: int = 16, proof_key: bytes = b"qfund-devnet-oracle-key") -> None:
        if sqrt_precision_bits < 0:
            raise ValueError("sqrt_precision_bits must be non-negative")
        self.sqrt_precision_bits = int(sqrt_precision_bits)
        self._key = bytes(proof_key)
        self._lock = threading.Lock()
        self._counter = 0
        self._pending: Dict[bytes, PendingDecryption] = {}

    @classmethod
    def from_config(cls, cfg: EngineConfig) -> "TransparentEngine":
        return cls(sqrt_precision_bits=cfg.sqrt_precision_bits, proof_key=cfg.dev_proof_key.encode("utf-8"))

    # ------------------------------------------------------------------ #
    # Handles
    # ------------------------------------------------------------------ #

    def _wrap(self, value: Any, scale: int = 0) -> Ciphertext:
        return dumps({"t": HANDLE_TAG, "v": value, "s": int(scale), "n": os.urandom(8)})

    def _unwrap(self, handle: Ciphertext) -> _Plain:
        if not isinstance(handle, (bytes, bytearray)):
            raise EngineError("ciphertext handle must be bytes")
        try:
            m = loads(handle)
        except CBORError as e:
            raise EngineError("malformed ciphertext handle") from e
        if not isinstance(m, dict) or m.get("t") != HANDLE_TAG:
            raise EngineError("handle was not issued by this engine")
        return _Plain(value=m["v"], scale=int(m.get("s", 0)))

    def _unwrap_int(self, handle: Ciphertext) -> _Plain:
        p = self._unwrap(handle)
        if isinstance(p.value, bool) or not isinstance(p.value, int):
            raise EngineError("arithmetic on a non-integer ciphertext")
        return p

    # ------------------------------------------------------------------ #
    # Homomorphic operations
    # ------------------------------------------------------------------ #

    def encrypt(self, plaintext: Any) -> Ciphertext:
        if isinstance(plaintext, bool) or not isinstance(plaintext, (int, str)):
            raise EngineError(f"cannot encrypt {type(plaintext).__name__}")
        return self._wrap(plaintext)

    def zero(self) -> Ciphertext:
        return self._wrap(0)

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        pa, pb = self._unwrap_int(a), self._unwrap_int(b)
        scale = max(pa.scale, pb.scale)
        va = pa.value << (scale - pa.scale)
        vb = pb.value << (scale - pb.scale)
        return self._wrap(va + vb, scale)

    def sqrt_approx(self, a: Ciphertext) -> Ciphertext:
        p = self._unwrap_int(a)
        if p.value < 0:
            raise EngineError("sqrt of a negative ciphertext")
        shift = 2 * self.sqrt_precision_bits - p.scale
        v = p.value << shift if shift >= 0 else p.value >> -shift
        return self._wrap(math.isqrt(v), self.sqrt_precision_bits)

    def square(self, a: Ciphertext) -> Ciphertext:
        p = self._unwrap_int(a)
        return self._wrap(p.value * p.value, 2 * p.scale)

    def decrypt(self, handle: Ciphertext) -> Any:
        """Test/dev helper: plaintext behind a handle (integers rounded half-up)."""
        p = self._unwrap(handle)
        if isinstance(p.value, int) and p.scale > 0:
            return (p.value + (1 << (p.scale - 1))) >> p.scale
        return p.value

    # ------------------------------------------------------------------ #
    # Asynchronous decryption oracle
    # ------------------------------------------------------------------ #

    def request_async_decryption(self, handles: Sequence[Ciphertext], callback: DecryptionCallback) -> bytes:
        hs = tuple(bytes(h) for h in handles)
        for h in hs:
            self._unwrap(h)
        with self._lock:
            self._counter += 1
            digest = hashlib.sha3_256(dumps(list(hs))).digest()
            request_id = hashlib.sha3_256(
                REQUEST_DOMAIN_TAG + self._counter.to_bytes(8, "big") + digest
            ).digest()
            self._pending[request_id] = PendingDecryption(request_id, hs, callback)
        log.debug("queued decryption request %s (%d handles)", request_id.hex()[:16], len(hs))
        return request_id

    def pending_requests(self) -> List[bytes]:
        with self._lock:
            return list(self._pending)

    def sign(self, request_id: bytes, payload: bytes) -> bytes:
        msg = bytes(request_id) + hashlib.sha3_256(bytes(payload)).digest()
        return hmac.new(self._key, msg, hashlib.sha3_256).digest()

    def verify_decryption_proof(self, request_id: bytes, payload: bytes, proof: bytes) -> bool:
        if not isinstance(proof, (bytes, bytearray)):
            return False
        return hmac.compare_digest(self.sign(request_id, payload), bytes(proof))

    def build_response(self, request_id: bytes) -> Tuple[bytes, bytes, bytes]:
        """
        Decrypt a queued request without delivering it.

        Returns (request_id, payload, proof) as the callback would receive them.
        """
        with self._lock:
            pending = self._pending.get(bytes(request_id))
        if pending is None:
            raise UnknownRequest(request_id)
        payload = dumps([self.decrypt(h) for h in pending.handles])
        return pending.request_id, payload, self.sign(pending.request_id, payload)

    def deliver(self, request_id: bytes) -> Any:
        """
        Fulfil a queued request: decrypt, sign and invoke its callback.
        The request leaves the oracle queue whatever the callback outcome.
        """
        rid, payload, proof = self.build_response(request_id)
        with self._lock:
            pending = self._pending.pop(rid)
        return pending.callback(rid, payload, proof)

    def deliver_all(self) -> int:
        n = 0
        for rid in self.pending_requests():
            self.deliver(rid)
            n += 1
        return n

    def drop(self, request_id: bytes) -> Optional[PendingDecryption]:
        with self._lock:
            return self._pending.pop(bytes(request_id), None)


__all__ = ["TransparentEngine", "PendingDecryption", "HANDLE_TAG"]

"""
qfund.fhe.engine
----------------

The narrow interface through which the ledger consumes an external FHE
engine. The ledger never inspects or branches on the plaintext behind a
handle; it only combines handles and asks the oracle to decrypt.

An engine supplies:

    encrypt(plaintext) -> handle          (normally done by the submitting party)
    zero() -> handle
    add(a, b) -> handle
    sqrt_approx(a) -> handle
    square(a) -> handle
    request_async_decryption(handles, callback) -> request_id
    verify_decryption_proof(request_id, payload, proof) -> bool

`request_async_decryption` returns immediately. The engine later invokes
`callback(request_id, payload, proof)`, possibly from another thread, where
`payload` is canonical CBOR of the decrypted values in request order.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, Sequence, runtime_checkable

Ciphertext = bytes

DecryptionCallback = Callable[[bytes, bytes, bytes], Any]


@runtime_checkable
class FheEngine(Protocol):
    name: str

    def encrypt(self, plaintext: Any) -> Ciphertext: ...

    def zero(self) -> Ciphertext: ...

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext: ...

    def sqrt_approx(self, a: Ciphertext) -> Ciphertext: ...

    def square(self, a: Ciphertext) -> Ciphertext: ...

    def request_async_decryption(
        self, handles: Sequence[Ciphertext], callback: DecryptionCallback
    ) -> bytes:
        """
        Queue `handles` for decryption and return the request id.

        `callback` must not be invoked before this method returns, and never
        synchronously from inside it: the caller records the request id only
        after the call, so an early callback is rejected as an unknown request.
        """
        ...

    def verify_decryption_proof(self, request_id: bytes, payload: bytes, proof: bytes) -> bool: ...


__all__ = ["Ciphertext", "DecryptionCallback", "FheEngine"]

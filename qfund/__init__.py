"""
qfund
-----

Encrypted contribution ledger and quadratic-funding settlement engine.

Contributions arrive as ciphertext handles produced by an external FHE engine.
The ledger accumulates them homomorphically, derives the quadratic-funding
matching score on ciphertexts once a project closes, and reveals a project's
encrypted fields exactly once through a proof-gated, asynchronous decryption
oracle.

Example (development engine, no confidentiality):

    from qfund.fhe.transparent import TransparentEngine
    from qfund.ledger import Ledger

    engine = TransparentEngine()
    ledger = Ledger.in_memory(engine)
"""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__"]

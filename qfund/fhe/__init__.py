"""
qfund.fhe
=========

FHE engine boundary.

- **engine**: `FheEngine` protocol consumed by the ledger.
- **transparent**: `TransparentEngine`, a development engine and
  decrypt-everything test double (no confidentiality).
"""

from .engine import Ciphertext, DecryptionCallback, FheEngine
from .transparent import TransparentEngine

__all__ = ["Ciphertext", "DecryptionCallback", "FheEngine", "TransparentEngine"]

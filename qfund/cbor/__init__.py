"""
qfund.cbor
==========

Canonical CBOR helpers shared by the store, event log and dev engine.
"""

from .codec import CBORError, decode, dumps, encode, loads

__all__ = ["dumps", "loads", "encode", "decode", "CBORError"]

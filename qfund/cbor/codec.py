"""
qfund.cbor.codec
================

Canonical CBOR encode/decode helpers used for:

- Ciphertext Store records and event-log entries
- Development-engine ciphertext envelopes and decryption payloads

Canonical map ordering (RFC 8949 "core deterministic encoding") and shortest
integer encodings make byte strings stable, so digests over them (request ids,
proofs) are reproducible across processes.

Public API
----------
dumps(obj) -> bytes
loads(data: (bytes|bytearray|memoryview)) -> Any

Notes
-----
* Mapping keys MUST be str | int | bytes. Other key types are rejected.
* Dataclasses and Enums are converted to plain Python types before encoding.
"""

from __future__ import annotations

from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Union

import cbor2


class CBORError(Exception):
    """Raised for canonical CBOR violations or encode/decode failures."""


_KeyType = Union[str, int, bytes]


def _is_key_type(k: Any) -> bool:
    return isinstance(k, (str, int, bytes))


def _to_plain(obj: Any) -> Any:
    """Convert dataclasses/Enums/bytearray/memoryview etc. to plain types."""
    # Enums first: str/int-backed enums must encode as their plain value.
    if isinstance(obj, Enum):
        return _to_plain(obj.value)
    if obj is None or isinstance(obj, (bool, int, float, str, bytes)):
        return obj
    if isinstance(obj, (bytearray, memoryview)):
        return bytes(obj)
    if is_dataclass(obj):
        return {k: _to_plain(v) for k, v in asdict(obj).items()}
    if isinstance(obj, Mapping):
        out: Dict[_KeyType, Any] = {}
        for k, v in obj.items():
            if not _is_key_type(k):
                raise CBORError(
                    f"Non-canonical mapping key type {type(k).__name__}; "
                    "only str|int|bytes are allowed"
                )
            out[k] = _to_plain(v)
        return out
    if isinstance(obj, (tuple, list)):
        return [_to_plain(x) for x in obj]
    raise CBORError(f"cannot encode {type(obj).__name__} as canonical CBOR")


def dumps(obj: Any) -> bytes:
    """
    Encode to canonical CBOR bytes.
    """
    plain = _to_plain(obj)
    try:
        return cbor2.dumps(plain, canonical=True)
    except (cbor2.CBOREncodeError, TypeError, ValueError) as e:
        raise CBORError(f"canonical encode failed: {e}") from e


def loads(data: Union[bytes, bytearray, memoryview]) -> Any:
    """
    Decode CBOR bytes into standard Python types. Bytes stay `bytes`.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise CBORError("loads() expects bytes-like input")
    try:
        return cbor2.loads(bytes(data))
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError) as e:
        raise CBORError(f"CBOR decode failed: {e}") from e


encode = dumps
decode = loads

__all__ = ["dumps", "loads", "encode", "decode", "CBORError"]

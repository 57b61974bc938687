from dataclasses import dataclass

import pytest

from qfund.cbor.codec import CBORError, dumps, loads
from qfund.store.events import EventKind


@dataclass
class _Rec:
    name: str
    blob: bytes


def test_map_key_order_is_canonical():
    assert dumps({"b": 1, "a": 2}) == dumps({"a": 2, "b": 1})


def test_enums_and_dataclasses_become_plain():
    assert loads(dumps({"kind": EventKind.VOTE_CAST})) == {"kind": "VoteCast"}
    assert loads(dumps(_Rec("x", bytearray(b"\x01")))) == {"name": "x", "blob": b"\x01"}


def test_tuples_encode_as_lists():
    assert loads(dumps((1, "two", None))) == [1, "two", None]


def test_bad_key_type_is_rejected():
    with pytest.raises(CBORError):
        dumps({(1, 2): "tuple key"})


def test_unencodable_value_is_rejected():
    with pytest.raises(CBORError):
        dumps({"v": object()})


@pytest.mark.parametrize("data", [b"", b"\xff", b"\x5a\x00"])
def test_garbage_fails_to_decode(data):
    with pytest.raises(CBORError):
        loads(data)


def test_loads_requires_bytes():
    with pytest.raises(CBORError):
        loads("a0")

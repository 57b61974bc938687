import pytest

from qfund.cbor.codec import dumps, loads
from qfund.config import EngineConfig
from qfund.errors import EngineError, UnknownRequest
from qfund.fhe.engine import FheEngine
from qfund.fhe.transparent import TransparentEngine


def test_satisfies_engine_protocol(engine):
    assert isinstance(engine, FheEngine)


def test_encryptions_of_equal_values_differ(engine):
    a, b = engine.encrypt(7), engine.encrypt(7)
    assert a != b
    assert engine.decrypt(a) == engine.decrypt(b) == 7


@pytest.mark.parametrize("bad", [True, 1.5, b"raw", None, [1]])
def test_encrypt_rejects_unsupported_plaintexts(engine, bad):
    with pytest.raises(EngineError):
        engine.encrypt(bad)


def test_add_and_zero(engine):
    total = engine.zero()
    for v in (1, 2, 3):
        total = engine.add(total, engine.encrypt(v))
    assert engine.decrypt(total) == 6


def test_add_aligns_scales(engine):
    root = engine.sqrt_approx(engine.encrypt(9))  # 3 at scale 16
    assert engine.decrypt(engine.add(root, engine.encrypt(2))) == 5


@pytest.mark.parametrize("n", [0, 1, 4, 9, 144, 10 ** 12])
def test_sqrt_of_perfect_squares_is_exact(engine, n):
    assert engine.decrypt(engine.square(engine.sqrt_approx(engine.encrypt(n)))) == n


def test_sqrt_error_is_bounded_by_precision():
    eng = TransparentEngine(sqrt_precision_bits=20)
    root = eng.sqrt_approx(eng.encrypt(2))
    raw = loads(root)
    assert raw["s"] == 20
    assert abs(raw["v"] / (1 << 20) - 2 ** 0.5) < 2 ** -20


def test_sqrt_of_negative_is_rejected(engine):
    with pytest.raises(EngineError):
        engine.sqrt_approx(engine.encrypt(-4))


def test_arithmetic_on_strings_is_rejected(engine):
    with pytest.raises(EngineError):
        engine.add(engine.encrypt("a"), engine.zero())


@pytest.mark.parametrize("handle", [b"", b"\xff", dumps({"t": "other", "v": 1}), "str"])
def test_foreign_handles_are_rejected(engine, handle):
    with pytest.raises(EngineError):
        engine.add(handle, engine.zero())


def test_request_ids_are_unique_per_request(engine):
    handles = [engine.encrypt(1)]
    r1 = engine.request_async_decryption(handles, lambda *a: None)
    r2 = engine.request_async_decryption(handles, lambda *a: None)
    assert r1 != r2
    assert len(r1) == 32
    assert engine.pending_requests() == [r1, r2]


def test_deliver_decrypts_signs_and_dequeues(engine):
    received = []
    rid = engine.request_async_decryption(
        [engine.encrypt("Plaza"), engine.encrypt(1000)], lambda *args: received.append(args)
    )

    engine.deliver(rid)

    ((got_rid, payload, proof),) = received
    assert got_rid == rid
    assert loads(payload) == ["Plaza", 1000]
    assert engine.verify_decryption_proof(rid, payload, proof)
    assert engine.pending_requests() == []
    with pytest.raises(UnknownRequest):
        engine.deliver(rid)


def test_deliver_all(engine):
    seen = []
    for v in (1, 2, 3):
        engine.request_async_decryption([engine.encrypt(v)], lambda rid, p, pr: seen.append(loads(p)))
    assert engine.deliver_all() == 3
    assert sorted(seen) == [[1], [2], [3]]


def test_drop_forgets_request(engine):
    rid = engine.request_async_decryption([engine.zero()], lambda *a: None)
    assert engine.drop(rid) is not None
    assert engine.drop(rid) is None
    with pytest.raises(UnknownRequest):
        engine.build_response(rid)


def test_proof_binds_request_and_payload(engine):
    rid_a, rid_b = b"\x01" * 32, b"\x02" * 32
    proof = engine.sign(rid_a, b"payload")
    assert engine.verify_decryption_proof(rid_a, b"payload", proof)
    assert not engine.verify_decryption_proof(rid_b, b"payload", proof)
    assert not engine.verify_decryption_proof(rid_a, b"payload!", proof)
    assert not engine.verify_decryption_proof(rid_a, b"payload", None)


def test_from_config_uses_precision_and_key():
    eng = TransparentEngine.from_config(EngineConfig(sqrt_precision_bits=8, dev_proof_key="k"))
    other = TransparentEngine(proof_key=b"k")
    assert eng.sqrt_precision_bits == 8
    assert other.verify_decryption_proof(b"r", b"p", eng.sign(b"r", b"p"))


def test_negative_precision_is_rejected():
    with pytest.raises(ValueError):
        TransparentEngine(sqrt_precision_bits=-1)

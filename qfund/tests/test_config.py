import json

import pytest

from qfund.config import Config, load_config

_ENV_VARS = [
    "QFUND_CONFIG",
    "QFUND_STORE_URL",
    "QFUND_EVENTS_URL",
    "QFUND_SQRT_PRECISION_BITS",
    "QFUND_DEV_PROOF_KEY",
    "QFUND_REVEAL_TIMEOUT",
    "QFUND_MAX_CIPHERTEXT_BYTES",
    "QFUND_MAX_PAYLOAD_BYTES",
    "QFUND_MAX_PAGE_SIZE",
    "QFUND_LOG_LEVEL",
    "QFUND_METRICS_PORT",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = load_config()
    assert cfg == Config()
    assert cfg.store.store_url == "memory:"
    assert cfg.engine.sqrt_precision_bits == 16
    assert cfg.reveal.timeout_s == 0.0
    assert cfg.limits.max_page_size == 500


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("QFUND_STORE_URL", "sqlite:///ledger.db")
    monkeypatch.setenv("QFUND_SQRT_PRECISION_BITS", "24")
    monkeypatch.setenv("QFUND_REVEAL_TIMEOUT", "10m")
    monkeypatch.setenv("QFUND_MAX_CIPHERTEXT_BYTES", "128KiB")
    monkeypatch.setenv("QFUND_MAX_PAYLOAD_BYTES", "2MB")
    monkeypatch.setenv("QFUND_LOG_LEVEL", "debug")

    cfg = load_config()

    assert cfg.store.store_url == "sqlite:///ledger.db"
    assert cfg.engine.sqrt_precision_bits == 24
    assert cfg.reveal.timeout_s == 600.0
    assert cfg.limits.max_ciphertext_bytes == 128 * 1024
    assert cfg.limits.max_payload_bytes == 2_000_000
    assert cfg.log_level == "DEBUG"


def test_unparseable_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("QFUND_MAX_PAGE_SIZE", "lots")
    monkeypatch.setenv("QFUND_REVEAL_TIMEOUT", "soon")
    cfg = load_config()
    assert cfg.limits.max_page_size == 500
    assert cfg.reveal.timeout_s == 0.0


def test_yaml_file_then_env(tmp_path, monkeypatch):
    path = tmp_path / "qfund.yaml"
    path.write_text(
        "store:\n"
        "  store_url: sqlite:///from-file.db\n"
        "reveal:\n"
        "  timeout_s: 30\n"
        "log_level: WARNING\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("QFUND_LOG_LEVEL", "ERROR")

    cfg = load_config(path)

    assert cfg.store.store_url == "sqlite:///from-file.db"
    assert cfg.store.events_url == "memory:"
    assert cfg.reveal.timeout_s == 30.0
    assert cfg.log_level == "ERROR"


def test_json_file_via_env(tmp_path, monkeypatch):
    path = tmp_path / "qfund.json"
    path.write_text(json.dumps({"limits": {"max_page_size": 25}}), encoding="utf-8")
    monkeypatch.setenv("QFUND_CONFIG", str(path))

    assert load_config().limits.max_page_size == 25


def test_missing_file_uses_defaults(tmp_path):
    assert load_config(tmp_path / "nope.yaml") == Config()


def test_overrides_win_and_values_are_clamped():
    cfg = load_config(
        overrides={
            "engine": {"sqrt_precision_bits": 1000},
            "limits": {"max_ciphertext_bytes": 1, "max_page_size": 0},
            "reveal": {"timeout_s": -5},
            "log_level": "LOUD",
            "metrics_port": 70000,
        }
    )
    assert cfg.engine.sqrt_precision_bits == 64
    assert cfg.limits.max_ciphertext_bytes == 64
    assert cfg.limits.max_page_size == 1
    assert cfg.reveal.timeout_s == 0.0
    assert cfg.log_level == "INFO"
    assert cfg.metrics_port == 65_535


def test_to_dict_roundtrips_through_overrides():
    cfg = load_config(overrides={"store": {"events_url": "sqlite:///ev.db"}})
    assert load_config(overrides=cfg.to_dict()) == cfg

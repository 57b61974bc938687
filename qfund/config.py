"""
qfund.config
------------

Storage locations, engine parameters, reveal policy and safety limits for the
ledger.

This module is dependency-light and safe to import early. It exposes:

- Dataclasses with sane defaults:
    * StoreConfig: Ciphertext Store and event log URLs.
    * EngineConfig: development engine parameters.
    * RevealPolicy: decryption-request timeout.
    * SecurityLimits: ciphertext/payload size ceilings, page sizes.
    * Config: the whole bundle (plus log level and metrics port).

- load_config(): build Config from defaults ← file ← environment ← overrides.

Environment variables (prefix: QFUND_*)
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Storage ("memory:" | "sqlite:///path/to/file.db" | "sqlite:///:memory:")
QFUND_STORE_URL=sqlite:///var/lib/qfund/ledger.db
QFUND_EVENTS_URL=sqlite:///var/lib/qfund/events.db

# Development engine
QFUND_SQRT_PRECISION_BITS=16
QFUND_DEV_PROOF_KEY=qfund-devnet-oracle-key

# Reveal policy ("0" disables; supports "ms/s/m" suffix)
QFUND_REVEAL_TIMEOUT=10m

# Limits (numbers accept "KB/MB/KiB/MiB" style suffixes)
QFUND_MAX_CIPHERTEXT_BYTES=64KiB
QFUND_MAX_PAYLOAD_BYTES=1MiB
QFUND_MAX_PAGE_SIZE=500

# Ambient
QFUND_LOG_LEVEL=INFO
QFUND_METRICS_PORT=0

# Optional config file (JSON or YAML). Env still wins.
QFUND_CONFIG=/etc/qfund/config.yaml
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

log = logging.getLogger(__name__)

# -----------------------------
# Helpers: parsing & validation
# -----------------------------

_SIZE_RE = re.compile(
    r"^\s*(?P<num>\d+)(?P<unit>kb|kib|mb|mib|gb|gib|b)?\s*$", re.IGNORECASE
)
_DUR_RE = re.compile(r"^\s*(?P<num>\d+)(?P<unit>ms|s|m)?\s*$", re.IGNORECASE)

_UNIT_MUL = {
    "b": 1,
    "kb": 1000,
    "kib": 1024,
    "mb": 1000**2,
    "mib": 1024**2,
    "gb": 1000**3,
    "gib": 1024**3,
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    return v if v is not None and v != "" else default


def _parse_int(v: Optional[str], default: int) -> int:
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _parse_bytes(v: Optional[str], default: int) -> int:
    if v is None:
        return default
    m = _SIZE_RE.match(v)
    if not m:
        return default
    unit = (m.group("unit") or "b").lower()
    return int(m.group("num")) * _UNIT_MUL[unit]


def _parse_duration_seconds(v: Optional[str], default: float) -> float:
    if v is None:
        return default
    m = _DUR_RE.match(v)
    if not m:
        return default
    num = float(m.group("num"))
    unit = (m.group("unit") or "s").lower()
    if unit == "ms":
        return num / 1000.0
    if unit == "m":
        return num * 60.0
    return num


def _load_file_config(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        log.warning("config file %s not found; using defaults", path)
        return {}
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


# -----------------------------
# Dataclasses
# -----------------------------


@dataclass(frozen=True)
class StoreConfig:
    store_url: str = "memory:"
    events_url: str = "memory:"


@dataclass(frozen=True)
class EngineConfig:
    sqrt_precision_bits: int = 16  # fractional bits of the dev engine's fixed-point sqrt
    dev_proof_key: str = "qfund-devnet-oracle-key"


@dataclass(frozen=True)
class RevealPolicy:
    timeout_s: float = 0.0  # 0 → requests stay pending until a callback arrives


@dataclass(frozen=True)
class SecurityLimits:
    max_ciphertext_bytes: int = 65_536
    max_payload_bytes: int = 1_048_576
    max_page_size: int = 500


@dataclass(frozen=True)
class Config:
    store: StoreConfig = dataclasses.field(default_factory=StoreConfig)
    engine: EngineConfig = dataclasses.field(default_factory=EngineConfig)
    reveal: RevealPolicy = dataclasses.field(default_factory=RevealPolicy)
    limits: SecurityLimits = dataclasses.field(default_factory=SecurityLimits)
    log_level: str = "INFO"
    metrics_port: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store": dataclasses.asdict(self.store),
            "engine": dataclasses.asdict(self.engine),
            "reveal": dataclasses.asdict(self.reveal),
            "limits": dataclasses.asdict(self.limits),
            "log_level": self.log_level,
            "metrics_port": self.metrics_port,
        }


# -----------------------------
# Loader
# -----------------------------


def _apply_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: keys in overrides replace keys in base; dictionaries merge 1-level deep.
    """
    out = dict(base)
    for k, v in overrides.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            nv = dict(out[k])
            nv.update(v)
            out[k] = nv
        else:
            out[k] = v
    return out


def load_config(
    file_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None
) -> Config:
    """
    Build a Config from (defaults) ← file (JSON/YAML) ← environment ← overrides.
    """
    d: Dict[str, Any] = Config().to_dict()

    path_env = _env("QFUND_CONFIG")
    p = file_path or (Path(path_env) if path_env else None)
    if p:
        file_cfg = _load_file_config(Path(p))
        if file_cfg:
            d = _apply_overrides(d, file_cfg)

    store = d.get("store", {})
    engine = d.get("engine", {})
    reveal = d.get("reveal", {})
    limits = d.get("limits", {})

    store.update(
        {
            "store_url": _env("QFUND_STORE_URL", store.get("store_url", StoreConfig.store_url)),
            "events_url": _env("QFUND_EVENTS_URL", store.get("events_url", StoreConfig.events_url)),
        }
    )

    engine.update(
        {
            "sqrt_precision_bits": _parse_int(
                _env("QFUND_SQRT_PRECISION_BITS"),
                engine.get("sqrt_precision_bits", EngineConfig.sqrt_precision_bits),
            ),
            "dev_proof_key": _env(
                "QFUND_DEV_PROOF_KEY", engine.get("dev_proof_key", EngineConfig.dev_proof_key)
            ),
        }
    )

    reveal.update(
        {
            "timeout_s": _parse_duration_seconds(
                _env("QFUND_REVEAL_TIMEOUT"), reveal.get("timeout_s", RevealPolicy.timeout_s)
            ),
        }
    )

    limits.update(
        {
            "max_ciphertext_bytes": _parse_bytes(
                _env("QFUND_MAX_CIPHERTEXT_BYTES"),
                limits.get("max_ciphertext_bytes", SecurityLimits.max_ciphertext_bytes),
            ),
            "max_payload_bytes": _parse_bytes(
                _env("QFUND_MAX_PAYLOAD_BYTES"),
                limits.get("max_payload_bytes", SecurityLimits.max_payload_bytes),
            ),
            "max_page_size": _parse_int(
                _env("QFUND_MAX_PAGE_SIZE"),
                limits.get("max_page_size", SecurityLimits.max_page_size),
            ),
        }
    )

    d["store"] = store
    d["engine"] = engine
    d["reveal"] = reveal
    d["limits"] = limits
    d["log_level"] = str(_env("QFUND_LOG_LEVEL", d.get("log_level", "INFO"))).upper()
    d["metrics_port"] = _parse_int(_env("QFUND_METRICS_PORT"), int(d.get("metrics_port", 0)))

    if overrides:
        d = _apply_overrides(d, overrides)

    cfg = Config(
        store=StoreConfig(**d["store"]),
        engine=EngineConfig(**d["engine"]),
        reveal=RevealPolicy(**d["reveal"]),
        limits=SecurityLimits(**d["limits"]),
        log_level=d["log_level"],
        metrics_port=int(d["metrics_port"]),
    )
    return _sanity(cfg)


def _sanity(cfg: Config) -> Config:
    """
    Clamp/validate ranges to safe values; return a potentially adjusted Config.
    """
    bits = max(4, min(64, cfg.engine.sqrt_precision_bits))
    timeout = max(0.0, min(7 * 24 * 3600.0, cfg.reveal.timeout_s))
    max_ct = max(64, min(1 << 24, cfg.limits.max_ciphertext_bytes))
    max_payload = max(1_024, min(1 << 30, cfg.limits.max_payload_bytes))
    page = max(1, min(10_000, cfg.limits.max_page_size))
    level = cfg.log_level if cfg.log_level in _LOG_LEVELS else "INFO"
    port = max(0, min(65_535, cfg.metrics_port))

    return Config(
        store=cfg.store,
        engine=EngineConfig(sqrt_precision_bits=bits, dev_proof_key=cfg.engine.dev_proof_key),
        reveal=RevealPolicy(timeout_s=timeout),
        limits=SecurityLimits(
            max_ciphertext_bytes=max_ct,
            max_payload_bytes=max_payload,
            max_page_size=page,
        ),
        log_level=level,
        metrics_port=port,
    )


__all__ = [
    "StoreConfig",
    "EngineConfig",
    "RevealPolicy",
    "SecurityLimits",
    "Config",
    "load_config",
]

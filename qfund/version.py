"""
qfund.version
-------------

Package version reported by `qfund --version`.

QFUND_GIT_DESCRIBE, when set (e.g. by CI), is appended as a local version
suffix: "0.3.0+gabcdef1".
"""

from __future__ import annotations

import functools
import os

_SEMVER_BASE = "0.3.0"


@functools.lru_cache(maxsize=1)
def version() -> str:
    desc = (os.getenv("QFUND_GIT_DESCRIBE") or "").strip()
    return f"{_SEMVER_BASE}+{desc}" if desc else _SEMVER_BASE


__version__ = version()

__all__ = ["__version__", "version"]

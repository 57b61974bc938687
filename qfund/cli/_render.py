"""
Output helpers shared by the qfund CLI commands.
"""

from __future__ import annotations

import datetime as _dt
import json
import sys
from typing import Any, Dict, List, Sequence

import typer

from qfund.config import Config
from qfund.fhe.transparent import TransparentEngine
from qfund.ledger import Ledger


def open_ledger(cfg: Config) -> Ledger:
    """Ledger over the configured stores, driven by the development engine."""
    return Ledger.from_config(cfg, TransparentEngine.from_config(cfg.engine))


def jsonable(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).hex()
    if isinstance(obj, dict):
        return {str(k): jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [jsonable(v) for v in obj]
    return obj


def fmt_ts(ts: Any) -> str:
    if ts is None:
        return ""
    return _dt.datetime.fromtimestamp(float(ts)).isoformat(timespec="seconds")


def short_hex(b: bytes, n: int = 8) -> str:
    h = bytes(b).hex()
    return h if len(h) <= 2 * n else h[: 2 * n] + "…"


def print_table(rows: List[Dict[str, Any]], columns: Sequence[str], *, empty: str = "(no rows)") -> None:
    if not rows:
        typer.echo(empty)
        return
    widths = {c: len(c) for c in columns}
    for r in rows:
        for c in columns:
            s = "" if r.get(c) is None else str(r.get(c))
            widths[c] = max(widths[c], min(len(s), 120))

    line = "  ".join(f"{c.upper():<{widths[c]}}" for c in columns)
    typer.echo(line)
    typer.echo("-" * len(line))
    for r in rows:
        parts = []
        for c in columns:
            s = "" if r.get(c) is None else str(r.get(c))
            if len(s) > 120:
                s = s[:117] + "..."
            parts.append(f"{s:<{widths[c]}}")
        typer.echo("  ".join(parts))


def emit(obj: Any, as_json: bool, columns: Sequence[str] = ()) -> None:
    if as_json:
        sys.stdout.write(json.dumps(jsonable(obj), separators=(",", ":"), sort_keys=True) + "\n")
    elif isinstance(obj, list):
        print_table(obj, columns)
    else:
        typer.echo(json.dumps(jsonable(obj), indent=2, sort_keys=True, ensure_ascii=False))

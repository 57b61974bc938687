"""
qfund.cli
=========

Unified CLI entrypoint for the encrypted contribution ledger.

Usage:

    python -m qfund.cli --help
    python -m qfund.cli simulate --amount 1 --amount 4 --amount 9
    python -m qfund.cli projects --json
    python -m qfund.cli contributions 1
    python -m qfund.cli stats
    python -m qfund.cli config

Subcommands are discovered from sibling modules. Each module exposes a
`register(app: typer.Typer) -> None` function that attaches its commands to
the root application.

Global options (`--config`, `--log-level`) are applied in the root callback;
the loaded `Config` is handed to subcommands through `ctx.obj`.

Environment:
- QFUND_CLI_MODULES (optional): comma-separated list of extra modules to
  import that also expose `register(app)`.
"""

from __future__ import annotations

import importlib
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer

from qfund.config import load_config
from qfund.metrics import ensure_metrics_server
from qfund.version import version as _qfund_version

log = logging.getLogger(__name__)

__version__ = _qfund_version()

_DEFAULT_MODULES: List[str] = [
    "qfund.cli.simulate",
    "qfund.cli.projects",
    "qfund.cli.show_config",
]


def _iter_cli_modules() -> List[str]:
    mods = list(_DEFAULT_MODULES)
    extra = os.getenv("QFUND_CLI_MODULES", "").strip()
    if extra:
        mods.extend([m.strip() for m in extra.split(",") if m.strip()])
    return mods


def _register_from_module(modname: str, app: typer.Typer) -> None:
    mod = importlib.import_module(modname)
    register = getattr(mod, "register", None)
    if not callable(register):
        raise TypeError(f"{modname} does not expose register(app)")
    register(app)
    log.debug("qfund.cli: registered from %s", modname)


def get_app() -> typer.Typer:
    """
    Build and return the root Typer application for the qfund CLI.
    """
    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        help="qfund: encrypted contribution ledger and quadratic-funding settlement.",
    )

    @app.callback(invoke_without_command=True)
    def _root_callback(
        ctx: typer.Context,
        version: bool = typer.Option(False, "--version", help="Print version and exit."),
        config: Optional[Path] = typer.Option(
            None, "--config", help="JSON or YAML config file (env QFUND_* still applies)."
        ),
        log_level: Optional[str] = typer.Option(
            None, "--log-level", help="Override QFUND_LOG_LEVEL (DEBUG, INFO, ...)."
        ),
    ):
        if version:
            typer.echo(__version__)
            raise typer.Exit(0)
        overrides = {"log_level": log_level.upper()} if log_level else None
        cfg = load_config(config, overrides)
        logging.basicConfig(
            level=getattr(logging, cfg.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        ensure_metrics_server(cfg.metrics_port)
        ctx.obj = cfg

    for modname in _iter_cli_modules():
        _register_from_module(modname, app)

    return app


def main() -> None:
    """
    Console entrypoint. Allows `python -m qfund.cli`.
    """
    get_app()()


if __name__ == "__main__":  # pragma: no cover
    main()

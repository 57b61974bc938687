"""
qfund.cli.show_config
=====================

Print the effective configuration (defaults ← file ← QFUND_* env ← flags).
"""

from __future__ import annotations

import typer

from qfund.cli._render import emit
from qfund.config import Config

COMMAND_NAME = "config"


def config_cmd(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Emit compact JSON."),
) -> None:
    """
    Show the configuration the other commands would run with.
    """
    cfg: Config = ctx.obj
    emit(cfg.to_dict(), json_out)


def register(root_app: typer.Typer) -> None:
    root_app.command(COMMAND_NAME)(config_cmd)

"""
qfund.cli.simulate
==================

Run one project through its whole lifecycle on the development engine:

    submit → contribute (×N) → close → matching → request reveal → callback

and print the decrypted outcome. Handy to sanity-check a configuration or to
see the quadratic effect of splitting a contribution:

    python -m qfund.cli simulate --amount 1 --amount 4 --amount 9   # matching 36
    python -m qfund.cli simulate --amount 14                       # matching 14

The transparent engine provides no confidentiality; never point this command
at a store that holds real ciphertexts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import typer

from qfund.cli._render import emit
from qfund.config import Config
from qfund.errors import LedgerError
from qfund.fhe.transparent import TransparentEngine
from qfund.ledger import Ledger

log = logging.getLogger(__name__)

COMMAND_NAME = "simulate"


def run_simulation(
    cfg: Config,
    amounts: List[int],
    *,
    creator: str = "creator",
    title: str = "Community garden",
    description: str = "Raised beds and a tool shed",
    location: str = "Plaza",
    budget: int = 50_000,
) -> Dict[str, Any]:
    engine = TransparentEngine.from_config(cfg.engine)
    ledger = Ledger.from_config(cfg, engine)
    try:
        pid = ledger.submit_project(
            creator,
            engine.encrypt(title),
            engine.encrypt(description),
            engine.encrypt(location),
            engine.encrypt(budget),
        )
        for i, amount in enumerate(amounts):
            ledger.contribute(pid, f"contributor-{i}", engine.encrypt(amount))
        ledger.close_project(pid, creator)

        total = engine.decrypt(ledger.total_contributions(pid))
        matching = engine.decrypt(ledger.get_matching(pid))

        request_id = ledger.request_reveal(pid, creator)
        engine.deliver(request_id)
        revealed = ledger.get_revealed(pid)
    finally:
        ledger.close()

    return {
        "project_id": pid,
        "contributions": list(amounts),
        "total": total,
        "matching": matching,
        "request_id": request_id,
        "revealed": {
            "title": revealed.title,
            "description": revealed.description,
            "location": revealed.location,
            "budget": revealed.budget,
        },
    }


def simulate_cmd(
    ctx: typer.Context,
    amount: Optional[List[int]] = typer.Option(
        None, "--amount", "-a", help="Contribution amount; repeat for several (default: 1 4 9)."
    ),
    title: str = typer.Option("Community garden", "--title"),
    description: str = typer.Option("Raised beds and a tool shed", "--description"),
    location: str = typer.Option("Plaza", "--location"),
    budget: int = typer.Option(50_000, "--budget", min=0),
    json_out: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
) -> None:
    """
    Simulate a project's lifecycle end to end and print the decrypted outcome.
    """
    cfg: Config = ctx.obj
    amounts = list(amount) if amount else [1, 4, 9]
    try:
        result = run_simulation(
            cfg,
            amounts,
            title=title,
            description=description,
            location=location,
            budget=budget,
        )
    except LedgerError as e:
        log.error("simulation failed: %s", e)
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(1)
    emit(result, json_out)


def register(root_app: typer.Typer) -> None:
    root_app.command(COMMAND_NAME)(simulate_cmd)

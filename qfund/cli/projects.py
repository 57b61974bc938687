"""
qfund.cli.projects
==================

Read-only inspection of a ledger's stores.

Examples:
  # First page of projects from the configured store
  QFUND_STORE_URL=sqlite:///ledger.db python -m qfund.cli projects

  # Contributions of project 3 as JSON
  python -m qfund.cli contributions 3 --json

  # Dashboard counters
  python -m qfund.cli stats

  # Event log for one project
  QFUND_EVENTS_URL=sqlite:///events.db python -m qfund.cli events --project 3

Ciphertexts are never decrypted here; handles are shown as short hex prefixes.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import typer

from qfund.cli._render import emit, fmt_ts, open_ledger, short_hex
from qfund.config import Config
from qfund.errors import LedgerError
from qfund.store.events import open_event_log


def projects_cmd(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", min=1, max=10_000, help="Max rows to return."),
    offset: int = typer.Option(0, "--offset", min=0, help="Offset for pagination."),
    json_out: bool = typer.Option(False, "--json", help="Emit machine-readable JSON array."),
) -> None:
    """
    List projects with their funding, review and reveal state.
    """
    cfg: Config = ctx.obj
    ledger = open_ledger(cfg)
    try:
        rows: List[Dict[str, Any]] = [
            {
                "id": p.project_id,
                "creator": p.creator,
                "funding": ledger.gate.funding_state(p).value,
                "review": p.review.value,
                "reveal": ledger.reveal_state(p.project_id).value,
                "contributions": ledger.contribution_count(p.project_id),
                "created_at": fmt_ts(p.created_at),
            }
            for p in ledger.list_projects(limit=limit, offset=offset)
        ]
    finally:
        ledger.close()
    emit(rows, json_out, ["id", "creator", "funding", "review", "reveal", "contributions", "created_at"])


def contributions_cmd(
    ctx: typer.Context,
    project_id: int = typer.Argument(..., min=1, help="Project id."),
    limit: int = typer.Option(50, "--limit", min=1, max=10_000),
    offset: int = typer.Option(0, "--offset", min=0),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """
    List a project's contributions in arrival order.
    """
    cfg: Config = ctx.obj
    ledger = open_ledger(cfg)
    try:
        contribs = ledger.list_contributions(project_id, limit=limit, offset=offset)
    except LedgerError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        ledger.close()
    rows = [
        {
            "index": c.index,
            "contributor": c.contributor,
            "amount": short_hex(c.amount) if not json_out else c.amount,
            "timestamp": fmt_ts(c.timestamp) if not json_out else c.timestamp,
        }
        for c in contribs
    ]
    emit(rows, json_out, ["index", "contributor", "amount", "timestamp"])


def stats_cmd(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """
    Print ledger-wide counters (projects, open, revealed, pending reveals, review).
    """
    cfg: Config = ctx.obj
    ledger = open_ledger(cfg)
    try:
        stats = ledger.stats()
    finally:
        ledger.close()
    emit(asdict(stats), json_out)


def events_cmd(
    ctx: typer.Context,
    project: Optional[int] = typer.Option(None, "--project", min=1, help="Only events of this project."),
    after: int = typer.Option(0, "--after", min=0, help="Only events with a larger sequence number."),
    limit: int = typer.Option(100, "--limit", min=1, max=10_000),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """
    Dump the append-only event log.
    """
    cfg: Config = ctx.obj
    log_ = open_event_log(cfg.store.events_url)
    try:
        if project is not None:
            evs = [e for e in log_.for_project(project) if e.seq > after][:limit]
        else:
            evs = list(log_.events(after_seq=after, limit=limit))
    finally:
        log_.close()
    rows = [
        {
            "seq": e.seq,
            "kind": e.kind.value,
            "project": e.project_id,
            "timestamp": e.timestamp if json_out else fmt_ts(e.timestamp),
            "data": e.data if json_out else ",".join(sorted(e.data)),
        }
        for e in evs
    ]
    emit(rows, json_out, ["seq", "kind", "project", "timestamp", "data"])


def register(root_app: typer.Typer) -> None:
    root_app.command("projects")(projects_cmd)
    root_app.command("contributions")(contributions_cmd)
    root_app.command("stats")(stats_cmd)
    root_app.command("events")(events_cmd)

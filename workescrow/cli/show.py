"""
workescrow show: print escrow state rebuilt from a journal.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click

from workescrow.cli.output import _Color, emit_error, row_info
from workescrow.core.models import ZERO_ADDRESS
from workescrow.core.replay import ReplayEngine


@click.command(name="show")
@click.argument("journal", type=click.Path())
@click.option("--escrow", "escrow_id", type=str, default=None, metavar="ESCROW_ID",
              help="Show only this escrow.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
def show_command(journal: str, escrow_id: Optional[str], as_json: bool) -> None:
    """
    Replay JOURNAL and print the resulting state of each escrow.
    """
    _Color.configure(True)
    fmt = "json" if as_json else "human"
    engine = ReplayEngine()
    try:
        engine.load(Path(journal))
    except (FileNotFoundError, ValueError) as e:
        emit_error(str(e), fmt, quiet=False)
        sys.exit(2)

    escrows = engine.verify().escrows
    if escrow_id is not None:
        if escrow_id not in escrows:
            emit_error(f"Escrow not found in journal: {escrow_id}", fmt, quiet=False)
            sys.exit(1)
        escrows = {escrow_id: escrows[escrow_id]}

    if as_json:
        click.echo(json.dumps({k: s.to_dict() for k, s in escrows.items()}, indent=2))
        return

    for state in escrows.values():
        click.echo()
        click.echo(_Color.bold(f"  {state.escrow_id}"))
        click.echo(row_info("Status", state.status.value))
        click.echo(row_info("Condition", state.condition.value))
        click.echo(row_info("Boss", state.boss))
        click.echo(row_info("Admin", "none" if state.admin == ZERO_ADDRESS else state.admin))
        click.echo(row_info("Worker", state.worker))
        click.echo(row_info("Asset", f"{state.asset_id} x {state.quantity}"))
        click.echo(row_info("Payment", f"{state.payment_amount} (advertised {state.advertised_payment})"))
    click.echo()

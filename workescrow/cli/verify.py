"""
workescrow verify — escrow journal verification.

Usage:
    workescrow verify <journal>                 Human output (default)
    workescrow verify <journal> --format json   Machine-readable JSON
    workescrow verify <journal> --quiet         Exit code only
    workescrow verify <journal> --head HASH     Also check the journal tail

Exit codes:
    0  Journal fully valid (chain, call signatures, guards, state replay)
    1  Journal has violations
    2  Error (file missing, malformed JSON, parse failure)
"""

import json
import sys
from collections import Counter
from pathlib import Path
from typing import Optional

import click

from workescrow.cli.output import _Color, emit_error, row_fail, row_info, row_ok
from workescrow.core.replay import ReplayEngine, ReplaySummary


@click.command(name="verify")
@click.argument("journal", type=click.Path())
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format: human or json.",
)
@click.option("--quiet", is_flag=True, default=False, help="Exit code only (0=valid, 1=invalid, 2=error).")
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
@click.option("--head", "expected_head", type=str, default=None, metavar="HASH",
              help="Expected journal head hash, recorded when the journal was written.")
def verify_command(journal: str, fmt: str, quiet: bool, no_color: bool, expected_head: Optional[str]) -> None:
    """
    Verify an escrow journal: chain, call signatures, guards and state.

    JOURNAL is the path to a .jsonl escrow journal.
    """
    _Color.configure(not no_color)
    fmt = fmt.lower()
    engine = ReplayEngine()

    try:
        engine.load(Path(journal))
    except (FileNotFoundError, ValueError) as e:
        emit_error(str(e), fmt, quiet)
        sys.exit(2)

    summary = engine.verify(expected_head=expected_head)

    if quiet:
        sys.exit(0 if summary.is_valid else 1)

    if fmt == "json":
        click.echo(json.dumps(summary.to_dict(), indent=2))
    else:
        _output_human(summary, Path(journal))

    sys.exit(0 if summary.is_valid else 1)


def _output_human(summary: ReplaySummary, journal_path: Path) -> None:
    bar = "═" * 60
    click.echo()
    click.echo(_Color.bold(f"  {bar}"))
    click.echo(_Color.bold("  workescrow  ·  Journal Verification"))
    click.echo(_Color.bold(f"  {bar}"))
    click.echo()

    click.echo(row_info("Journal", str(journal_path)))
    click.echo(row_info("Events", str(summary.total_events)))
    click.echo(row_info("Escrows", str(len(summary.escrows))))
    click.echo(row_info("Head", summary.head_hash))
    click.echo()

    by_type = Counter(v.violation_type for v in summary.violations)
    chain_breaks = by_type["chain_break"] + by_type["sequence_gap"]

    if chain_breaks:
        click.echo(row_fail("Chain", _Color.red(f"{chain_breaks} break(s) detected")))
    else:
        click.echo(row_ok("Chain", "intact"))

    if summary.invalid_calls:
        click.echo(row_fail(
            "Calls",
            f"{summary.valid_calls} valid  " + _Color.red(f"{summary.invalid_calls} INVALID"),
        ))
    else:
        click.echo(row_ok("Calls", f"{summary.valid_calls} / {summary.total_events} signed by sender"))

    semantic = sum(n for t, n in by_type.items() if t not in ("chain_break", "sequence_gap", "invalid_call"))
    if semantic:
        click.echo(row_fail("Transitions", _Color.red(f"{semantic} violation(s)")))
    else:
        click.echo(row_ok("Transitions", "guards and state replay consistent"))

    if summary.violations:
        click.echo()
        for v in summary.violations[:20]:
            click.echo(f"    [seq {v.at_sequence}] {v.violation_type}: {v.detail}")
        if len(summary.violations) > 20:
            click.echo(_Color.dim(f"    ... {len(summary.violations) - 20} more"))

    click.echo()
    verdict = _Color.green("VALID") if summary.is_valid else _Color.red("INVALID")
    click.echo(f"  Result: {verdict}")
    click.echo()

"""
workescrow/cli/__init__.py

Root click command group, registered in pyproject.toml as:

    [project.scripts]
    workescrow = "workescrow.cli:cli"
"""

import logging

import click

from workescrow.cli.show import show_command
from workescrow.cli.verify import verify_command


@click.group()
@click.version_option(package_name="workescrow")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log at DEBUG level.")
def cli(verbose: bool) -> None:
    """
    workescrow: boss/worker escrow journals.

    \b
    Commands:
      verify    Verify journal chain, call signatures, guards and state.
      show      Print escrow state rebuilt from a journal.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


cli.add_command(verify_command)
cli.add_command(show_command)

"""
Terminal output helpers shared by the workescrow commands.
"""

import json
import sys

import click


class _Color:
    """
    Minimal ANSI color wrapper.
    Auto-disables when not a TTY or --no-color is passed.
    """
    _on: bool = True

    @classmethod
    def configure(cls, enabled: bool) -> None:
        cls._on = enabled and sys.stdout.isatty()

    @classmethod
    def green(cls, s: str) -> str:
        return click.style(s, fg="green") if cls._on else s

    @classmethod
    def red(cls, s: str) -> str:
        return click.style(s, fg="red") if cls._on else s

    @classmethod
    def bold(cls, s: str) -> str:
        return click.style(s, bold=True) if cls._on else s

    @classmethod
    def dim(cls, s: str) -> str:
        return click.style(s, dim=True) if cls._on else s


def row_ok(label: str, value: str) -> str:
    return f"  {_Color.dim(f'{label:<16}')}  {_Color.green('OK  ')}  {value}"


def row_fail(label: str, value: str) -> str:
    return f"  {_Color.dim(f'{label:<16}')}  {_Color.red('FAIL')}  {value}"


def row_info(label: str, value: str) -> str:
    return f"  {_Color.dim(f'{label:<16}')}        {value}"


def emit_error(message: str, fmt: str, quiet: bool) -> None:
    """Report a load/parse error in the requested format."""
    if quiet:
        return
    if fmt == "json":
        click.echo(json.dumps({"valid": False, "error": message}, indent=2))
    else:
        click.echo(_Color.red(f"Error: {message}"), err=True)

"""Human-readable terminal output.

Thin wrappers over ``click.echo``/``click.style`` so every part of the
workflow prints with the same markers. Structured logs go through structlog
separately; nothing here is parsed by other components.
"""

import click


def section(title: str) -> None:
    click.echo()
    click.echo(click.style(title, bold=True))
    click.echo(click.style("-" * len(title), dim=True))


def info(message: str) -> None:
    click.echo(f"  {message}")


def success(message: str) -> None:
    click.echo(f"  {click.style('[OK]', fg='green')} {message}")


def warning(message: str) -> None:
    click.echo(f"  {click.style('[WARN]', fg='yellow')} {message}")


def error(message: str, suggestion: str | None = None) -> None:
    """Print a failure and an optional remediation command."""
    click.echo(f"  {click.style('[FAIL]', fg='red')} {message}", err=True)
    if suggestion:
        click.echo(f"       Suggestion: {suggestion}", err=True)


def check(name: str, status: bool, detail: str | None = None) -> None:
    """Print a check result with consistent formatting."""
    if status:
        click.echo(f"  {click.style('[OK]', fg='green')} {name}")
    else:
        click.echo(f"  {click.style('[FAIL]', fg='red')} {name}")

    if detail:
        click.echo(f"       {detail}")
